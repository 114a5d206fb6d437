#!/usr/bin/env python3
import argparse
import logging

from scorekeeper.config import get_settings
from scorekeeper.firebase import build_firebase_clients
from scorekeeper.maintenance import backfill_active_flag


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Mark existing users as active (isActive = true) where the field is missing."
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only count users that would be updated.",
    )
    args = parser.parse_args()

    settings = get_settings()
    logging.basicConfig(level=settings.log_level)
    clients = build_firebase_clients(settings)
    updated = backfill_active_flag(clients.db, dry_run=args.dry_run)
    prefix = "[dry-run]" if args.dry_run else "[backfill]"
    print(f"{prefix} isActive set on {updated} users")


if __name__ == "__main__":
    main()
