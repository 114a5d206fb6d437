from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable

from .audience import USERS_COLLECTION

BACKFILL_BATCH_WRITES = 400

logger = logging.getLogger("maintenance")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def backfill_active_flag(
    db,
    *,
    clock: Callable[[], datetime] = _utcnow,
    dry_run: bool = False,
) -> int:
    """Set ``isActive = true`` on users that predate the field.

    Users with an explicit ``isActive`` value are left untouched.
    """
    now = clock()
    batch = db.batch()
    pending_writes = 0
    updated = 0
    for snapshot in db.collection(USERS_COLLECTION).stream():
        data = snapshot.to_dict() or {}
        if "isActive" in data:
            continue
        updated += 1
        if dry_run:
            continue
        batch.update(snapshot.reference, {"isActive": True, "isActiveBackfilledAt": now})
        pending_writes += 1
        if pending_writes >= BACKFILL_BATCH_WRITES:
            batch.commit()
            batch = db.batch()
            pending_writes = 0
    if pending_writes > 0:
        batch.commit()
    logger.info("Backfilled isActive on %s users%s", updated, " (dry run)" if dry_run else "")
    return updated
