from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable

from firebase_admin import firestore as admin_firestore
from google.api_core import exceptions as google_exceptions

from .audience import ENDPOINT_FIELD, USERS_COLLECTION
from .errors import InfrastructureTransientError, Result

# Firestore caps a write batch at 500 operations.
MAX_BATCH_WRITES = 500

logger = logging.getLogger("notifications.hygiene")


@dataclass(frozen=True)
class InvalidEndpoint:
    endpoint: str
    user_id: str


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EndpointHygiene:
    def __init__(
        self,
        db,
        *,
        clock: Callable[[], datetime] = _utcnow,
        max_batch_writes: int = MAX_BATCH_WRITES,
    ) -> None:
        self._db = db
        self._clock = clock
        self._max_batch_writes = max(1, min(max_batch_writes, MAX_BATCH_WRITES))

    def clear(self, invalid: Iterable[InvalidEndpoint]) -> Result[int]:
        """Drop the push token from every owning user and stamp ``tokenInvalidAt``.

        Deleting a field that is already gone is a no-op in Firestore, so
        repeating a cleanup is harmless.
        """
        by_user: Dict[str, InvalidEndpoint] = {}
        for item in invalid:
            if item.user_id:
                by_user.setdefault(item.user_id, item)
        if not by_user:
            return Result.ok(0)

        patch = {
            ENDPOINT_FIELD: admin_firestore.DELETE_FIELD,
            "tokenInvalidAt": self._clock(),
        }
        user_ids = list(by_user)
        cleared = 0
        skipped = 0
        try:
            for start in range(0, len(user_ids), self._max_batch_writes):
                chunk = user_ids[start : start + self._max_batch_writes]
                batch = self._db.batch()
                for user_id in chunk:
                    batch.update(self._user(user_id), patch)
                try:
                    batch.commit()
                    cleared += len(chunk)
                    continue
                except google_exceptions.NotFound:
                    # A batch applies nothing if any target is missing.
                    logger.warning("Token cleanup batch hit a deleted user, clearing one by one")
                for user_id in chunk:
                    try:
                        self._user(user_id).update(patch)
                    except google_exceptions.NotFound:
                        logger.info("User %s no longer exists, skipping token cleanup", user_id)
                        skipped += 1
                        continue
                    cleared += 1
        except google_exceptions.GoogleAPICallError as exc:
            logger.error(
                "Invalid token cleanup stopped after %s of %s users: %s",
                cleared,
                len(user_ids),
                exc,
            )
            return Result.fail(
                InfrastructureTransientError(
                    "Invalid token cleanup failed",
                    cleared=cleared,
                    pending=len(user_ids) - cleared - skipped,
                )
            )

        logger.info("Cleaned up %s invalid tokens", cleared)
        return Result.ok(cleared)

    def _user(self, user_id: str):
        return self._db.collection(USERS_COLLECTION).document(user_id)
