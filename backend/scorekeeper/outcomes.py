from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List

from google.api_core import exceptions as google_exceptions

from .dispatch import DeliveryOutcome, FailureReason
from .hygiene import EndpointHygiene, InvalidEndpoint

RECEIPTS_COLLECTION = "notifications"

logger = logging.getLogger("notifications.outcomes")


def receipt_id(user_id: str, request_id: str) -> str:
    return hashlib.sha256(f"{user_id}:{request_id}".encode("utf-8")).hexdigest()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class DeliverySummary:
    total_sent: int = 0
    total_failed: int = 0
    invalid_endpoints: int = 0
    receipts_created: int = 0
    duplicate_receipts: int = 0
    failed_notifications: int = 0

    def to_fields(self) -> Dict[str, int]:
        return {
            "totalSent": self.total_sent,
            "totalFailed": self.total_failed,
            "invalidTokens": self.invalid_endpoints,
            "receiptsCreated": self.receipts_created,
            "duplicateReceipts": self.duplicate_receipts,
            "failedNotifications": self.failed_notifications,
        }


class DeliveryOutcomeTracker:
    def __init__(
        self,
        db,
        hygiene: EndpointHygiene,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._db = db
        self._hygiene = hygiene
        self._clock = clock

    def _save_receipt(
        self,
        user_id: str,
        *,
        request_id: str,
        source: str,
        title: str,
        body: str,
    ) -> bool:
        """Create the receipt unless one exists. Returns False for a duplicate."""
        ref = self._db.collection(RECEIPTS_COLLECTION).document(receipt_id(user_id, request_id))
        if ref.get().exists:
            return False
        payload: Dict[str, Any] = {
            "userId": user_id,
            "title": title,
            "body": body,
            "type": source,
            "notificationId": request_id,
            "read": False,
            "createdAt": self._clock(),
        }
        try:
            ref.create(payload)
        except google_exceptions.AlreadyExists:
            # Lost a race with a concurrent run of the same request.
            return False
        return True

    def track(
        self,
        outcomes: Iterable[DeliveryOutcome],
        *,
        request_id: str,
        source: str,
        title: str,
        body: str,
    ) -> DeliverySummary:
        summary = DeliverySummary()
        invalid: List[InvalidEndpoint] = []

        for outcome in outcomes:
            if not outcome.delivered:
                summary.total_failed += 1
                if outcome.reason is FailureReason.INVALID_ENDPOINT:
                    invalid.append(
                        InvalidEndpoint(
                            endpoint=outcome.recipient.endpoint,
                            user_id=outcome.recipient.user_id,
                        )
                    )
                continue

            summary.total_sent += 1
            try:
                created = self._save_receipt(
                    outcome.recipient.user_id,
                    request_id=request_id,
                    source=source,
                    title=title,
                    body=body,
                )
            except Exception as exc:
                summary.failed_notifications += 1
                logger.warning(
                    "Receipt for user %s / %s not saved: %s",
                    outcome.recipient.user_id,
                    request_id,
                    exc,
                )
                continue
            if created:
                summary.receipts_created += 1
            else:
                summary.duplicate_receipts += 1

        summary.invalid_endpoints = len(invalid)
        if invalid:
            cleanup = self._hygiene.clear(invalid)
            if not cleanup.is_ok:
                logger.error("Invalid token cleanup for %s failed: %s", request_id, cleanup.error)

        logger.info(
            "Delivery for %s: sent=%s failed=%s invalid=%s receipts=%s duplicates=%s receipt_errors=%s",
            request_id,
            summary.total_sent,
            summary.total_failed,
            summary.invalid_endpoints,
            summary.receipts_created,
            summary.duplicate_receipts,
            summary.failed_notifications,
        )
        return summary
