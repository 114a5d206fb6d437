from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from firebase_admin import firestore as admin_firestore
from google.api_core import exceptions as google_exceptions
from pydantic import BaseModel

from .audience import parse_audience
from .errors import NotFoundError, Result, ValidationError
from .outcomes import DeliverySummary

SCHEDULED_COLLECTION = "scheduled_notifications"

logger = logging.getLogger("notifications.schedule")


class ScheduleStatus(str, Enum):
    SCHEDULED = "scheduled"
    SENT = "sent"
    CANCELLED = "cancelled"
    FAILED = "failed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class ScheduledNotification(BaseModel):
    id: str
    title: str
    body: str
    target_audience: str
    scheduled_time: datetime
    processed: bool = False
    status: ScheduleStatus = ScheduleStatus.SCHEDULED
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    total_sent: Optional[int] = None
    total_failed: Optional[int] = None
    error: Optional[str] = None

    @classmethod
    def from_snapshot(cls, snapshot) -> "ScheduledNotification":
        raw = snapshot.to_dict() or {}
        return cls(
            id=snapshot.id,
            title=str(raw.get("title") or ""),
            body=str(raw.get("body") or ""),
            target_audience=str(raw.get("targetAudience") or ""),
            scheduled_time=raw.get("scheduledTime"),
            processed=bool(raw.get("processed")),
            status=raw.get("status") or ScheduleStatus.SCHEDULED,
            created_by=raw.get("createdBy"),
            created_at=raw.get("createdAt"),
            processed_at=raw.get("processedAt"),
            total_sent=raw.get("totalSent"),
            total_failed=raw.get("totalFailed"),
            error=raw.get("error"),
        )


class ScheduleStore:
    def __init__(
        self,
        db,
        *,
        clock: Callable[[], datetime] = _utcnow,
        allow_cancel_processed: bool = True,
    ) -> None:
        self._db = db
        self._clock = clock
        self._allow_cancel_processed = allow_cancel_processed

    def _collection(self):
        return self._db.collection(SCHEDULED_COLLECTION)

    def create(
        self,
        title: Optional[str],
        body: Optional[str],
        audience: Any,
        scheduled_time: Optional[datetime],
        *,
        created_by: Optional[str] = None,
    ) -> Result[ScheduledNotification]:
        title = str(title or "").strip()
        body = str(body or "").strip()
        if not title or not body or scheduled_time is None:
            return Result.fail(ValidationError("title, body and scheduledTime are required"))
        selector = parse_audience(audience)
        if not selector.is_ok:
            return Result.fail(selector.error)

        now = self._clock()
        scheduled_time = ensure_utc(scheduled_time)
        if scheduled_time <= now:
            return Result.fail(
                ValidationError(
                    "scheduledTime must be in the future",
                    scheduled_time=scheduled_time.isoformat(),
                    now=now.isoformat(),
                )
            )

        doc_ref = self._collection().document()
        payload = {
            "title": title,
            "body": body,
            "targetAudience": selector.value.value,
            "scheduledTime": scheduled_time,
            "processed": False,
            "status": ScheduleStatus.SCHEDULED.value,
            "createdBy": created_by,
            "createdAt": now,
        }
        doc_ref.set(payload)
        logger.info(
            "Scheduled notification %s for %s (%s)",
            doc_ref.id,
            scheduled_time.isoformat(),
            selector.value.value,
        )
        return Result.ok(
            ScheduledNotification(
                id=doc_ref.id,
                title=title,
                body=body,
                target_audience=selector.value.value,
                scheduled_time=scheduled_time,
                created_by=created_by,
                created_at=now,
            )
        )

    def get(self, notification_id: str) -> Result[ScheduledNotification]:
        snapshot = self._collection().document(notification_id).get()
        if not snapshot.exists:
            return Result.fail(
                NotFoundError("Scheduled notification not found", notification_id=notification_id)
            )
        return Result.ok(ScheduledNotification.from_snapshot(snapshot))

    def _run_query(self, query, label: str) -> Result[List[ScheduledNotification]]:
        try:
            snapshots = list(query.stream())
        except google_exceptions.FailedPrecondition as exc:
            # Composite index still building; nothing to show until it is ready.
            logger.warning("Index for %s query not ready yet: %s", label, exc)
            return Result.ok([])
        return Result.ok([ScheduledNotification.from_snapshot(snapshot) for snapshot in snapshots])

    def list_pending(self, limit: int = 50) -> Result[List[ScheduledNotification]]:
        query = (
            self._collection()
            .where("processed", "==", False)
            .order_by("scheduledTime", direction=admin_firestore.Query.ASCENDING)
            .limit(max(1, limit))
        )
        return self._run_query(query, "pending")

    def list_due(self, limit: int = 10) -> Result[List[ScheduledNotification]]:
        query = (
            self._collection()
            .where("processed", "==", False)
            .where("scheduledTime", "<=", self._clock())
            .order_by("scheduledTime", direction=admin_firestore.Query.ASCENDING)
            .limit(max(1, limit))
        )
        return self._run_query(query, "due")

    def cancel(
        self, notification_id: str, *, cancelled_by: Optional[str] = None
    ) -> Result[ScheduledNotification]:
        current = self.get(notification_id)
        if not current.is_ok:
            return current
        entry = current.value
        if entry.processed and not self._allow_cancel_processed:
            return Result.fail(
                ValidationError(
                    "Scheduled notification was already processed",
                    notification_id=notification_id,
                    status=entry.status.value,
                )
            )
        if entry.processed:
            logger.warning(
                "Cancelling %s which was already %s", notification_id, entry.status.value
            )
        now = self._clock()
        self._collection().document(notification_id).update(
            {
                "status": ScheduleStatus.CANCELLED.value,
                "processed": True,
                "processedAt": now,
                "cancelledAt": now,
                "cancelledBy": cancelled_by,
            }
        )
        return Result.ok(
            entry.model_copy(
                update={"status": ScheduleStatus.CANCELLED, "processed": True, "processed_at": now}
            )
        )

    def mark_processed(
        self,
        notification_id: str,
        status: ScheduleStatus,
        *,
        summary: Optional[DeliverySummary] = None,
        error: Optional[str] = None,
    ) -> Result[None]:
        if status not in (ScheduleStatus.SENT, ScheduleStatus.FAILED):
            return Result.fail(ValidationError(f"Cannot mark as processed with status {status.value}"))
        patch: Dict[str, Any] = {
            "status": status.value,
            "processed": True,
            "processedAt": self._clock(),
        }
        if summary is not None:
            patch.update(summary.to_fields())
        if error:
            patch["error"] = error
        try:
            self._collection().document(notification_id).update(patch)
        except google_exceptions.NotFound:
            return Result.fail(
                NotFoundError("Scheduled notification not found", notification_id=notification_id)
            )
        return Result.ok(None)
