from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from .audience import AudienceSelector
from .dispatch import DispatchBatcher
from .errors import EmptyAudienceError, ValidationError
from .messages import NOTIFICATION_TYPE_APP_UPDATE, AppUpdateMessage
from .pipeline import DeliveryPipeline

ADMIN_NOTIFICATIONS_COLLECTION = "admin_notifications"
STATUS_PENDING = "pending"
STATUS_SENT = "sent"
STATUS_ERROR = "error"

logger = logging.getLogger("notifications.trigger")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ImmediateNotificationTrigger:
    """Sends app update pushes when an ``admin_notifications`` document is created."""

    def __init__(
        self,
        batcher: DispatchBatcher,
        pipeline: DeliveryPipeline,
        *,
        title: str,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._batcher = batcher
        self._pipeline = pipeline
        self._title = title
        self._clock = clock

    def _build_message(self, notification_id: str, data: Dict[str, Any]) -> AppUpdateMessage:
        update = data.get("data") or {}
        new_version = str(update.get("new_version") or "").strip()
        update_message = str(update.get("update_message") or "").strip()
        download_url = str(update.get("download_url") or "").strip()
        if not new_version or not update_message or not download_url:
            raise ValidationError(
                "app_update notification is missing new_version, update_message or download_url"
            )
        return AppUpdateMessage.build(
            notification_id=notification_id,
            new_version=new_version,
            update_message=update_message,
            download_url=download_url,
            force_update=bool(update.get("force_update")),
            title=self._title,
        )

    def _send_direct(self, message: AppUpdateMessage, *, backup: bool) -> Dict[str, Any]:
        """Push the update to beta subscribers one device at a time.

        As a ``backup`` to a topic send that already went out, failures are
        logged and recorded on the document instead of raised.
        """
        try:
            result = self._pipeline.run(AudienceSelector.BETA_SUBSCRIBERS, message)
            if not result.is_ok and isinstance(result.error, EmptyAudienceError):
                logger.info("Direct beta send for %s skipped: %s", message.notification_id, result.error)
                return {"directSendSkipped": result.error.reason}
            summary = result.unwrap()
        except Exception as exc:
            if not backup:
                raise
            logger.exception("Backup direct send for %s failed", message.notification_id)
            return {"directSendError": str(exc) or exc.__class__.__name__}
        return {f"directSend.{key}": value for key, value in summary.to_fields().items()}

    def handle(self, snapshot) -> Optional[Dict[str, Any]]:
        data = snapshot.to_dict() or {}
        if data.get("type") != NOTIFICATION_TYPE_APP_UPDATE:
            logger.info("Notification %s is not app_update, skipping", snapshot.id)
            return None

        patch: Dict[str, Any] = {}
        try:
            message = self._build_message(snapshot.id, data)
            topic = str(data.get("topic") or "").strip()
            direct = data.get("targetAudience") == AudienceSelector.BETA_USERS.value

            if topic:
                response = self._batcher.send_to_topic(message, topic)
                logger.info("Sent %s to topic %s: %s", snapshot.id, topic, response)
                patch = {"status": STATUS_SENT, "sentAt": self._clock(), "response": response}
                # Persisted before the direct send starts.
                snapshot.reference.update(patch)
            elif direct:
                patch = {
                    **self._send_direct(message, backup=False),
                    "status": STATUS_SENT,
                    "sentAt": self._clock(),
                }
                snapshot.reference.update(patch)
        except Exception as exc:
            logger.error("Error sending update notification %s: %s", snapshot.id, exc)
            snapshot.reference.update(
                {
                    "status": STATUS_ERROR,
                    "error": str(exc) or exc.__class__.__name__,
                    "errorAt": self._clock(),
                }
            )
            raise

        if topic and direct:
            extra = self._send_direct(message, backup=True)
            snapshot.reference.update(extra)
            patch.update(extra)

        if not patch:
            logger.warning(
                "Notification %s has no topic and no direct audience; nothing sent", snapshot.id
            )
            return None
        return patch


class AdminNotificationWatcher:
    """Feeds newly created pending admin notifications to the trigger."""

    def __init__(self, db, trigger: ImmediateNotificationTrigger, *, max_workers: int = 4) -> None:
        self._db = db
        self._trigger = trigger
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="admin-notify")
        self._watch = None

    def _run(self, snapshot) -> None:
        try:
            self._trigger.handle(snapshot)
        except Exception:
            logger.exception("Admin notification %s failed", snapshot.id)

    def on_snapshot(self, _docs, changes, _read_time) -> None:
        for change in changes:
            if change.type.name != "ADDED":
                continue
            self._pool.submit(self._run, change.document)

    def start(self) -> None:
        query = self._db.collection(ADMIN_NOTIFICATIONS_COLLECTION).where(
            "status", "==", STATUS_PENDING
        )
        self._watch = query.on_snapshot(self.on_snapshot)
        logger.info("Watching %s for pending notifications", ADMIN_NOTIFICATIONS_COLLECTION)

    def stop(self) -> None:
        if self._watch is not None:
            self._watch.unsubscribe()
            self._watch = None
        self._pool.shutdown(wait=True)
