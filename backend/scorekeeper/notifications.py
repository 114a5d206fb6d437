from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

from pydantic import BaseModel, Field

from .audience import USERS_COLLECTION, AudienceSelector, parse_audience
from .errors import Result, ValidationError
from .messages import NOTIFICATION_TYPE_APP_UPDATE, GeneralMessage
from .pipeline import DeliveryPipeline
from .schedule import ScheduledNotification, ScheduleStore
from .triggers import ADMIN_NOTIFICATIONS_COLLECTION, STATUS_ERROR, STATUS_PENDING, STATUS_SENT

GENERAL_COLLECTION = "general_notifications"

logger = logging.getLogger("notifications")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GeneralNotificationRequest(BaseModel):
    title: str
    message: str
    target_audience: AudienceSelector = Field(AudienceSelector.ALL_USERS, alias="targetAudience")

    model_config = {"populate_by_name": True}


class GeneralNotificationResponse(BaseModel):
    success: bool = True
    notification_id: str
    total_sent: int = 0
    total_failed: int = 0
    invalid_tokens: int = 0
    failed_notifications: int = 0


class ScheduleNotificationRequest(BaseModel):
    title: str
    message: str
    scheduled_time: datetime = Field(alias="scheduledTime")
    target_audience: AudienceSelector = Field(AudienceSelector.ALL_USERS, alias="targetAudience")

    model_config = {"populate_by_name": True}


class ScheduledNotificationListResponse(BaseModel):
    notifications: List[ScheduledNotification] = Field(default_factory=list)


class UpdateNotificationTestRequest(BaseModel):
    new_version: str
    update_message: str
    download_url: str
    force_update: bool = False


class UpdateNotificationTestResponse(BaseModel):
    success: bool = True
    notification_id: str
    message: str = "Test update notification queued successfully"


class BetaUserStatsResponse(BaseModel):
    total_beta_users: int = Field(0, serialization_alias="totalBetaUsers")
    subscribed_users: int = Field(0, serialization_alias="subscribedUsers")
    users_with_tokens: int = Field(0, serialization_alias="usersWithTokens")
    timestamp: str


class AdminNotificationService:
    def __init__(
        self,
        db,
        pipeline: DeliveryPipeline,
        schedule_store: ScheduleStore,
        *,
        update_topic: str,
        schedule_list_limit: int = 50,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._db = db
        self._pipeline = pipeline
        self._schedule_store = schedule_store
        self._update_topic = update_topic
        self._schedule_list_limit = schedule_list_limit
        self._clock = clock

    def send_general_notification(
        self,
        title: Optional[str],
        message: Optional[str],
        target_audience,
        *,
        admin_uid: str,
    ) -> Result[GeneralNotificationResponse]:
        title = str(title or "").strip()
        message = str(message or "").strip()
        if not title or not message:
            return Result.fail(ValidationError("title and message are required"))
        selector = parse_audience(target_audience)
        if not selector.is_ok:
            return Result.fail(selector.error)

        doc_ref = self._db.collection(GENERAL_COLLECTION).document()
        doc_ref.set(
            {
                "title": title,
                "body": message,
                "targetAudience": selector.value.value,
                "status": STATUS_PENDING,
                "createdBy": admin_uid,
                "createdAt": self._clock(),
            }
        )
        push = GeneralMessage(
            title=title,
            body=message,
            notification_id=doc_ref.id,
            target_audience=selector.value.value,
        )
        try:
            result = self._pipeline.run(selector.value, push)
        except Exception as exc:
            doc_ref.update({"status": STATUS_ERROR, "error": str(exc), "errorAt": self._clock()})
            raise
        if not result.is_ok:
            doc_ref.update(
                {"status": STATUS_ERROR, "error": result.error.message, "errorAt": self._clock()}
            )
            return Result.fail(result.error)

        summary = result.value
        doc_ref.update({"status": STATUS_SENT, "sentAt": self._clock(), **summary.to_fields()})
        logger.info(
            "General notification %s by %s: %s sent, %s failed",
            doc_ref.id,
            admin_uid,
            summary.total_sent,
            summary.total_failed,
        )
        return Result.ok(
            GeneralNotificationResponse(
                notification_id=doc_ref.id,
                total_sent=summary.total_sent,
                total_failed=summary.total_failed,
                invalid_tokens=summary.invalid_endpoints,
                failed_notifications=summary.failed_notifications,
            )
        )

    def schedule_notification(
        self, payload: ScheduleNotificationRequest, *, admin_uid: str
    ) -> Result[ScheduledNotification]:
        return self._schedule_store.create(
            payload.title,
            payload.message,
            payload.target_audience.value,
            payload.scheduled_time,
            created_by=admin_uid,
        )

    def get_scheduled_notifications(self) -> Result[ScheduledNotificationListResponse]:
        pending = self._schedule_store.list_pending(limit=self._schedule_list_limit)
        if not pending.is_ok:
            return Result.fail(pending.error)
        return Result.ok(ScheduledNotificationListResponse(notifications=pending.value))

    def cancel_scheduled_notification(
        self, notification_id: str, *, admin_uid: str
    ) -> Result[ScheduledNotification]:
        if not str(notification_id or "").strip():
            return Result.fail(ValidationError("notificationId is required"))
        return self._schedule_store.cancel(notification_id, cancelled_by=admin_uid)

    def queue_test_update_notification(
        self, payload: UpdateNotificationTestRequest, *, admin_uid: str
    ) -> Result[UpdateNotificationTestResponse]:
        if not payload.new_version.strip() or not payload.update_message.strip() or not payload.download_url.strip():
            return Result.fail(ValidationError("Missing required fields"))
        doc_ref = self._db.collection(ADMIN_NOTIFICATIONS_COLLECTION).document()
        doc_ref.set(
            {
                "type": NOTIFICATION_TYPE_APP_UPDATE,
                "targetAudience": AudienceSelector.BETA_USERS.value,
                "data": {
                    "new_version": payload.new_version.strip(),
                    "update_message": payload.update_message.strip(),
                    "download_url": payload.download_url.strip(),
                    "force_update": payload.force_update,
                },
                "topic": self._update_topic,
                "createdAt": self._clock(),
                "status": STATUS_PENDING,
                "createdBy": admin_uid,
                "isTest": True,
            }
        )
        logger.info("Queued test update notification %s by %s", doc_ref.id, admin_uid)
        return Result.ok(UpdateNotificationTestResponse(notification_id=doc_ref.id))

    def get_beta_user_stats(self) -> Result[BetaUserStatsResponse]:
        total = subscribed = with_tokens = 0
        for snapshot in self._db.collection(USERS_COLLECTION).where("isBetaUser", "==", True).stream():
            data = snapshot.to_dict() or {}
            total += 1
            if data.get("subscribedToUpdates"):
                subscribed += 1
            if data.get("fcmToken"):
                with_tokens += 1
        return Result.ok(
            BetaUserStatsResponse(
                total_beta_users=total,
                subscribed_users=subscribed,
                users_with_tokens=with_tokens,
                timestamp=self._clock().isoformat(),
            )
        )
