from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional, Union

from firebase_admin import messaging as admin_messaging
from pydantic import BaseModel

SOURCE_ADMIN_NOTIFICATION = "admin_notification"
SOURCE_SCHEDULED_NOTIFICATION = "scheduled_notification"

NOTIFICATION_TYPE_APP_UPDATE = "app_update"
NOTIFICATION_TYPE_GENERAL = "general_notification"
NOTIFICATION_TYPE_SCHEDULED = "scheduled_notification"

UPDATE_CHANNEL_ID = "update_notifications"
GENERAL_CHANNEL_ID = "general_notifications"
NOTIFICATION_ICON = "ic_notification"
NOTIFICATION_COLOR = "#FF6B35"


def _stringify_push_data(data: Optional[Dict[str, Any]]) -> Dict[str, str]:
    # FCM data payloads only carry string values.
    result: Dict[str, str] = {}
    if not isinstance(data, dict):
        return result
    for key, value in data.items():
        if value is None:
            continue
        if isinstance(value, bool):
            result[str(key)] = "true" if value else "false"
        elif isinstance(value, datetime):
            result[str(key)] = value.isoformat()
        else:
            result[str(key)] = str(value)
    return result


class _PushMessage(BaseModel):
    """Shared FCM rendering. Variants provide ``request_id`` and ``data_payload``."""

    title: str
    body: str

    def receipt_source(self) -> str:
        return SOURCE_ADMIN_NOTIFICATION

    def android_config(self) -> admin_messaging.AndroidConfig:
        return admin_messaging.AndroidConfig(
            priority="high",
            notification=admin_messaging.AndroidNotification(
                channel_id=GENERAL_CHANNEL_ID,
                icon=NOTIFICATION_ICON,
                color=NOTIFICATION_COLOR,
                default_sound=True,
            ),
        )

    def apns_config(self) -> admin_messaging.APNSConfig:
        return admin_messaging.APNSConfig(
            headers={"apns-priority": "10"},
            payload=admin_messaging.APNSPayload(
                aps=admin_messaging.Aps(
                    alert=admin_messaging.ApsAlert(title=self.title, body=self.body),
                    sound="default",
                )
            ),
        )

    def to_fcm(
        self,
        *,
        token: Optional[str] = None,
        topic: Optional[str] = None,
        sent_at: Optional[datetime] = None,
    ) -> admin_messaging.Message:
        if bool(token) == bool(topic):
            raise ValueError("Exactly one of token or topic is required")
        data = _stringify_push_data(self.data_payload(sent_at or datetime.now(timezone.utc)))
        return admin_messaging.Message(
            notification=admin_messaging.Notification(title=self.title, body=self.body),
            data=data,
            android=self.android_config(),
            apns=self.apns_config(),
            token=token,
            topic=topic,
        )


class AppUpdateMessage(_PushMessage):
    kind: Literal["app_update"] = "app_update"
    notification_id: str
    new_version: str
    update_message: str
    download_url: str
    force_update: bool = False

    @classmethod
    def build(
        cls,
        *,
        notification_id: str,
        new_version: str,
        update_message: str,
        download_url: str,
        force_update: bool = False,
        title: str,
    ) -> "AppUpdateMessage":
        return cls(
            notification_id=notification_id,
            title=title,
            body=f"Version {new_version} • {update_message}",
            new_version=new_version,
            update_message=update_message,
            download_url=download_url,
            force_update=force_update,
        )

    def request_id(self) -> str:
        return self.notification_id

    def _update_fields(self) -> Dict[str, Any]:
        return {
            "type": NOTIFICATION_TYPE_APP_UPDATE,
            "new_version": self.new_version,
            "update_message": self.update_message,
            "download_url": self.download_url,
            "force_update": self.force_update,
        }

    def data_payload(self, sent_at: datetime) -> Dict[str, Any]:
        return {
            **self._update_fields(),
            "notificationId": self.notification_id,
            "timestamp": sent_at,
        }

    def android_config(self) -> admin_messaging.AndroidConfig:
        return admin_messaging.AndroidConfig(
            priority="high",
            notification=admin_messaging.AndroidNotification(
                channel_id=UPDATE_CHANNEL_ID,
                priority="high",
                default_sound=True,
                default_vibrate_timings=True,
                icon=NOTIFICATION_ICON,
                color=NOTIFICATION_COLOR,
            ),
            data=_stringify_push_data(self._update_fields()),
        )

    def apns_config(self) -> admin_messaging.APNSConfig:
        return admin_messaging.APNSConfig(
            payload=admin_messaging.APNSPayload(
                aps=admin_messaging.Aps(
                    alert=admin_messaging.ApsAlert(title=self.title, body=self.body),
                    badge=1,
                    sound="default",
                    category="UPDATE_NOTIFICATION",
                )
            ),
        )


class GeneralMessage(_PushMessage):
    kind: Literal["general"] = "general"
    notification_id: str
    target_audience: str

    def request_id(self) -> str:
        return self.notification_id

    def data_payload(self, sent_at: datetime) -> Dict[str, Any]:
        return {
            "type": NOTIFICATION_TYPE_GENERAL,
            "notificationId": self.notification_id,
            "targetAudience": self.target_audience,
            "timestamp": sent_at,
        }


class ScheduledMessage(_PushMessage):
    kind: Literal["scheduled"] = "scheduled"
    scheduled_notification_id: str
    target_audience: str

    def receipt_source(self) -> str:
        return SOURCE_SCHEDULED_NOTIFICATION

    def request_id(self) -> str:
        return self.scheduled_notification_id

    def data_payload(self, sent_at: datetime) -> Dict[str, Any]:
        return {
            "type": NOTIFICATION_TYPE_SCHEDULED,
            "notificationId": self.scheduled_notification_id,
            "targetAudience": self.target_audience,
            "timestamp": sent_at,
        }


PushMessage = Union[AppUpdateMessage, GeneralMessage, ScheduledMessage]
