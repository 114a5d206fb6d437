from datetime import datetime, timezone

from fastapi import APIRouter

from ... import __version__

router = APIRouter()

_STARTED_AT = datetime.now(timezone.utc).isoformat()


@router.get("/deployment-info")
def deployment_info():
    return {
        "service": "Update Notification Service",
        "version": __version__,
        "functions": [
            "sendUpdateNotificationToBetaUsers",
            "processScheduledNotifications",
            "sendGeneralNotification",
            "scheduleNotification",
            "getScheduledNotifications",
            "cancelScheduledNotification",
            "testUpdateNotification",
            "getBetaUserStats",
        ],
        "startedAt": _STARTED_AT,
    }


@router.get("/health")
def health():
    return {"status": "ok"}
