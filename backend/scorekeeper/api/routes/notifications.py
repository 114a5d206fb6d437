from typing import Any, Dict

from fastapi import APIRouter, Depends

from ...container import Container
from ...notifications import (
    BetaUserStatsResponse,
    GeneralNotificationRequest,
    GeneralNotificationResponse,
    ScheduledNotificationListResponse,
    ScheduleNotificationRequest,
    UpdateNotificationTestRequest,
    UpdateNotificationTestResponse,
)
from ...schedule import ScheduledNotification
from ..deps import get_container, require_admin_user, unwrap_or_http

router = APIRouter(prefix="/admin")


@router.post("/notifications/general", response_model=GeneralNotificationResponse)
def send_general_notification(
    payload: GeneralNotificationRequest,
    admin: Dict[str, Any] = Depends(require_admin_user),
    container: Container = Depends(get_container),
):
    result = container.notifications.send_general_notification(
        payload.title,
        payload.message,
        payload.target_audience,
        admin_uid=str(admin.get("uid") or "admin"),
    )
    return unwrap_or_http(result)


@router.post("/notifications/scheduled", response_model=ScheduledNotification)
def schedule_notification(
    payload: ScheduleNotificationRequest,
    admin: Dict[str, Any] = Depends(require_admin_user),
    container: Container = Depends(get_container),
):
    result = container.notifications.schedule_notification(
        payload, admin_uid=str(admin.get("uid") or "admin")
    )
    return unwrap_or_http(result)


@router.get("/notifications/scheduled", response_model=ScheduledNotificationListResponse)
def get_scheduled_notifications(
    admin: Dict[str, Any] = Depends(require_admin_user),
    container: Container = Depends(get_container),
):
    return unwrap_or_http(container.notifications.get_scheduled_notifications())


@router.post(
    "/notifications/scheduled/{notification_id}/cancel",
    response_model=ScheduledNotification,
)
def cancel_scheduled_notification(
    notification_id: str,
    admin: Dict[str, Any] = Depends(require_admin_user),
    container: Container = Depends(get_container),
):
    result = container.notifications.cancel_scheduled_notification(
        notification_id, admin_uid=str(admin.get("uid") or "admin")
    )
    return unwrap_or_http(result)


@router.post("/notifications/test-update", response_model=UpdateNotificationTestResponse)
def test_update_notification(
    payload: UpdateNotificationTestRequest,
    admin: Dict[str, Any] = Depends(require_admin_user),
    container: Container = Depends(get_container),
):
    result = container.notifications.queue_test_update_notification(
        payload, admin_uid=str(admin.get("uid") or "admin")
    )
    return unwrap_or_http(result)


@router.get("/stats/beta-users", response_model=BetaUserStatsResponse)
def get_beta_user_stats(
    admin: Dict[str, Any] = Depends(require_admin_user),
    container: Container = Depends(get_container),
):
    return unwrap_or_http(container.notifications.get_beta_user_stats())
