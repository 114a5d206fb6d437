from typing import Any, Dict

from fastapi import APIRouter, Depends

from ...container import Container
from ...premium import PremiumStatusResponse, PremiumVerifyRequest
from ...security import DeviceSecurityReport, DeviceTrustResponse
from ..deps import get_container, require_firebase_user, unwrap_or_http

router = APIRouter(prefix="/me")


@router.get("/premium", response_model=PremiumStatusResponse)
def get_my_premium_status(
    user: Dict[str, Any] = Depends(require_firebase_user),
    container: Container = Depends(get_container),
):
    return unwrap_or_http(container.premium.get_status(str(user.get("uid"))))


@router.post("/premium/verify", response_model=PremiumStatusResponse)
def verify_my_purchase(
    payload: PremiumVerifyRequest,
    user: Dict[str, Any] = Depends(require_firebase_user),
    container: Container = Depends(get_container),
):
    return unwrap_or_http(container.premium.verify_purchase(str(user.get("uid")), payload))


@router.post("/device-security", response_model=DeviceTrustResponse)
def report_my_device(
    payload: DeviceSecurityReport,
    user: Dict[str, Any] = Depends(require_firebase_user),
    container: Container = Depends(get_container),
):
    return container.security.record_device_report(str(user.get("uid")), payload)
