from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from .audience import USERS_COLLECTION

DEVICE_SECURITY_COLLECTION = "device_security"
SECURITY_VIOLATIONS_COLLECTION = "security_violations"

VIOLATION_ROOTED = "rooted"
VIOLATION_EMULATOR = "emulator"
VIOLATION_DEBUGGABLE = "debuggable"
VIOLATION_INVALID_SIGNATURE = "invalid_signature"
VIOLATION_RECEIPT_REUSE = "receipt_reuse"
VIOLATION_DEVICE_INTEGRITY = "device_integrity"

logger = logging.getLogger("security")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DeviceSecurityReport(BaseModel):
    device_id: str
    platform: Optional[str] = None
    app_version: Optional[str] = None
    is_rooted: bool = False
    is_emulator: bool = False
    is_debuggable: bool = False
    app_signature_valid: bool = True


class DeviceTrustResponse(BaseModel):
    trusted: bool = True
    flags: List[str] = Field(default_factory=list)
    user_flagged: bool = False


def device_flags(report: DeviceSecurityReport) -> List[str]:
    flags: List[str] = []
    if report.is_rooted:
        flags.append(VIOLATION_ROOTED)
    if report.is_emulator:
        flags.append(VIOLATION_EMULATOR)
    if report.is_debuggable:
        flags.append(VIOLATION_DEBUGGABLE)
    if not report.app_signature_valid:
        flags.append(VIOLATION_INVALID_SIGNATURE)
    return flags


class SecurityService:
    def __init__(
        self,
        db,
        *,
        violation_threshold: int = 3,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._db = db
        self._violation_threshold = max(1, violation_threshold)
        self._clock = clock

    def record_violation(self, uid: str, kind: str, details: Optional[Dict[str, Any]] = None) -> bool:
        """Store a violation and flag the user once the threshold is reached.

        Returns whether the user is flagged after this violation.
        """
        self._db.collection(SECURITY_VIOLATIONS_COLLECTION).document().set(
            {
                "userId": uid,
                "type": kind,
                "details": details or {},
                "createdAt": self._clock(),
            }
        )
        count = sum(
            1
            for _ in self._db.collection(SECURITY_VIOLATIONS_COLLECTION)
            .where("userId", "==", uid)
            .stream()
        )
        logger.warning("Security violation %s for user %s (%s total)", kind, uid, count)
        if count < self._violation_threshold:
            return False
        self._db.collection(USERS_COLLECTION).document(uid).set(
            {"securityFlagged": True, "securityFlaggedAt": self._clock()}, merge=True
        )
        return True

    def record_device_report(self, uid: str, report: DeviceSecurityReport) -> DeviceTrustResponse:
        flags = device_flags(report)
        now = self._clock()
        self._db.collection(DEVICE_SECURITY_COLLECTION).document(f"{uid}_{report.device_id}").set(
            {
                "userId": uid,
                "deviceId": report.device_id,
                "platform": report.platform,
                "appVersion": report.app_version,
                "isRooted": report.is_rooted,
                "isEmulator": report.is_emulator,
                "isDebuggable": report.is_debuggable,
                "appSignatureValid": report.app_signature_valid,
                "flags": flags,
                "trusted": not flags,
                "updatedAt": now,
            },
            merge=True,
        )
        if not flags:
            return DeviceTrustResponse()
        flagged = self.record_violation(
            uid, VIOLATION_DEVICE_INTEGRITY, {"deviceId": report.device_id, "flags": flags}
        )
        return DeviceTrustResponse(trusted=False, flags=flags, user_flagged=flagged)
