from __future__ import annotations

import hashlib
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from pydantic import BaseModel

from .audience import USERS_COLLECTION
from .errors import ConflictError, Result, ValidationError
from .schedule import ensure_utc
from .security import VIOLATION_RECEIPT_REUSE, SecurityService

PURCHASE_HISTORY_COLLECTION = "purchase_history"
SUPPORTED_PLATFORMS = {"ios", "android"}

logger = logging.getLogger("premium")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _token_hash(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class ReceiptVerdict(BaseModel):
    valid: bool
    expires_at: Optional[datetime] = None
    transaction_id: Optional[str] = None
    reason: Optional[str] = None


class PremiumVerifyRequest(BaseModel):
    platform: str
    product_id: str
    receipt_data: str


class PremiumStatusResponse(BaseModel):
    is_premium: bool = False
    premium_expires_at: Optional[datetime] = None
    product_id: Optional[str] = None


class ReceiptVerifier:
    """Checks a store receipt with Apple or Google."""

    def verify(self, platform: str, product_id: str, receipt_data: str) -> ReceiptVerdict:
        raise NotImplementedError


class StubReceiptVerifier(ReceiptVerifier):
    """Accepts any non-empty receipt. Only for builds without store credentials."""

    def __init__(
        self,
        *,
        enabled: bool = False,
        period_days: int = 30,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._enabled = enabled
        self._period = timedelta(days=period_days)
        self._clock = clock

    def verify(self, platform: str, product_id: str, receipt_data: str) -> ReceiptVerdict:
        if not self._enabled:
            return ReceiptVerdict(valid=False, reason="receipt verification is not configured")
        if not receipt_data.strip():
            return ReceiptVerdict(valid=False, reason="empty receipt")
        return ReceiptVerdict(
            valid=True,
            expires_at=self._clock() + self._period,
            transaction_id=_token_hash(receipt_data)[:32],
        )


def compute_is_premium(is_premium: bool, expires_at: Optional[datetime], now: datetime) -> bool:
    if not is_premium:
        return False
    if expires_at is None:
        return True
    return ensure_utc(expires_at) > now


class PremiumService:
    def __init__(
        self,
        db,
        verifier: ReceiptVerifier,
        security: SecurityService,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._db = db
        self._verifier = verifier
        self._security = security
        self._clock = clock

    def get_status(self, uid: str) -> Result[PremiumStatusResponse]:
        snapshot = self._db.collection(USERS_COLLECTION).document(uid).get()
        data = (snapshot.to_dict() or {}) if snapshot.exists else {}
        expires_at = data.get("premiumExpiresAt")
        return Result.ok(
            PremiumStatusResponse(
                is_premium=compute_is_premium(bool(data.get("isPremium")), expires_at, self._clock()),
                premium_expires_at=expires_at,
                product_id=data.get("premiumProductId"),
            )
        )

    def verify_purchase(
        self, uid: str, payload: PremiumVerifyRequest
    ) -> Result[PremiumStatusResponse]:
        platform = payload.platform.strip().lower()
        if platform not in SUPPORTED_PLATFORMS:
            return Result.fail(ValidationError(f"Unsupported platform: {platform or '<empty>'}"))
        if not payload.product_id.strip() or not payload.receipt_data.strip():
            return Result.fail(ValidationError("product_id and receipt_data are required"))

        doc_id = f"{platform}_{_token_hash(payload.receipt_data)}"
        ref = self._db.collection(PURCHASE_HISTORY_COLLECTION).document(doc_id)
        snapshot = ref.get()
        existing = (snapshot.to_dict() or {}) if snapshot.exists else {}
        if existing.get("userId") and existing.get("userId") != uid:
            self._security.record_violation(
                uid,
                VIOLATION_RECEIPT_REUSE,
                {"purchaseId": doc_id, "productId": payload.product_id},
            )
            return Result.fail(ConflictError("Purchase already linked to another user"))

        verdict = self._verifier.verify(platform, payload.product_id, payload.receipt_data)
        now = self._clock()
        ref.set(
            {
                "userId": uid,
                "platform": platform,
                "productId": payload.product_id,
                "receiptHash": _token_hash(payload.receipt_data),
                "transactionId": verdict.transaction_id,
                "valid": verdict.valid,
                "reason": verdict.reason,
                "expiresAt": verdict.expires_at,
                "createdAt": existing.get("createdAt") or now,
                "updatedAt": now,
            },
            merge=True,
        )
        if not verdict.valid:
            logger.info("Receipt for user %s rejected: %s", uid, verdict.reason)
            return Result.fail(ValidationError("Receipt verification failed", reason=verdict.reason))

        self._db.collection(USERS_COLLECTION).document(uid).set(
            {
                "isPremium": True,
                "premiumExpiresAt": verdict.expires_at,
                "premiumProductId": payload.product_id,
                "premiumPlatform": platform,
                "premiumUpdatedAt": now,
            },
            merge=True,
        )
        logger.info("Premium activated for user %s via %s", uid, platform)
        return Result.ok(
            PremiumStatusResponse(
                is_premium=compute_is_premium(True, verdict.expires_at, now),
                premium_expires_at=verdict.expires_at,
                product_id=payload.product_id,
            )
        )
