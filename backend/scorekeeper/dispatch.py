from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Iterator, List, Optional, Sequence, Tuple, Type

from firebase_admin import messaging as admin_messaging

from .audience import Recipient
from .config import FCM_MULTICAST_LIMIT
from .errors import DeliveryError
from .messages import PushMessage

logger = logging.getLogger("notifications.dispatch")

# Provider errors that mean the token will never work again.
INVALID_ENDPOINT_ERRORS: Tuple[Type[Exception], ...] = (
    admin_messaging.UnregisteredError,
    admin_messaging.SenderIdMismatchError,
)


class DeliveryStatus(str, Enum):
    DELIVERED = "delivered"
    FAILED = "failed"


class FailureReason(str, Enum):
    INVALID_ENDPOINT = "invalid_endpoint"
    TRANSIENT = "transient"


@dataclass(frozen=True)
class DeliveryOutcome:
    recipient: Recipient
    status: DeliveryStatus
    reason: Optional[FailureReason] = None
    error: Optional[DeliveryError] = None
    message_id: Optional[str] = None

    @property
    def delivered(self) -> bool:
        return self.status is DeliveryStatus.DELIVERED


def classify_delivery_error(exc: Exception) -> FailureReason:
    if isinstance(exc, INVALID_ENDPOINT_ERRORS):
        return FailureReason.INVALID_ENDPOINT
    return FailureReason.TRANSIENT


class FcmPushSender:
    def __init__(self, app=None) -> None:
        self._app = app

    def send(self, message: admin_messaging.Message) -> str:
        return admin_messaging.send(message, app=self._app)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DispatchBatcher:
    def __init__(
        self,
        sender,
        *,
        batch_size: int = FCM_MULTICAST_LIMIT,
        max_workers: int = 1,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if batch_size < 1 or batch_size > FCM_MULTICAST_LIMIT:
            raise ValueError(f"batch_size must be between 1 and {FCM_MULTICAST_LIMIT}")
        self._sender = sender
        self._batch_size = batch_size
        self._max_workers = max(1, max_workers)
        self._clock = clock

    def batches(self, recipients: Sequence[Recipient]) -> Iterator[List[Recipient]]:
        for start in range(0, len(recipients), self._batch_size):
            yield list(recipients[start : start + self._batch_size])

    def _attempt(self, recipient: Recipient, message: PushMessage, sent_at: datetime) -> DeliveryOutcome:
        try:
            message_id = self._sender.send(message.to_fcm(token=recipient.endpoint, sent_at=sent_at))
        except Exception as exc:
            reason = classify_delivery_error(exc)
            logger.info(
                "Push to user %s failed (%s): %s", recipient.user_id, reason.value, exc
            )
            return DeliveryOutcome(
                recipient=recipient,
                status=DeliveryStatus.FAILED,
                reason=reason,
                error=DeliveryError(
                    str(exc) or exc.__class__.__name__,
                    reason=reason.value,
                    user_id=recipient.user_id,
                ),
            )
        return DeliveryOutcome(
            recipient=recipient,
            status=DeliveryStatus.DELIVERED,
            message_id=message_id,
        )

    def _dispatch_batch(
        self, batch: List[Recipient], message: PushMessage, sent_at: datetime
    ) -> List[DeliveryOutcome]:
        if self._max_workers == 1 or len(batch) == 1:
            return [self._attempt(recipient, message, sent_at) for recipient in batch]
        with ThreadPoolExecutor(max_workers=min(self._max_workers, len(batch))) as pool:
            return list(pool.map(lambda recipient: self._attempt(recipient, message, sent_at), batch))

    def dispatch(self, recipients: Sequence[Recipient], message: PushMessage) -> List[DeliveryOutcome]:
        sent_at = self._clock()
        outcomes: List[DeliveryOutcome] = []
        for index, batch in enumerate(self.batches(recipients), start=1):
            batch_outcomes = self._dispatch_batch(batch, message, sent_at)
            delivered = sum(1 for outcome in batch_outcomes if outcome.delivered)
            logger.info(
                "Batch %s for %s: %s/%s delivered",
                index,
                message.request_id(),
                delivered,
                len(batch),
            )
            outcomes.extend(batch_outcomes)
        return outcomes

    def send_to_topic(self, message: PushMessage, topic: str) -> str:
        return self._sender.send(message.to_fcm(topic=topic, sent_at=self._clock()))
