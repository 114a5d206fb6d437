from __future__ import annotations

import logging

from .audience import AudienceResolver, AudienceSelector
from .dispatch import DispatchBatcher
from .errors import Result
from .messages import PushMessage
from .outcomes import DeliveryOutcomeTracker, DeliverySummary

logger = logging.getLogger("notifications.pipeline")


class DeliveryPipeline:
    """Resolve an audience, push to every endpoint, then record the outcome."""

    def __init__(
        self,
        resolver: AudienceResolver,
        batcher: DispatchBatcher,
        tracker: DeliveryOutcomeTracker,
    ) -> None:
        self.resolver = resolver
        self.batcher = batcher
        self.tracker = tracker

    def run(self, audience: AudienceSelector, message: PushMessage) -> Result[DeliverySummary]:
        resolved = self.resolver.resolve(audience)
        if not resolved.is_ok:
            return Result.fail(resolved.error)
        recipients = resolved.value.recipients
        logger.info(
            "Sending %s to %s endpoints in audience %s",
            message.request_id(),
            len(recipients),
            audience.value,
        )
        outcomes = self.batcher.dispatch(recipients, message)
        summary = self.tracker.track(
            outcomes,
            request_id=message.request_id(),
            source=message.receipt_source(),
            title=message.title,
            body=message.body,
        )
        return Result.ok(summary)
