from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from .audience import AudienceResolver
from .config import Settings
from .dispatch import DispatchBatcher
from .hygiene import EndpointHygiene
from .notifications import AdminNotificationService
from .outcomes import DeliveryOutcomeTracker
from .pipeline import DeliveryPipeline
from .poller import SchedulePoller
from .premium import PremiumService, ReceiptVerifier, StubReceiptVerifier
from .schedule import ScheduleStore
from .security import SecurityService
from .triggers import ImmediateNotificationTrigger


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Container:
    settings: Settings
    db: Any
    verify_id_token: Callable[[str], Dict[str, Any]]
    pipeline: DeliveryPipeline
    schedule_store: ScheduleStore
    poller: SchedulePoller
    trigger: ImmediateNotificationTrigger
    notifications: AdminNotificationService
    premium: PremiumService
    security: SecurityService


def build_container(
    settings: Settings,
    *,
    db,
    sender,
    verify_id_token: Callable[[str], Dict[str, Any]],
    clock: Callable[[], datetime] = _utcnow,
    receipt_verifier: Optional[ReceiptVerifier] = None,
) -> Container:
    hygiene = EndpointHygiene(db, clock=clock)
    batcher = DispatchBatcher(
        sender,
        batch_size=settings.effective_batch_size,
        max_workers=settings.dispatch_max_workers,
        clock=clock,
    )
    pipeline = DeliveryPipeline(
        AudienceResolver(db, count_total_users=settings.audience_count_total_users),
        batcher,
        DeliveryOutcomeTracker(db, hygiene, clock=clock),
    )
    schedule_store = ScheduleStore(
        db,
        clock=clock,
        allow_cancel_processed=settings.schedule_allow_cancel_processed,
    )
    security = SecurityService(
        db,
        violation_threshold=settings.security_violation_threshold,
        clock=clock,
    )
    verifier = receipt_verifier or StubReceiptVerifier(
        enabled=settings.premium_stub_verifier_enabled,
        period_days=settings.premium_stub_period_days,
        clock=clock,
    )
    return Container(
        settings=settings,
        db=db,
        verify_id_token=verify_id_token,
        pipeline=pipeline,
        schedule_store=schedule_store,
        poller=SchedulePoller(
            schedule_store, pipeline, max_entries=settings.schedule_poll_max_entries
        ),
        trigger=ImmediateNotificationTrigger(
            batcher,
            pipeline,
            title=settings.update_notification_title,
            clock=clock,
        ),
        notifications=AdminNotificationService(
            db,
            pipeline,
            schedule_store,
            update_topic=settings.update_topic,
            schedule_list_limit=settings.schedule_list_limit,
            clock=clock,
        ),
        premium=PremiumService(db, verifier, security, clock=clock),
        security=security,
    )
