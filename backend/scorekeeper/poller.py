from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import List

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from google.api_core import exceptions as google_exceptions

from .audience import parse_audience
from .messages import ScheduledMessage
from .pipeline import DeliveryPipeline
from .schedule import ScheduledNotification, ScheduleStatus, ScheduleStore

POLL_JOB_ID = "process_scheduled_notifications"
STATUS_WRITE_ATTEMPTS = 3

logger = logging.getLogger("notifications.poller")


@dataclass
class PollReport:
    selected: int = 0
    sent: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


class SchedulePoller:
    def __init__(
        self,
        store: ScheduleStore,
        pipeline: DeliveryPipeline,
        *,
        max_entries: int = 10,
        status_write_attempts: int = STATUS_WRITE_ATTEMPTS,
        retry_delay: float = 0.5,
    ) -> None:
        self._store = store
        self._pipeline = pipeline
        self._max_entries = max(1, max_entries)
        self._status_write_attempts = max(1, status_write_attempts)
        self._retry_delay = retry_delay

    def _record(self, entry_id: str, status: ScheduleStatus, **fields) -> None:
        """Write the terminal status, retrying transient Firestore errors.

        The push has already gone out at this point, so leaving the entry
        unprocessed would deliver it again on the next tick.
        """
        for attempt in range(1, self._status_write_attempts + 1):
            try:
                self._store.mark_processed(entry_id, status, **fields).unwrap()
                return
            except google_exceptions.GoogleAPICallError as exc:
                if attempt == self._status_write_attempts:
                    raise
                logger.warning(
                    "Writing %s status for %s failed (attempt %s of %s): %s",
                    status.value,
                    entry_id,
                    attempt,
                    self._status_write_attempts,
                    exc,
                )
                time.sleep(self._retry_delay * attempt)

    def _deliver(self, entry: ScheduledNotification) -> ScheduleStatus:
        try:
            selector = parse_audience(entry.target_audience).unwrap()
            message = ScheduledMessage(
                title=entry.title,
                body=entry.body,
                scheduled_notification_id=entry.id,
                target_audience=selector.value,
            )
            summary = self._pipeline.run(selector, message).unwrap()
        except Exception as exc:
            logger.error("Scheduled notification %s failed: %s", entry.id, exc)
            self._record(entry.id, ScheduleStatus.FAILED, error=str(exc) or exc.__class__.__name__)
            return ScheduleStatus.FAILED

        self._record(entry.id, ScheduleStatus.SENT, summary=summary)
        logger.info(
            "Scheduled notification %s sent: %s delivered, %s failed",
            entry.id,
            summary.total_sent,
            summary.total_failed,
        )
        return ScheduleStatus.SENT

    def tick(self) -> PollReport:
        due = self._store.list_due(limit=self._max_entries).unwrap()
        report = PollReport(selected=len(due))
        if not due:
            return report
        logger.info("Processing %s due scheduled notifications", len(due))

        with ThreadPoolExecutor(max_workers=len(due)) as pool:
            futures = {pool.submit(self._deliver, entry): entry for entry in due}
            wait(futures)

        for future, entry in futures.items():
            try:
                status = future.result()
            except Exception:
                # Status write failed on every attempt; the entry is still unprocessed.
                logger.exception(
                    "Could not record status of scheduled notification %s; it may be selected again",
                    entry.id,
                )
                report.failed.append(entry.id)
                continue
            if status is ScheduleStatus.SENT:
                report.sent.append(entry.id)
            else:
                report.failed.append(entry.id)
        return report

    def run_tick(self) -> None:
        try:
            report = self.tick()
        except Exception:
            logger.exception("Scheduled notification poll failed")
            return
        if report.selected:
            logger.info(
                "Poll finished: %s selected, %s sent, %s failed",
                report.selected,
                len(report.sent),
                len(report.failed),
            )


def start_poll_scheduler(poller: SchedulePoller, *, interval_minutes: int = 5) -> BackgroundScheduler:
    scheduler = BackgroundScheduler(timezone="UTC")
    scheduler.add_job(
        poller.run_tick,
        IntervalTrigger(minutes=interval_minutes),
        id=POLL_JOB_ID,
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    scheduler.start()
    logger.info("Scheduled notification poller running every %s minutes", interval_minutes)
    return scheduler
