from datetime import timedelta

from firebase_admin import messaging as admin_messaging
from google.api_core import exceptions as google_exceptions

from scorekeeper.outcomes import receipt_id
from scorekeeper.poller import POLL_JOB_ID, SchedulePoller, start_poll_scheduler

from .fakes import seed_scheduled, seed_user


def test_tick_processes_at_most_ten_due_entries(container, db, clock, sender):
    seed_user(db, "u1", fcmToken="tok-1")
    for i in range(13):
        seed_scheduled(db, f"n{i:02d}", clock() - timedelta(minutes=60 - i))

    report = container.poller.tick()

    assert report.selected == 10
    assert sorted(report.sent) == [f"n{i:02d}" for i in range(10)]
    entries = db.docs("scheduled_notifications")
    assert all(entries[f"n{i:02d}"]["processed"] for i in range(10))
    assert not any(entries[f"n{i:02d}"]["processed"] for i in range(10, 13))

    second = container.poller.tick()
    assert sorted(second.sent) == ["n10", "n11", "n12"]
    assert len(sender.sent) == 13


def test_due_beta_entry_is_delivered_once_and_marked_sent(container, db, clock, sender):
    seed_user(db, "b1", fcmToken="tok-b1", isBetaUser=True)
    seed_user(db, "b2", fcmToken="tok-b2", isBetaUser=True)
    seed_user(db, "b3", isBetaUser=True)
    seed_user(db, "regular", fcmToken="tok-r")
    entry = container.schedule_store.create(
        "Transfer window", "Deadline day", "beta_users", clock() + timedelta(minutes=10)
    ).unwrap()

    assert container.poller.tick().selected == 0
    clock.advance(minutes=11)
    container.poller.tick()
    container.poller.tick()

    assert sorted(sender.tokens) == ["tok-b1", "tok-b2"]
    stored = db.doc("scheduled_notifications", entry.id)
    assert stored["status"] == "sent"
    assert stored["processed"] is True
    assert stored["totalSent"] == 2
    assert stored["totalFailed"] == 0
    receipts = db.docs("notifications")
    assert set(receipts) == {receipt_id("b1", entry.id), receipt_id("b2", entry.id)}
    assert all(r["type"] == "scheduled_notification" for r in receipts.values())


def test_cancelled_entry_is_never_sent(container, db, clock, sender):
    seed_user(db, "u1", fcmToken="tok-1")
    entry = container.schedule_store.create(
        "Lineups", "Starting XI announced", "all_users", clock() + timedelta(minutes=5)
    ).unwrap()

    container.schedule_store.cancel(entry.id, cancelled_by="admin-1").unwrap()
    clock.advance(hours=1)
    report = container.poller.tick()

    assert report.selected == 0
    assert sender.sent == []
    assert db.doc("scheduled_notifications", entry.id)["status"] == "cancelled"


def test_one_failing_entry_does_not_block_the_others(container, db, clock):
    seed_user(db, "u1", fcmToken="tok-1")
    seed_scheduled(db, "good", clock() - timedelta(minutes=2))
    seed_scheduled(db, "empty", clock() - timedelta(minutes=1), targetAudience="beta_subscribers")
    seed_scheduled(db, "bogus", clock() - timedelta(minutes=3), targetAudience="vip")

    report = container.poller.tick()

    assert report.sent == ["good"]
    assert sorted(report.failed) == ["bogus", "empty"]
    entries = db.docs("scheduled_notifications")
    assert entries["empty"]["status"] == "failed"
    assert entries["empty"]["processed"] is True
    assert entries["empty"]["error"] == "no users in selected audience"
    assert entries["bogus"]["status"] == "failed"
    assert entries["good"]["status"] == "sent"


def test_per_endpoint_failures_still_mark_entry_sent(container, db, clock, sender):
    seed_user(db, "u1", fcmToken="tok-1")
    seed_user(db, "u2", fcmToken="tok-2")
    sender.failures["tok-2"] = admin_messaging.UnregisteredError("gone")
    seed_scheduled(db, "n1", clock() - timedelta(minutes=1))

    container.poller.tick()

    stored = db.doc("scheduled_notifications", "n1")
    assert stored["status"] == "sent"
    assert stored["totalSent"] == 1
    assert stored["totalFailed"] == 1
    assert stored["invalidTokens"] == 1
    assert "fcmToken" not in db.doc("users", "u2")


def test_run_tick_logs_and_survives_query_failures(container, db, caplog):
    db.query_errors["scheduled_notifications"] = google_exceptions.ServiceUnavailable("down")

    container.poller.run_tick()

    assert "Scheduled notification poll failed" in caplog.text


def test_scheduler_registers_single_interval_job(container):
    scheduler = start_poll_scheduler(container.poller, interval_minutes=5)
    try:
        job = scheduler.get_job(POLL_JOB_ID)
        assert job is not None
        assert job.trigger.interval == timedelta(minutes=5)
        assert job.max_instances == 1
    finally:
        scheduler.shutdown(wait=False)


def test_status_write_is_retried_without_resending(container, db, clock, sender):
    seed_user(db, "u1", fcmToken="tok-1")
    seed_scheduled(db, "n1", clock() - timedelta(minutes=1))
    db.update_errors["scheduled_notifications"] = [
        google_exceptions.ServiceUnavailable("write failed"),
        google_exceptions.DeadlineExceeded("write timed out"),
    ]
    poller = SchedulePoller(container.schedule_store, container.pipeline, retry_delay=0)

    report = poller.tick()
    again = poller.tick()

    assert report.sent == ["n1"]
    assert again.selected == 0
    assert sender.tokens == ["tok-1"]
    stored = db.doc("scheduled_notifications", "n1")
    assert stored["status"] == "sent"
    assert stored["processed"] is True


def test_status_write_gives_up_after_bounded_attempts(container, db, clock, caplog):
    seed_user(db, "u1", fcmToken="tok-1")
    seed_scheduled(db, "n1", clock() - timedelta(minutes=1))
    errors = [google_exceptions.ServiceUnavailable("write failed") for _ in range(5)]
    db.update_errors["scheduled_notifications"] = errors
    poller = SchedulePoller(
        container.schedule_store, container.pipeline, status_write_attempts=3, retry_delay=0
    )

    report = poller.tick()

    assert report.failed == ["n1"]
    assert len(errors) == 2
    assert db.doc("scheduled_notifications", "n1")["processed"] is False
    assert "Could not record status of scheduled notification n1" in caplog.text
