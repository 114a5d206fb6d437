from google.api_core import exceptions as google_exceptions

from scorekeeper.audience import Recipient
from scorekeeper.dispatch import DeliveryOutcome, DeliveryStatus, FailureReason
from scorekeeper.errors import DeliveryError
from scorekeeper.hygiene import EndpointHygiene
from scorekeeper.outcomes import DeliveryOutcomeTracker, receipt_id

from .fakes import seed_user


def _delivered(uid):
    return DeliveryOutcome(
        recipient=Recipient(uid, f"tok-{uid}"),
        status=DeliveryStatus.DELIVERED,
        message_id=f"msg-{uid}",
    )


def _failed(uid, reason):
    return DeliveryOutcome(
        recipient=Recipient(uid, f"tok-{uid}"),
        status=DeliveryStatus.FAILED,
        reason=reason,
        error=DeliveryError("boom", reason=reason.value, user_id=uid),
    )


def _tracker(db, clock):
    return DeliveryOutcomeTracker(db, EndpointHygiene(db, clock=clock), clock=clock)


def _track(tracker, outcomes, request_id="req-1"):
    return tracker.track(
        outcomes,
        request_id=request_id,
        source="admin_notification",
        title="Final whistle",
        body="Results are in",
    )


def test_counts_and_receipts(db, clock):
    for uid in ("a", "b", "c", "d"):
        seed_user(db, uid, fcmToken=f"tok-{uid}")
    outcomes = [
        _delivered("a"),
        _delivered("b"),
        _failed("c", FailureReason.INVALID_ENDPOINT),
        _failed("d", FailureReason.TRANSIENT),
    ]

    summary = _track(_tracker(db, clock), outcomes)

    assert summary.total_sent == 2
    assert summary.total_failed == 2
    assert summary.total_sent + summary.total_failed == len(outcomes)
    assert summary.invalid_endpoints == 1
    assert summary.receipts_created == 2

    receipts = db.docs("notifications")
    assert set(receipts) == {receipt_id("a", "req-1"), receipt_id("b", "req-1")}
    receipt = receipts[receipt_id("a", "req-1")]
    assert receipt["userId"] == "a"
    assert receipt["type"] == "admin_notification"
    assert receipt["notificationId"] == "req-1"
    assert receipt["read"] is False
    assert receipt["createdAt"] == clock()

    assert "fcmToken" not in db.doc("users", "c")
    assert db.doc("users", "c")["tokenInvalidAt"] == clock()
    assert db.doc("users", "d")["fcmToken"] == "tok-d"


def test_rerunning_same_request_does_not_duplicate_receipts(db, clock):
    tracker = _tracker(db, clock)
    outcomes = [_delivered("a"), _delivered("b")]

    _track(tracker, outcomes)
    again = _track(tracker, outcomes)

    assert len(db.docs("notifications")) == 2
    assert again.receipts_created == 0
    assert again.duplicate_receipts == 2
    assert again.total_sent == 2


def test_same_user_different_requests_get_separate_receipts(db, clock):
    tracker = _tracker(db, clock)

    _track(tracker, [_delivered("a")], request_id="req-1")
    _track(tracker, [_delivered("a")], request_id="req-2")

    assert len(db.docs("notifications")) == 2


def test_receipt_write_failure_does_not_change_sent_count(db, clock):
    db.create_errors["notifications"] = google_exceptions.ServiceUnavailable("firestore down")

    summary = _track(_tracker(db, clock), [_delivered("a"), _delivered("b")])

    assert summary.total_sent == 2
    assert summary.failed_notifications == 2
    assert summary.receipts_created == 0


def test_concurrent_create_counts_as_duplicate(db, clock):
    db.create_errors["notifications"] = google_exceptions.AlreadyExists("raced")

    summary = _track(_tracker(db, clock), [_delivered("a")])

    assert summary.duplicate_receipts == 1
    assert summary.failed_notifications == 0


def test_hygiene_failure_is_not_fatal(db, clock):
    db.commit_errors.append(google_exceptions.ServiceUnavailable("firestore down"))
    summary = _track(_tracker(db, clock), [_failed("gone", FailureReason.INVALID_ENDPOINT)])

    assert summary.invalid_endpoints == 1
    assert summary.total_failed == 1


def test_summary_fields_are_camel_case(db, clock):
    summary = _track(_tracker(db, clock), [_delivered("a")])

    assert summary.to_fields() == {
        "totalSent": 1,
        "totalFailed": 0,
        "invalidTokens": 0,
        "receiptsCreated": 1,
        "duplicateReceipts": 0,
        "failedNotifications": 0,
    }
