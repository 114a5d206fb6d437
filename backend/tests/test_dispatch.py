import pytest
from firebase_admin import exceptions as firebase_exceptions
from firebase_admin import messaging as admin_messaging

from scorekeeper.audience import Recipient
from scorekeeper.dispatch import (
    DeliveryStatus,
    DispatchBatcher,
    FailureReason,
    classify_delivery_error,
)
from scorekeeper.errors import ErrorKind
from scorekeeper.messages import AppUpdateMessage, GeneralMessage, ScheduledMessage

from .fakes import RecordingSender


def _recipients(count):
    return [Recipient(user_id=f"user-{i}", endpoint=f"token-{i}") for i in range(count)]


def _message():
    return GeneralMessage(
        title="Match day",
        body="Your league table was updated",
        notification_id="general-1",
        target_audience="all_users",
    )


def test_every_endpoint_gets_an_outcome_despite_failures(clock):
    sender = RecordingSender(
        failures={
            "token-0": admin_messaging.UnregisteredError("not registered"),
            "token-3": firebase_exceptions.UnavailableError("try later"),
            "token-4": ValueError("bad payload"),
            "token-9": admin_messaging.SenderIdMismatchError("other sender"),
        }
    )
    recipients = _recipients(10)

    outcomes = DispatchBatcher(sender, batch_size=3, clock=clock).dispatch(recipients, _message())

    assert len(outcomes) == 10
    assert [o.recipient for o in outcomes] == recipients
    assert sender.tokens == [r.endpoint for r in recipients]
    failed = {o.recipient.endpoint: o.reason for o in outcomes if o.status is DeliveryStatus.FAILED}
    assert failed == {
        "token-0": FailureReason.INVALID_ENDPOINT,
        "token-3": FailureReason.TRANSIENT,
        "token-4": FailureReason.TRANSIENT,
        "token-9": FailureReason.INVALID_ENDPOINT,
    }
    gone = outcomes[0].error
    assert gone.kind is ErrorKind.DELIVERY
    assert gone.details == {"reason": "invalid_endpoint", "user_id": "user-0"}
    delivered = [o for o in outcomes if o.delivered]
    assert len(delivered) == 6
    assert all(o.message_id for o in delivered)


def test_1200_endpoints_are_split_into_500_500_200(clock):
    sender = RecordingSender()
    batcher = DispatchBatcher(sender, clock=clock)
    recipients = _recipients(1200)

    assert [len(batch) for batch in batcher.batches(recipients)] == [500, 500, 200]

    outcomes = batcher.dispatch(recipients, _message())
    assert len(outcomes) == 1200
    assert len(sender.sent) == 1200
    assert len(set(sender.tokens)) == 1200


def test_pooled_dispatch_keeps_order_and_accounting(clock):
    sender = RecordingSender(failures={"token-5": admin_messaging.UnregisteredError("gone")})
    recipients = _recipients(40)

    outcomes = DispatchBatcher(sender, batch_size=16, max_workers=4, clock=clock).dispatch(
        recipients, _message()
    )

    assert [o.recipient for o in outcomes] == recipients
    assert sorted(sender.tokens) == sorted(r.endpoint for r in recipients)
    assert [o.recipient.endpoint for o in outcomes if not o.delivered] == ["token-5"]


@pytest.mark.parametrize("batch_size", [0, 501])
def test_batch_size_is_bounded_by_fcm_limit(batch_size):
    with pytest.raises(ValueError):
        DispatchBatcher(RecordingSender(), batch_size=batch_size)


def test_message_is_addressed_per_token_with_string_data(clock):
    sender = RecordingSender()
    message = AppUpdateMessage.build(
        notification_id="admin-7",
        new_version="2.4.0",
        update_message="Faster scoreboard",
        download_url="https://example.com/app.apk",
        force_update=True,
        title="New update",
    )

    DispatchBatcher(sender, clock=clock).dispatch([Recipient("u1", "tok-a")], message)

    sent = sender.sent[0]
    assert sent.token == "tok-a"
    assert sent.topic is None
    assert sent.notification.title == "New update"
    assert sent.notification.body == "Version 2.4.0 • Faster scoreboard"
    assert sent.data["force_update"] == "true"
    assert sent.data["type"] == "app_update"
    assert sent.data["timestamp"] == clock().isoformat()
    assert all(isinstance(value, str) for value in sent.data.values())
    assert sent.android.notification.channel_id == "update_notifications"
    assert sent.apns.payload.aps.category == "UPDATE_NOTIFICATION"


def test_send_to_topic_raises_provider_errors(clock):
    sender = RecordingSender(failures={"app_updates_beta": firebase_exceptions.UnavailableError("down")})
    batcher = DispatchBatcher(sender, clock=clock)

    with pytest.raises(firebase_exceptions.UnavailableError):
        batcher.send_to_topic(_message(), "app_updates_beta")
    assert sender.sent[0].topic == "app_updates_beta"


def test_classify_delivery_error():
    assert classify_delivery_error(admin_messaging.UnregisteredError("x")) is FailureReason.INVALID_ENDPOINT
    assert classify_delivery_error(firebase_exceptions.InvalidArgumentError("x")) is FailureReason.TRANSIENT
    assert classify_delivery_error(RuntimeError("x")) is FailureReason.TRANSIENT


def test_each_message_kind_carries_its_own_id_and_type(clock):
    scheduled = ScheduledMessage(
        title="Kick-off",
        body="Derby starts in 15 minutes",
        scheduled_notification_id="sched-3",
        target_audience="beta_users",
    )

    general = _message().to_fcm(token="tok-a", sent_at=clock())
    timed = scheduled.to_fcm(topic="all_users", sent_at=clock())

    assert _message().request_id() == "general-1"
    assert general.data["type"] == "general_notification"
    assert general.data["notificationId"] == "general-1"
    assert scheduled.request_id() == "sched-3"
    assert scheduled.receipt_source() == "scheduled_notification"
    assert timed.data["type"] == "scheduled_notification"
    assert timed.data["targetAudience"] == "beta_users"
    assert timed.topic == "all_users"
