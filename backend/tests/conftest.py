from datetime import datetime, timezone

import pytest

from scorekeeper.config import Settings
from scorekeeper.container import build_container

from .fakes import FakeFirestore, FrozenClock, RecordingSender

ID_TOKENS = {
    "admin-token": {"uid": "admin-1", "admin": True},
    "staff-token": {"uid": "staff-1"},
    "user-token": {"uid": "user-1"},
}


def fake_verify_id_token(token):
    try:
        return dict(ID_TOKENS[token])
    except KeyError:
        raise ValueError("Token verification failed") from None


@pytest.fixture
def clock():
    return FrozenClock(datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def db():
    return FakeFirestore()


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        enable_schedule_poller=False,
        enable_admin_notification_watch=False,
        admin_uids="",
    )


@pytest.fixture
def container(settings, db, sender, clock):
    return build_container(
        settings,
        db=db,
        sender=sender,
        verify_id_token=fake_verify_id_token,
        clock=clock,
    )
