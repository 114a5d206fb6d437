from scorekeeper.maintenance import backfill_active_flag

from .fakes import seed_user


def test_backfill_only_touches_users_without_flag(db, clock):
    seed_user(db, "old", fcmToken="tok")
    seed_user(db, "active", isActive=True)
    seed_user(db, "inactive", isActive=False)

    assert backfill_active_flag(db, clock=clock) == 1

    assert db.doc("users", "old") == {"fcmToken": "tok", "isActive": True, "isActiveBackfilledAt": clock()}
    assert db.doc("users", "inactive")["isActive"] is False
    assert "isActiveBackfilledAt" not in db.doc("users", "active")


def test_dry_run_writes_nothing(db, clock):
    seed_user(db, "old")

    assert backfill_active_flag(db, clock=clock, dry_run=True) == 1
    assert db.doc("users", "old") == {}
    assert db.commits == []


def test_backfill_commits_in_chunks_of_400(db, clock):
    for i in range(850):
        seed_user(db, f"u{i}")

    assert backfill_active_flag(db, clock=clock) == 850
    assert db.commits == [400, 400, 50]
