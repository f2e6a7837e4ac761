"""Tests for the lockout management command."""

from datetime import timedelta

from stageworks.cli import main
from stageworks.core.time import utcnow
from stageworks.security import LockoutPolicy, SqlAttemptStore


def lock(db_session, email):
    store = SqlAttemptStore(db_session)
    for _ in range(5):
        store.record_failure(email, utcnow(), LockoutPolicy(), ip_address="10.1.2.3")


def test_show_without_record(migrated_db, clean_attempts, capsys):
    assert main(["show", "quiet@example.com"]) == 0
    assert "no failed attempts" in capsys.readouterr().out


def test_show_locked_account(db_session, clean_attempts, capsys):
    lock(db_session, "locked@example.com")

    assert main(["show", "Locked@Example.com"]) == 0

    out = capsys.readouterr().out
    assert "failed_attempts: 5/5" in out
    assert "locked for 15 minutes" in out
    assert "10.1.2.3" in out


def test_show_is_read_only(db_session, clean_attempts, capsys):
    store = SqlAttemptStore(db_session)
    store.upsert(
        "old@example.com",
        failed_attempts=2,
        last_attempt_at=utcnow() - timedelta(hours=2),
    )

    assert main(["show", "old@example.com"]) == 0

    assert "stale" in capsys.readouterr().out
    assert store.get("old@example.com") is not None


def test_clear(db_session, clean_attempts, capsys):
    lock(db_session, "locked@example.com")

    assert main(["clear", "locked@example.com"]) == 0

    assert "Cleared lockout for locked@example.com" in capsys.readouterr().out
    assert SqlAttemptStore(db_session).get("locked@example.com") is None


def test_cleanup(db_session, clean_attempts, capsys):
    store = SqlAttemptStore(db_session)
    store.upsert(
        "expired@example.com",
        failed_attempts=5,
        last_attempt_at=utcnow() - timedelta(hours=1),
        lockout_until=utcnow() - timedelta(minutes=30),
    )
    lock(db_session, "active@example.com")

    assert main(["cleanup"]) == 0

    assert "Cleared 1 expired lockouts" in capsys.readouterr().out
    assert store.get("active@example.com") is not None


def test_invalid_email_exits_nonzero(migrated_db, capsys):
    assert main(["show", "not-an-email"]) == 1
    assert "Invalid email address" in capsys.readouterr().err


def test_quiet_suppresses_output(db_session, clean_attempts, capsys):
    lock(db_session, "locked@example.com")
    assert main(["--quiet", "clear", "locked@example.com"]) == 0
    assert capsys.readouterr().out == ""
