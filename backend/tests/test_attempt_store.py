"""Tests for the login attempt stores (SQL and in-memory)."""

import threading
from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from stageworks.core.errors import StorageUnavailableError
from stageworks.security.attempt_store import InMemoryAttemptStore, SqlAttemptStore
from stageworks.security.policy import LockoutPolicy

NOW = datetime(2026, 3, 1, 9, 0, 0)
POLICY = LockoutPolicy(max_attempts=5, lockout_duration_ms=900_000, attempt_reset_timeout_ms=900_000)


@pytest.fixture(params=["sql", "memory"])
def store(request):
    if request.param == "memory":
        return InMemoryAttemptStore()
    request.getfixturevalue("clean_attempts")
    return SqlAttemptStore(request.getfixturevalue("db_session"))


class TestBasicOperations:
    def test_get_missing_returns_none(self, store):
        assert store.get("nobody@example.com") is None

    def test_upsert_creates_and_updates(self, store):
        created = store.upsert("user@example.com", failed_attempts=2, last_attempt_at=NOW)
        assert created.failed_attempts == 2
        assert created.lockout_until is None

        until = NOW + timedelta(minutes=15)
        updated = store.upsert("user@example.com", lockout_until=until)
        assert updated.failed_attempts == 2
        assert updated.lockout_until == until
        assert store.get("user@example.com") == updated

    def test_upsert_rejects_unknown_fields(self, store):
        with pytest.raises(ValueError):
            store.upsert("user@example.com", password="nope")

    def test_upsert_rejects_non_positive_count(self, store):
        with pytest.raises(ValueError):
            store.upsert("user@example.com", failed_attempts=0, last_attempt_at=NOW)

    def test_delete_is_idempotent(self, store):
        store.upsert("user@example.com", failed_attempts=1, last_attempt_at=NOW)
        assert store.delete("user@example.com") is True
        assert store.delete("user@example.com") is False
        assert store.get("user@example.com") is None


class TestRecordFailure:
    def test_counts_up_and_locks_at_limit(self, store):
        for expected in range(1, 5):
            rec = store.record_failure("user@example.com", NOW, POLICY, ip_address="10.0.0.1")
            assert rec.failed_attempts == expected
            assert rec.lockout_until is None

        rec = store.record_failure("user@example.com", NOW, POLICY)
        assert rec.failed_attempts == 5
        assert rec.lockout_until == NOW + timedelta(minutes=15)
        assert rec.ip_address == "10.0.0.1"

    def test_never_exceeds_limit_and_keeps_lockout(self, store):
        for _ in range(5):
            store.record_failure("user@example.com", NOW, POLICY)
        later = NOW + timedelta(minutes=1)
        rec = store.record_failure("user@example.com", later, POLICY)
        assert rec.failed_attempts == 5
        assert rec.lockout_until == NOW + timedelta(minutes=15)
        assert rec.last_attempt_at == later

    def test_expired_lockout_restarts(self, store):
        for _ in range(5):
            store.record_failure("user@example.com", NOW, POLICY)
        rec = store.record_failure("user@example.com", NOW + timedelta(minutes=16), POLICY)
        assert rec.failed_attempts == 1
        assert rec.lockout_until is None

    def test_stale_record_restarts(self, store):
        store.record_failure("user@example.com", NOW, POLICY)
        store.record_failure("user@example.com", NOW, POLICY)
        rec = store.record_failure("user@example.com", NOW + timedelta(minutes=20), POLICY)
        assert rec.failed_attempts == 1

    def test_user_agent_is_truncated(self, store):
        rec = store.record_failure("user@example.com", NOW, POLICY, user_agent="x" * 2000)
        assert len(rec.user_agent) == 512


class TestListingAndPurge:
    def test_list_records_most_recent_first(self, store):
        store.record_failure("a@example.com", NOW, POLICY)
        store.record_failure("b@example.com", NOW + timedelta(seconds=5), POLICY)
        identities = [r.identity for r in store.list_records()]
        assert identities == ["b@example.com", "a@example.com"]
        assert [r.identity for r in store.list_records(limit=1, offset=1)] == ["a@example.com"]

    def test_purge_expired(self, store):
        for _ in range(5):
            store.record_failure("locked-old@example.com", NOW - timedelta(minutes=20), POLICY)
        for _ in range(5):
            store.record_failure("locked-now@example.com", NOW, POLICY)
        store.record_failure("stale@example.com", NOW - timedelta(minutes=30), POLICY)
        store.record_failure("fresh@example.com", NOW, POLICY)

        result = store.purge_expired(NOW, POLICY)

        assert result.lockouts_cleared == 1
        assert result.attempts_reset == 1
        assert result.total == 2
        assert store.get("locked-old@example.com") is None
        assert store.get("stale@example.com") is None
        assert store.get("locked-now@example.com") is not None
        assert store.get("fresh@example.com") is not None


class TestSqlFailures:
    @pytest.fixture
    def broken_session(self, tmp_path):
        # A database without the login_attempts table
        engine = create_engine(f"sqlite:///{tmp_path / 'empty.db'}")
        session = sessionmaker(bind=engine)()
        yield session
        session.close()
        engine.dispose()

    @pytest.mark.parametrize(
        "operation",
        [
            lambda s: s.get("user@example.com"),
            lambda s: s.delete("user@example.com"),
            lambda s: s.record_failure("user@example.com", NOW, POLICY),
            lambda s: s.purge_expired(NOW, POLICY),
            lambda s: s.list_records(),
        ],
    )
    def test_database_errors_become_storage_unavailable(self, broken_session, operation):
        with pytest.raises(StorageUnavailableError) as exc_info:
            operation(SqlAttemptStore(broken_session))
        assert exc_info.value.status_code == 503


class TestConcurrentFailures:
    """Threads with their own sessions against the file-backed test database."""

    def _hammer(self, policy, threads=8, calls=20):
        from stageworks.db import get_session_factory

        factory = get_session_factory()
        errors: list[Exception] = []
        barrier = threading.Barrier(threads)

        def worker():
            session = factory()
            store = SqlAttemptStore(session)
            try:
                barrier.wait()
                for _ in range(calls):
                    store.record_failure("shared@example.com", NOW, policy)
            except Exception as exc:
                errors.append(exc)
            finally:
                session.close()

        workers = [threading.Thread(target=worker) for _ in range(threads)]
        for t in workers:
            t.start()
        for t in workers:
            t.join()
        return errors

    def test_no_failure_is_lost(self, clean_attempts, db_session):
        policy = LockoutPolicy(max_attempts=1000)
        errors = self._hammer(policy, threads=8, calls=20)

        assert errors == []
        rec = SqlAttemptStore(db_session).get("shared@example.com")
        assert rec.failed_attempts == 160
        assert rec.lockout_until is None

    def test_count_is_clamped_at_limit(self, clean_attempts, db_session):
        errors = self._hammer(POLICY, threads=8, calls=5)

        assert errors == []
        rec = SqlAttemptStore(db_session).get("shared@example.com")
        assert rec.failed_attempts == POLICY.max_attempts
        assert rec.lockout_until == NOW + timedelta(minutes=15)
