"""
Durable storage for failed-login records, one row per identity.

``SqlAttemptStore`` is the production store. Its ``record_failure`` is an
atomic increment-and-fetch: a single UPDATE computes the new counter and
lockout from the stored values, so concurrent failures for the same account
cannot under-count. ``InMemoryAttemptStore`` offers the same contract for
tests and single-process tooling.

Every backing-store failure surfaces as ``StorageUnavailableError``.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, and_, case, delete, literal, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from stageworks.core import get_logger
from stageworks.core.errors import StorageUnavailableError
from stageworks.core.metrics import metrics
from stageworks.db.models import LoginAttempt
from stageworks.security.policy import LockoutPolicy, LoginAttemptRecord

logger = get_logger(__name__)

_MUTABLE_FIELDS = frozenset(
    {"failed_attempts", "lockout_until", "last_attempt_at", "ip_address", "user_agent"}
)


@dataclass(frozen=True)
class PurgeResult:
    """Counts from a cleanup pass."""

    lockouts_cleared: int = 0
    attempts_reset: int = 0

    @property
    def total(self) -> int:
        return self.lockouts_cleared + self.attempts_reset


def _clip_user_agent(user_agent: str | None) -> str | None:
    return user_agent[:512] if user_agent else None


def _validate_changes(changes: dict[str, Any]) -> None:
    unknown = set(changes) - _MUTABLE_FIELDS
    if unknown:
        raise ValueError(f"Unknown login attempt fields: {sorted(unknown)}")
    count = changes.get("failed_attempts")
    if count is not None and (not isinstance(count, int) or count < 1):
        raise ValueError("failed_attempts must be a positive integer")


class AttemptStore(ABC):
    """Keyed record store for ``LoginAttemptRecord``."""

    @abstractmethod
    def get(self, identity: str) -> LoginAttemptRecord | None:
        """Return the record for an identity, or None."""

    @abstractmethod
    def upsert(self, identity: str, **changes: Any) -> LoginAttemptRecord:
        """Create or update the record with the given field changes."""

    @abstractmethod
    def delete(self, identity: str) -> bool:
        """Delete the record. Returns False when there was nothing to delete."""

    @abstractmethod
    def record_failure(
        self,
        identity: str,
        now: datetime,
        policy: LockoutPolicy,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> LoginAttemptRecord:
        """Atomically apply one failed attempt and return the stored record."""

    @abstractmethod
    def list_records(self, limit: int = 100, offset: int = 0) -> list[LoginAttemptRecord]:
        """Return records, most recent failure first."""

    @abstractmethod
    def purge_expired(self, now: datetime, policy: LockoutPolicy) -> PurgeResult:
        """Delete expired lockouts and stale attempt records."""


class SqlAttemptStore(AttemptStore):
    """SQLAlchemy-backed store over the ``login_attempts`` table."""

    def __init__(self, db: Session):
        self.db = db

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as exc:
            self.db.rollback()
            metrics.increment("storage_errors_total")
            logger.error(
                "Login attempt storage failure",
                data={"operation": operation, "error": exc.__class__.__name__},
            )
            raise StorageUnavailableError() from exc

    @staticmethod
    def _to_record(row: LoginAttempt) -> LoginAttemptRecord:
        if row.failed_attempts is None or row.failed_attempts < 1:
            raise StorageUnavailableError("Corrupt login attempt record")
        return LoginAttemptRecord(
            identity=row.identity,
            failed_attempts=int(row.failed_attempts),
            last_attempt_at=row.last_attempt_at,
            lockout_until=row.lockout_until,
            ip_address=row.ip_address,
            user_agent=row.user_agent,
        )

    def _get_row(self, identity: str) -> LoginAttempt | None:
        # populate_existing: UPDATEs bypass the identity map
        stmt = (
            select(LoginAttempt)
            .where(LoginAttempt.identity == identity)
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def get(self, identity: str) -> LoginAttemptRecord | None:
        with self._guard("get"):
            row = self._get_row(identity)
            return self._to_record(row) if row else None

    def upsert(self, identity: str, **changes: Any) -> LoginAttemptRecord:
        _validate_changes(changes)
        if "user_agent" in changes:
            changes["user_agent"] = _clip_user_agent(changes["user_agent"])
        with self._guard("upsert"):
            row = self._get_row(identity)
            if row is None:
                row = LoginAttempt(identity=identity)
                self.db.add(row)
            for field, value in changes.items():
                setattr(row, field, value)
            self.db.commit()
            self.db.refresh(row)
            return self._to_record(row)

    def delete(self, identity: str) -> bool:
        with self._guard("delete"):
            result = self.db.execute(
                delete(LoginAttempt)
                .where(LoginAttempt.identity == identity)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
            return result.rowcount > 0

    def _expired_clause(self, now: datetime, policy: LockoutPolicy):
        return or_(
            and_(LoginAttempt.lockout_until.is_not(None), LoginAttempt.lockout_until <= now),
            and_(
                LoginAttempt.lockout_until.is_(None),
                LoginAttempt.last_attempt_at < policy.stale_before(now),
            ),
        )

    def _increment(
        self,
        identity: str,
        now: datetime,
        policy: LockoutPolicy,
        ip_address: str | None,
        user_agent: str | None,
    ) -> bool:
        next_count = LoginAttempt.failed_attempts + 1
        reaches_limit = next_count >= policy.max_attempts
        values: dict[str, Any] = {
            "failed_attempts": case(
                (reaches_limit, policy.max_attempts), else_=next_count
            ),
            "lockout_until": case(
                (
                    and_(LoginAttempt.lockout_until.is_(None), reaches_limit),
                    literal(policy.lockout_until_from(now), DateTime()),
                ),
                else_=LoginAttempt.lockout_until,
            ),
            "last_attempt_at": now,
            "updated_at": now,
        }
        if ip_address is not None:
            values["ip_address"] = ip_address
        if user_agent is not None:
            values["user_agent"] = _clip_user_agent(user_agent)

        result = self.db.execute(
            update(LoginAttempt)
            .where(LoginAttempt.identity == identity)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount > 0

    def record_failure(
        self,
        identity: str,
        now: datetime,
        policy: LockoutPolicy,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> LoginAttemptRecord:
        with self._guard("record_failure"):
            self.db.execute(
                delete(LoginAttempt)
                .where(LoginAttempt.identity == identity)
                .where(self._expired_clause(now, policy))
                .execution_options(synchronize_session=False)
            )
            self.db.commit()

            # UPDATE first; INSERT only when no row exists. A concurrent
            # INSERT that wins the unique constraint sends us back to UPDATE.
            for _ in range(3):
                if self._increment(identity, now, policy, ip_address, user_agent):
                    break
                try:
                    self.db.add(
                        LoginAttempt(
                            identity=identity,
                            failed_attempts=1,
                            last_attempt_at=now,
                            lockout_until=(
                                policy.lockout_until_from(now)
                                if policy.max_attempts == 1
                                else None
                            ),
                            ip_address=ip_address,
                            user_agent=_clip_user_agent(user_agent),
                        )
                    )
                    self.db.commit()
                    break
                except IntegrityError:
                    self.db.rollback()
            else:
                raise StorageUnavailableError("Could not record login attempt")

            row = self._get_row(identity)
            if row is None:
                raise StorageUnavailableError("Login attempt record vanished")
            return self._to_record(row)

    def list_records(self, limit: int = 100, offset: int = 0) -> list[LoginAttemptRecord]:
        with self._guard("list"):
            stmt = (
                select(LoginAttempt)
                .order_by(LoginAttempt.last_attempt_at.desc())
                .limit(limit)
                .offset(offset)
            )
            return [self._to_record(row) for row in self.db.execute(stmt).scalars().all()]

    def purge_expired(self, now: datetime, policy: LockoutPolicy) -> PurgeResult:
        with self._guard("purge_expired"):
            lockouts = self.db.execute(
                delete(LoginAttempt)
                .where(LoginAttempt.lockout_until.is_not(None))
                .where(LoginAttempt.lockout_until <= now)
                .execution_options(synchronize_session=False)
            )
            stale = self.db.execute(
                delete(LoginAttempt)
                .where(LoginAttempt.lockout_until.is_(None))
                .where(LoginAttempt.last_attempt_at < policy.stale_before(now))
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
            return PurgeResult(
                lockouts_cleared=lockouts.rowcount, attempts_reset=stale.rowcount
            )


class InMemoryAttemptStore(AttemptStore):
    """Process-local store with the same contract, guarded by a lock."""

    def __init__(self) -> None:
        self._records: dict[str, LoginAttemptRecord] = {}
        self._lock = threading.Lock()

    def get(self, identity: str) -> LoginAttemptRecord | None:
        with self._lock:
            return self._records.get(identity)

    def upsert(self, identity: str, **changes: Any) -> LoginAttemptRecord:
        _validate_changes(changes)
        if "user_agent" in changes:
            changes["user_agent"] = _clip_user_agent(changes["user_agent"])
        with self._lock:
            current = self._records.get(identity)
            if current is None:
                changes.setdefault("failed_attempts", 1)
                if "last_attempt_at" not in changes:
                    raise ValueError("last_attempt_at is required for a new record")
                current = LoginAttemptRecord(identity=identity, **changes)
            else:
                current = replace(current, **changes)
            self._records[identity] = current
            return current

    def delete(self, identity: str) -> bool:
        with self._lock:
            return self._records.pop(identity, None) is not None

    def record_failure(
        self,
        identity: str,
        now: datetime,
        policy: LockoutPolicy,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> LoginAttemptRecord:
        with self._lock:
            updated = policy.record_failure(
                self._records.get(identity),
                now,
                identity=identity,
                ip_address=ip_address,
                user_agent=_clip_user_agent(user_agent),
            )
            self._records[identity] = updated
            return updated

    def list_records(self, limit: int = 100, offset: int = 0) -> list[LoginAttemptRecord]:
        with self._lock:
            ordered = sorted(
                self._records.values(), key=lambda r: r.last_attempt_at, reverse=True
            )
        return ordered[offset:offset + limit]

    def purge_expired(self, now: datetime, policy: LockoutPolicy) -> PurgeResult:
        lockouts_cleared = 0
        attempts_reset = 0
        with self._lock:
            for identity, record in list(self._records.items()):
                if not policy.is_expired(record, now):
                    continue
                del self._records[identity]
                if record.lockout_until is not None:
                    lockouts_cleared += 1
                else:
                    attempts_reset += 1
        return PurgeResult(lockouts_cleared=lockouts_cleared, attempts_reset=attempts_reset)
