"""
Login security service.

Combines an ``AttemptStore`` with a ``LockoutPolicy``. Lockouts are keyed by
account email only; the client IP is recorded for display but is never part
of the key.

Storage failures propagate as ``StorageUnavailableError``. Callers must treat
them as a denial, never as "not locked".
"""

from __future__ import annotations

import math
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from stageworks.core import get_logger
from stageworks.core.metrics import metrics
from stageworks.core.time import utcnow
from stageworks.security.attempt_store import AttemptStore, PurgeResult
from stageworks.security.identity import mask_identity, normalize_identity
from stageworks.security.policy import LockoutPolicy

logger = get_logger(__name__)


def format_time_remaining(milliseconds: int) -> str:
    """Human text for a remaining lockout, rounded up to whole minutes."""
    minutes = max(1, math.ceil(milliseconds / 60_000))
    return f"{minutes} minute{'s' if minutes != 1 else ''}"


@dataclass(frozen=True)
class LockoutStatus:
    """Result of a lockout check."""

    locked: bool
    lockout_until: datetime | None = None
    remaining_attempts: int = 0
    time_remaining_ms: int = 0

    @property
    def retry_after_seconds(self) -> int:
        return max(1, math.ceil(self.time_remaining_ms / 1000)) if self.locked else 0

    @property
    def time_remaining(self) -> str:
        return format_time_remaining(self.time_remaining_ms) if self.locked else ""


@dataclass(frozen=True)
class LockoutInfo:
    """Details of an active lockout, for admins and tooling."""

    lockout_until: datetime
    time_remaining: str
    failed_attempts: int
    last_attempt_at: datetime
    ip_address: str | None = None
    locked: bool = True

    def to_dict(self) -> dict:
        return {
            "locked": self.locked,
            "lockout_until": self.lockout_until.isoformat(),
            "time_remaining": self.time_remaining,
            "failed_attempts": self.failed_attempts,
            "last_attempt_at": self.last_attempt_at.isoformat(),
            "ip_address": self.ip_address,
        }


@dataclass(frozen=True)
class NotLocked:
    """The account is not locked."""

    remaining_attempts: int
    locked: bool = False

    def to_dict(self) -> dict:
        return {"locked": self.locked, "remaining_attempts": self.remaining_attempts}


class LoginSecurityService:
    """Failed-login tracking and lockout for one store."""

    def __init__(
        self,
        store: AttemptStore,
        policy: LockoutPolicy | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.policy = policy or LockoutPolicy()
        self.clock = clock

    def _locked_status(self, lockout_until: datetime, now: datetime) -> LockoutStatus:
        remaining_ms = int((lockout_until - now).total_seconds() * 1000)
        return LockoutStatus(
            locked=True,
            lockout_until=lockout_until,
            remaining_attempts=0,
            time_remaining_ms=max(0, remaining_ms),
        )

    def check_lockout_status(
        self, email: str, ip_address: str | None = None
    ) -> LockoutStatus:
        """
        Return whether the account may attempt a login right now.

        Expired and stale records are deleted. A record that reached the
        attempt limit without a lockout gets one persisted.
        """
        identity = normalize_identity(email)
        now = self.clock()
        record = self.store.get(identity)
        decision = self.policy.evaluate(record, now)

        if decision.expired:
            self.store.delete(identity)
            logger.info(
                "Expired login attempt record cleared",
                data={"identity": mask_identity(identity)},
            )
            record = None

        if decision.must_lock:
            self.store.upsert(identity, lockout_until=decision.lockout_until)
            metrics.increment("lockouts_total")
            logger.warning(
                "Account locked",
                data={"identity": mask_identity(identity), "ip_address": ip_address},
            )

        if not decision.allowed:
            return self._locked_status(decision.lockout_until, now)

        return LockoutStatus(
            locked=False,
            remaining_attempts=self.policy.remaining_attempts(record, now),
        )

    def record_failed_attempt(
        self,
        email: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> LockoutStatus:
        """Record one failed login and return the resulting status."""
        identity = normalize_identity(email)
        now = self.clock()
        record = self.store.record_failure(
            identity, now, self.policy, ip_address=ip_address, user_agent=user_agent
        )
        metrics.increment("login_failures_total")

        locked = record.lockout_until is not None and now < record.lockout_until
        if locked and self.policy.locked_by_last_attempt(record):
            metrics.increment("lockouts_total")
            logger.warning(
                "Account locked after repeated failures",
                data={
                    "identity": mask_identity(identity),
                    "failed_attempts": record.failed_attempts,
                    "ip_address": ip_address,
                },
            )
        else:
            logger.info(
                "Failed login attempt recorded",
                data={
                    "identity": mask_identity(identity),
                    "failed_attempts": record.failed_attempts,
                },
            )

        if locked:
            return self._locked_status(record.lockout_until, now)
        return LockoutStatus(
            locked=False,
            remaining_attempts=self.policy.remaining_attempts(record, now),
        )

    def clear_lockout(self, email: str, ip_address: str | None = None) -> None:
        """Forget all failures for the account. Safe to call repeatedly."""
        identity = normalize_identity(email)
        if self.store.delete(identity):
            metrics.increment("lockouts_cleared_total")
            logger.info(
                "Login attempt record cleared",
                data={"identity": mask_identity(identity), "ip_address": ip_address},
            )

    def get_lockout_info(
        self, email: str, ip_address: str | None = None
    ) -> LockoutInfo | NotLocked:
        """
        Describe the current lockout, if any.

        Read-only: expired or stale records are reported as not locked but
        left in place, and a pending lock is reported without persisting it.
        """
        identity = normalize_identity(email)
        now = self.clock()
        record = self.store.get(identity)
        decision = self.policy.evaluate(record, now)
        if decision.allowed:
            return NotLocked(remaining_attempts=self.policy.remaining_attempts(record, now))

        status = self._locked_status(decision.lockout_until, now)
        return LockoutInfo(
            lockout_until=status.lockout_until,
            time_remaining=status.time_remaining,
            failed_attempts=record.failed_attempts,
            last_attempt_at=record.last_attempt_at,
            ip_address=record.ip_address,
        )

    def cleanup_expired_records(self) -> PurgeResult:
        """Delete expired lockouts and stale attempt records."""
        result = self.store.purge_expired(self.clock(), self.policy)
        if result.lockouts_cleared:
            metrics.increment("lockouts_cleared_total", result.lockouts_cleared)
        logger.info(
            "Expired login attempt records purged",
            data={
                "lockouts_cleared": result.lockouts_cleared,
                "attempts_reset": result.attempts_reset,
            },
        )
        return result
