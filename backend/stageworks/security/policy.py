"""
Lockout policy.

Pure decision logic mapping a failed-attempt record to allow/deny and
lockout-expiry decisions. No I/O happens here; the store and the service
act on the returned decisions.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta


@dataclass(frozen=True)
class LoginAttemptRecord:
    """Failed-attempt state for one identity."""

    identity: str
    failed_attempts: int
    last_attempt_at: datetime
    lockout_until: datetime | None = None
    ip_address: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True)
class Decision:
    """Outcome of evaluating a record.

    ``expired`` asks the caller to delete the record; ``must_lock`` asks it
    to persist ``lockout_until``.
    """

    allowed: bool
    lockout_until: datetime | None = None
    expired: bool = False
    must_lock: bool = False


@dataclass(frozen=True)
class LockoutPolicy:
    """Counter-with-expiry lockout rules."""

    max_attempts: int = 5
    lockout_duration_ms: int = 900_000
    attempt_reset_timeout_ms: int = 900_000

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.lockout_duration_ms <= 0:
            raise ValueError("lockout_duration_ms must be positive")
        if self.attempt_reset_timeout_ms <= 0:
            raise ValueError("attempt_reset_timeout_ms must be positive")

    @classmethod
    def from_settings(cls, settings) -> LockoutPolicy:
        return cls(
            max_attempts=settings.max_attempts,
            lockout_duration_ms=settings.lockout_duration_ms,
            attempt_reset_timeout_ms=settings.attempt_reset_timeout_ms,
        )

    @property
    def lockout_duration(self) -> timedelta:
        return timedelta(milliseconds=self.lockout_duration_ms)

    @property
    def attempt_reset_timeout(self) -> timedelta:
        return timedelta(milliseconds=self.attempt_reset_timeout_ms)

    def lockout_until_from(self, now: datetime) -> datetime:
        """Lockout expiry for a lock triggered at ``now``."""
        return now + self.lockout_duration

    def stale_before(self, now: datetime) -> datetime:
        """Records whose last failure precedes this instant are stale."""
        return now - self.attempt_reset_timeout

    def is_expired(self, record: LoginAttemptRecord, now: datetime) -> bool:
        """True once the record no longer counts: lockout over, or attempts stale."""
        if record.lockout_until is not None:
            return now >= record.lockout_until
        return record.last_attempt_at < self.stale_before(now)

    def locked_by_last_attempt(self, record: LoginAttemptRecord) -> bool:
        """
        True when the most recent failure is the one that set the lockout.

        Both timestamps come from the same write, so the comparison survives
        backends that drop sub-second precision.
        """
        if record.lockout_until is None:
            return False
        gap = record.lockout_until - record.last_attempt_at
        return abs(gap - self.lockout_duration) < timedelta(seconds=1)

    def evaluate(self, record: LoginAttemptRecord | None, now: datetime) -> Decision:
        """Decide whether a login attempt for this record may proceed."""
        if record is None:
            return Decision(allowed=True)

        if record.lockout_until is not None:
            if now < record.lockout_until:
                # Checking status never extends the lockout
                return Decision(allowed=False, lockout_until=record.lockout_until)
            return Decision(allowed=True, expired=True)

        if self.is_expired(record, now):
            return Decision(allowed=True, expired=True)

        if record.failed_attempts >= self.max_attempts:
            return Decision(
                allowed=False,
                lockout_until=self.lockout_until_from(now),
                must_lock=True,
            )

        return Decision(allowed=True)

    def record_failure(
        self,
        record: LoginAttemptRecord | None,
        now: datetime,
        identity: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> LoginAttemptRecord:
        """
        Apply one failed attempt.

        Absent, expired and stale records restart at one attempt. The counter
        is clamped to ``max_attempts``; reaching it sets ``lockout_until``.
        An active lockout is left untouched.
        """
        if record is None or self.is_expired(record, now):
            key = identity if identity is not None else (record.identity if record else None)
            if key is None:
                raise ValueError("identity is required when no record exists")
            lockout_until = self.lockout_until_from(now) if self.max_attempts == 1 else None
            return LoginAttemptRecord(
                identity=key,
                failed_attempts=1,
                last_attempt_at=now,
                lockout_until=lockout_until,
                ip_address=ip_address,
                user_agent=user_agent,
            )

        count = min(record.failed_attempts + 1, self.max_attempts)
        lockout_until = record.lockout_until
        if lockout_until is None and count >= self.max_attempts:
            lockout_until = self.lockout_until_from(now)

        return replace(
            record,
            failed_attempts=count,
            last_attempt_at=now,
            lockout_until=lockout_until,
            ip_address=ip_address if ip_address is not None else record.ip_address,
            user_agent=user_agent if user_agent is not None else record.user_agent,
        )

    def remaining_attempts(self, record: LoginAttemptRecord | None, now: datetime) -> int:
        """Failures left before lockout."""
        if record is None or self.is_expired(record, now):
            return self.max_attempts
        if record.lockout_until is not None:
            return 0
        return max(0, self.max_attempts - record.failed_attempts)
