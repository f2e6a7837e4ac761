"""Login lockout, identity handling and rate limiting."""

from stageworks.security.attempt_store import (
    AttemptStore,
    InMemoryAttemptStore,
    PurgeResult,
    SqlAttemptStore,
)
from stageworks.security.identity import mask_identity, normalize_identity
from stageworks.security.policy import Decision, LockoutPolicy, LoginAttemptRecord
from stageworks.security.rate_limiter import (
    RateLimitEntry,
    RateLimiter,
    RateLimiterRegistry,
)
from stageworks.security.service import (
    LockoutInfo,
    LockoutStatus,
    LoginSecurityService,
    NotLocked,
    format_time_remaining,
)

__all__ = [
    # Storage
    "AttemptStore",
    "InMemoryAttemptStore",
    "PurgeResult",
    "SqlAttemptStore",
    # Identity
    "mask_identity",
    "normalize_identity",
    # Policy
    "Decision",
    "LockoutPolicy",
    "LoginAttemptRecord",
    # Rate limiting
    "RateLimitEntry",
    "RateLimiter",
    "RateLimiterRegistry",
    # Service
    "LockoutInfo",
    "LockoutStatus",
    "LoginSecurityService",
    "NotLocked",
    "format_time_remaining",
]
