"""
In-memory fixed-window rate limiting.

Each key gets a window that starts at its first counted attempt. Once the
window has elapsed the next call starts a fresh one. State is per process.
"""

from __future__ import annotations

import asyncio
import contextlib
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from stageworks.core import get_logger
from stageworks.core.metrics import metrics

logger = get_logger(__name__)


@dataclass
class RateLimitEntry:
    """Window state for one key. Timestamps are clock milliseconds."""

    attempts: int
    window_start: float
    last_attempt: float


class RateLimiter:
    """Fixed-window counter keyed by an arbitrary string."""

    def __init__(
        self,
        max_attempts: int = 3,
        window_ms: int = 3_600_000,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if window_ms <= 0:
            raise ValueError("window_ms must be positive")
        self.max_attempts = max_attempts
        self.window_ms = window_ms
        self._clock = clock
        self._entries: dict[str, RateLimitEntry] = {}
        self._lock = threading.Lock()

    def _now_ms(self) -> float:
        return self._clock() * 1000

    def _expired(self, entry: RateLimitEntry, now_ms: float) -> bool:
        return now_ms - entry.window_start > self.window_ms

    def is_allowed(self, key: str) -> bool:
        """Count an attempt for ``key`` and report whether it is within the limit."""
        now_ms = self._now_ms()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or self._expired(entry, now_ms):
                self._entries[key] = RateLimitEntry(
                    attempts=1, window_start=now_ms, last_attempt=now_ms
                )
                return True
            if entry.attempts >= self.max_attempts:
                return False
            entry.attempts += 1
            entry.last_attempt = now_ms
            return True

    def get_remaining_attempts(self, key: str) -> int:
        now_ms = self._now_ms()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or self._expired(entry, now_ms):
                return self.max_attempts
            return max(0, self.max_attempts - entry.attempts)

    def get_time_until_reset(self, key: str) -> int:
        """Milliseconds until the key's window ends; 0 when there is no window."""
        now_ms = self._now_ms()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return 0
            return max(0, int(self.window_ms - (now_ms - entry.window_start)))

    def reset(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def cleanup(self) -> int:
        """Drop entries whose window has elapsed. Returns how many were removed."""
        now_ms = self._now_ms()
        with self._lock:
            stale = [key for key, entry in self._entries.items() if self._expired(entry, now_ms)]
            for key in stale:
                del self._entries[key]
            return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class RateLimiterRegistry:
    """Named limiters for one application, plus their periodic cleanup task."""

    def __init__(
        self,
        verification: RateLimiter,
        admin: RateLimiter,
        requests: RateLimiter | None = None,
        cleanup_interval_seconds: float = 3600,
    ):
        self.verification = verification
        self.admin = admin
        self.requests = requests
        self.cleanup_interval_seconds = cleanup_interval_seconds
        self._task: asyncio.Task | None = None

    @classmethod
    def from_settings(cls, settings) -> RateLimiterRegistry:
        requests = None
        if settings.rate_limit_rpm > 0:
            requests = RateLimiter(settings.rate_limit_rpm, 60_000)
        return cls(
            verification=RateLimiter(
                settings.rate_limit_max_attempts, settings.rate_limit_window_ms
            ),
            admin=RateLimiter(
                settings.admin_rate_limit_max_attempts,
                settings.admin_rate_limit_window_ms,
            ),
            requests=requests,
            cleanup_interval_seconds=settings.rate_limit_cleanup_interval_seconds,
        )

    def limiters(self) -> dict[str, RateLimiter]:
        named = {"verification": self.verification, "admin": self.admin}
        if self.requests is not None:
            named["requests"] = self.requests
        return named

    def cleanup(self) -> int:
        """Run cleanup on every limiter and refresh the key gauge."""
        removed = sum(limiter.cleanup() for limiter in self.limiters().values())
        metrics.set_gauge(
            "rate_limit_keys", sum(len(limiter) for limiter in self.limiters().values())
        )
        if removed:
            logger.debug("Rate limit entries cleaned up", data={"removed": removed})
        return removed

    async def _run_cleanup(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval_seconds)
            self.cleanup()

    def start(self) -> None:
        """Start the periodic cleanup task on the running event loop."""
        if self._task is None:
            self._task = asyncio.create_task(self._run_cleanup())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
