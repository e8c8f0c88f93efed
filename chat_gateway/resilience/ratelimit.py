"""Fixed-window, non-queuing admission control per provider.

A request either takes a permit from the current window or is rejected
on the spot; nothing ever waits for capacity. Windows roll over lazily:
the first acquire attempt after a window boundary starts a fresh window.

RateLimiterSlot owns the limiter for one provider and rebuilds it when
the configured (permit_limit, window_seconds) pair changes. Permits held
by the old limiter are not carried over.
"""

import logging
import threading
import time
from dataclasses import dataclass

from chat_gateway.errors import RateLimitExceeded

logger = logging.getLogger("gateway.audit")


@dataclass
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_seconds: float


class FixedWindowRateLimiter:
    """Counts permits in fixed windows of window_seconds."""

    def __init__(self, permit_limit: int, window_seconds: float):
        self.permit_limit = permit_limit
        self.window_seconds = window_seconds
        self._lock = threading.Lock()
        self._consumed = 0
        self._window_start = time.monotonic()

    def acquire(self) -> RateLimitResult:
        """Take one permit if the current window has capacity."""
        with self._lock:
            now = time.monotonic()
            if now - self._window_start >= self.window_seconds:
                self._window_start = now
                self._consumed = 0

            reset = self._window_start + self.window_seconds - now

            if self._consumed >= self.permit_limit:
                return RateLimitResult(
                    allowed=False,
                    limit=self.permit_limit,
                    remaining=0,
                    reset_seconds=round(reset, 1),
                )

            self._consumed += 1
            return RateLimitResult(
                allowed=True,
                limit=self.permit_limit,
                remaining=self.permit_limit - self._consumed,
                reset_seconds=round(reset, 1),
            )

    def try_acquire(self) -> bool:
        return self.acquire().allowed


class RateLimiterSlot:
    """Holds the current limiter for one provider, rebuilding it on config change."""

    def __init__(self, provider: str):
        self.provider = provider
        self._lock = threading.Lock()
        # (permit_limit, window_seconds), limiter, published as one tuple
        self._current: tuple[tuple[int, float], FixedWindowRateLimiter] | None = None

    def get_limiter(self, permit_limit: int | None, window_seconds: float | None) -> FixedWindowRateLimiter | None:
        """Return the limiter for this configuration, or None if rate limiting is off."""
        if permit_limit is None or window_seconds is None:
            if self._current is not None:
                with self._lock:
                    self._current = None
            return None

        key = (permit_limit, window_seconds)
        current = self._current
        if current is not None and current[0] == key:
            return current[1]

        with self._lock:
            current = self._current
            if current is not None and current[0] == key:
                return current[1]
            limiter = FixedWindowRateLimiter(permit_limit, window_seconds)
            self._current = (key, limiter)

        logger.info(
            "Rate limiter created",
            extra={"audit_data": {
                "provider": self.provider,
                "permit_limit": permit_limit,
                "window_seconds": window_seconds,
            }},
        )
        return limiter

    def acquire(self, permit_limit: int | None, window_seconds: float | None) -> RateLimitResult | None:
        """Admit one request or raise RateLimitExceeded. Returns None when unlimited."""
        limiter = self.get_limiter(permit_limit, window_seconds)
        if limiter is None:
            return None

        result = limiter.acquire()
        if not result.allowed:
            logger.warning(
                "Rate limit exceeded",
                extra={"audit_data": {
                    "provider": self.provider,
                    "permit_limit": permit_limit,
                    "window_seconds": window_seconds,
                    "retry_after": result.reset_seconds,
                }},
            )
            raise RateLimitExceeded(
                f"Rate limit exceeded. Maximum {permit_limit} requests per {window_seconds} seconds.",
                limit=permit_limit,
                retry_after=result.reset_seconds,
            )
        return result
