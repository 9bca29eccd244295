"""Per-service token-bucket rate limiting.

Buckets are shared by every call a process makes against the same service,
so pagination loops and batch calls are throttled in aggregate.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimit:
    """Burst capacity and sustained refill rate (tokens per second)."""

    capacity: float
    refill_rate: float

    def __post_init__(self) -> None:
        if self.capacity < 1:
            raise ValueError("capacity must be at least 1")
        if self.refill_rate <= 0:
            raise ValueError("refill_rate must be positive")


class TokenBucket:
    """Token bucket with lazy refill.

    Tokens accrue from elapsed monotonic time at ``refill_rate`` and never
    exceed ``capacity``. Waiters hold the lock while sleeping, so a burst after
    idle accrual can take at most ``capacity`` tokens.
    """

    def __init__(
        self,
        capacity: float,
        refill_rate: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        name: str = "bucket",
    ):
        limit = RateLimit(capacity, refill_rate)
        self.capacity = limit.capacity
        self.refill_rate = limit.refill_rate
        self.name = name
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(limit.capacity)
        self._last_refill = clock()
        self._lock = asyncio.Lock()

    @classmethod
    def from_limit(cls, limit: RateLimit, **kwargs: Any) -> "TokenBucket":
        return cls(limit.capacity, limit.refill_rate, **kwargs)

    @property
    def tokens(self) -> float:
        self._refill()
        return self._tokens

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self._last_refill
        if elapsed > 0:
            self._tokens = min(self.capacity, self._tokens + elapsed * self.refill_rate)
        self._last_refill = now

    def try_acquire(self) -> bool:
        """Take a token without waiting.

        Returns False when the bucket is empty or a waiting ``acquire`` holds it,
        so a non-blocking caller never jumps ahead of a queued one.
        """
        if self._lock.locked():
            return False
        self._refill()
        if self._tokens >= 1:
            self._tokens -= 1
            return True
        return False

    async def acquire(self) -> None:
        """Wait until a token is available, then take it."""
        async with self._lock:
            while True:
                self._refill()
                if self._tokens >= 1:
                    self._tokens -= 1
                    return
                wait = (1 - self._tokens) / self.refill_rate
                logger.debug("Rate limit reached for %s, waiting %.3fs", self.name, wait)
                await self._sleep(wait)


class RateLimiter:
    """Registry of one TokenBucket per upstream service."""

    def __init__(
        self,
        limits: dict[str, RateLimit],
        default: RateLimit | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.limits = dict(limits)
        self.default = default or RateLimit(capacity=10, refill_rate=10)
        self._clock = clock
        self._sleep = sleep
        self._buckets: dict[str, TokenBucket] = {}

    def bucket(self, service: str) -> TokenBucket:
        bucket = self._buckets.get(service)
        if bucket is None:
            limit = self.limits.get(service, self.default)
            bucket = TokenBucket.from_limit(limit, clock=self._clock, sleep=self._sleep, name=service)
            self._buckets[service] = bucket
        return bucket

    async def acquire(self, service: str) -> None:
        await self.bucket(service).acquire()
