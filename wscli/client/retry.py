"""Retry classification and exponential backoff with jitter."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from wscli.client.errors import ApiError, AuthenticationFailedError, RateLimitExceededError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 1.0
DEFAULT_MAX_DELAY = 32.0


class Outcome(str, Enum):
    SUCCESS = "success"
    RETRYABLE = "retryable"
    REFRESH_AUTH = "refresh_auth"
    TERMINAL = "terminal"


@dataclass
class RetryAttempt:
    """Per-call retry bookkeeping; discarded once the call resolves."""

    index: int = 0
    elapsed_delay: float = 0.0
    last_outcome: Outcome | None = None
    last_error: ApiError | None = None


class RetryPolicy:
    """Classifies attempts and computes backoff.

    Delay before retry ``n`` (1-based) is ``min(base_delay * 2**(n-1), max_delay)``
    plus jitter drawn from ``[0, delay)``; a Retry-After hint is a lower bound.
    """

    def __init__(
        self,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        base_delay: float = DEFAULT_BASE_DELAY,
        max_delay: float = DEFAULT_MAX_DELAY,
        multiplier: float = 2.0,
        jitter: Callable[[], float] = random.random,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if base_delay < 0 or max_delay < 0:
            raise ValueError("delays must be non-negative")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.multiplier = multiplier
        self.jitter = jitter
        self.sleep = sleep

    def classify(self, status: int | None) -> Outcome:
        """Classify an HTTP status; ``None`` means the transport failed."""
        if status is None:
            return Outcome.RETRYABLE
        if 200 <= status < 300:
            return Outcome.SUCCESS
        if status == 401:
            return Outcome.REFRESH_AUTH
        if status == 429 or status >= 500:
            return Outcome.RETRYABLE
        return Outcome.TERMINAL

    def classify_error(self, error: ApiError) -> Outcome:
        if isinstance(error, AuthenticationFailedError) and error.status == 401:
            return Outcome.REFRESH_AUTH
        return Outcome.RETRYABLE if error.retryable else Outcome.TERMINAL

    def backoff(self, attempt: int) -> float:
        """Delay before the retry that follows ``attempt``, without jitter."""
        exponent = max(0, attempt - 1)
        return min(self.base_delay * (self.multiplier ** exponent), self.max_delay)

    def compute_delay(self, attempt: int, retry_after: float | None = None) -> float:
        delay = self.backoff(attempt)
        delay += delay * self.jitter()
        if retry_after is not None:
            delay = max(delay, retry_after)
        return delay

    def should_retry(self, outcome: Outcome, attempt: int) -> bool:
        return outcome is Outcome.RETRYABLE and attempt < self.max_attempts

    async def wait(self, state: RetryAttempt, delay: float) -> None:
        state.elapsed_delay += delay
        await self.sleep(delay)

    async def run(self, operation: Callable[[], Awaitable[T]], description: str = "operation") -> T:
        """Run ``operation`` until it succeeds, fails terminally, or attempts run out.

        Retryable failures are ApiErrors whose ``retryable`` flag is set.
        """
        state = RetryAttempt()
        while True:
            state.index += 1
            try:
                return await operation()
            except ApiError as exc:
                state.last_error = exc
                state.last_outcome = self.classify_error(exc)
                if not self.should_retry(state.last_outcome, state.index):
                    raise
                retry_after = exc.retry_after if isinstance(exc, RateLimitExceededError) else None
                delay = self.compute_delay(state.index, retry_after)
                logger.warning(
                    "%s failed (%s), retrying in %.2fs (attempt %d/%d)",
                    description, exc.code.value, delay, state.index + 1, self.max_attempts,
                )
                await self.wait(state, delay)
