"""Bounded retries with exponential backoff and jitter.

An analysis call that fails with a transient error is attempted again after
``base_delay * 2**(attempt-1)`` seconds plus up to 10% random jitter.
Errors whose message says the request can never succeed (``404``,
``not found``, ``unauthorized`` ...) are raised immediately without
consuming the remaining attempts.

Example:
    >>> executor = RetryExecutor()
    >>> result = await executor.execute(lambda: fetch(url), max_attempts=3, base_delay=1.0)

    >>> ctx = RetryContext(ExponentialBackoff(max_attempts=3, base_delay=0.5))
    >>> try:
    ...     await ctx.run_async(lambda: fetch(url))
    ... except Exception:
    ...     print(f"gave up after {ctx.attempts} attempts")
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import TypeVar

from sitegrade.core.errors import AnalysisError, OrchestratorError, utcnow

T = TypeVar("T")

NON_RETRYABLE_PATTERNS: tuple[str, ...] = (
    "validation",
    "404",
    "not found",
    "forbidden",
    "unauthorized",
    "invalid url",
    "authentication",
)


def is_non_retryable(error: BaseException) -> bool:
    """True when retrying ``error`` cannot help.

    Matches the message against :data:`NON_RETRYABLE_PATTERNS`
    (case-insensitive). Classified errors flagged ``retryable=False`` and
    orchestration errors (circuit open, cancellation) are never retried
    either.
    """
    if isinstance(error, OrchestratorError):
        return True
    if isinstance(error, AnalysisError) and not error.retryable:
        return True
    message = str(error).lower()
    return any(pattern in message for pattern in NON_RETRYABLE_PATTERNS)


@dataclass
class ExponentialBackoff:
    """Exponential backoff with additive jitter.

    Delay = base_delay * (multiplier ** attempt) + uniform(0, jitter_ratio * delay)

    The jitter is never negative, so the actual delay is always at least the
    un-jittered exponential value.

    Attributes:
        max_attempts: Total attempts including the first one
        base_delay: Delay before the first retry, in seconds
        multiplier: Exponential multiplier (default: 2)
        jitter_ratio: Upper bound of jitter as a fraction of the delay
        max_delay: Optional cap on the un-jittered delay
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    jitter_ratio: float = 0.1
    max_delay: float | None = None

    def next_delay(self, attempt: int) -> float:
        """Delay after the ``attempt``-th failure (zero-based)."""
        delay = self.base_delay * (self.multiplier ** attempt)
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        if self.jitter_ratio > 0:
            delay += random.uniform(0, delay * self.jitter_ratio)
        return delay

    def should_retry(self, attempts: int, error: BaseException | None = None) -> bool:
        """``attempts`` is the number of attempts already made."""
        if attempts >= self.max_attempts:
            return False
        if error is not None and is_non_retryable(error):
            return False
        return True


@dataclass
class RetryContext:
    """Tracks one retried operation.

    After :meth:`run_async` returns or raises, :attr:`attempts` holds the
    number of attempts made and :attr:`delays` the sleeps taken between
    them.
    """

    strategy: ExponentialBackoff
    on_retry: Callable[[int, Exception, float], None] | None = None
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    attempt: int = field(default=0, init=False)
    last_error: Exception | None = field(default=None, init=False)
    started_at: datetime = field(default_factory=utcnow, init=False)
    delays: list[float] = field(default_factory=list, init=False)
    errors: list[tuple[int, Exception, datetime]] = field(default_factory=list, init=False)

    @property
    def attempts(self) -> int:
        """Number of attempts made."""
        return self.attempt

    @property
    def elapsed_seconds(self) -> float:
        """Total elapsed time since the context was created."""
        return (utcnow() - self.started_at).total_seconds()

    async def run_async(self, func: Callable[[], Awaitable[T]]) -> T:
        """Await ``func()`` until it succeeds or retries are exhausted.

        Raises:
            The last exception raised by ``func``
        """
        while True:
            self.attempt += 1
            try:
                return await func()
            except Exception as e:
                self.last_error = e
                self.errors.append((self.attempt, e, utcnow()))

                if not self.strategy.should_retry(self.attempt, e):
                    raise

                delay = self.strategy.next_delay(self.attempt - 1)
                self.delays.append(delay)

                if self.on_retry:
                    self.on_retry(self.attempt, e, delay)

                await self.sleep(delay)


class RetryExecutor:
    """Runs an async operation under an :class:`ExponentialBackoff` policy."""

    def __init__(self, jitter_ratio: float = 0.1):
        self.jitter_ratio = jitter_ratio

    def context(
        self,
        max_attempts: int,
        base_delay: float,
        on_retry: Callable[[int, Exception, float], None] | None = None,
    ) -> RetryContext:
        """Fresh :class:`RetryContext` for one operation."""
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")
        strategy = ExponentialBackoff(
            max_attempts=max_attempts,
            base_delay=base_delay,
            jitter_ratio=self.jitter_ratio,
        )
        return RetryContext(strategy=strategy, on_retry=on_retry)

    async def execute(
        self,
        op: Callable[[], Awaitable[T]],
        max_attempts: int,
        base_delay: float,
    ) -> T:
        """Run ``op`` with up to ``max_attempts`` tries.

        Args:
            op: Zero-argument coroutine function
            max_attempts: Total attempts, including the first
            base_delay: Seconds to wait before the first retry

        Raises:
            The last error once attempts are exhausted, or immediately for
            a non-retryable error
        """
        return await self.context(max_attempts, base_delay).run_async(op)


__all__ = [
    "NON_RETRYABLE_PATTERNS",
    "is_non_retryable",
    "ExponentialBackoff",
    "RetryContext",
    "RetryExecutor",
]
