"""Sliding-window circuit breaker keyed by operation.

Every analysis call is guarded by a key (by default the analysis function's
qualified name).  Failures for a key are counted while they stay recent;
once ``threshold`` recent failures have accumulated the circuit is open and
calls fail fast with :class:`~sitegrade.core.errors.CircuitOpenError`
without invoking the operation (and therefore without retrying it).

A failure count is recent only while ``now - last_failure < window``.  Stale
entries read as zero (lazy expiry, no background sweep); when every tracked
key has gone stale the registry drops all entries at once, so a circuit can
never stay open forever.

Example:
    >>> breakers = CircuitBreakerRegistry(threshold=3, window_seconds=300)
    >>> result = await breakers.guard("analyze_url", lambda: analyze(url))

The registry is owned by one scheduler and shared by all of its runners.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, TypeVar

from sitegrade.core.errors import CircuitOpenError, utcnow
from sitegrade.core.logging import get_logger

T = TypeVar("T")

logger = get_logger(__name__)


@dataclass
class CircuitState:
    """Failure bookkeeping for one operation key.

    Attributes:
        key: Operation identity
        failures: Failures recorded since the entry was (re)started
        last_failure: Monotonic time of the latest failure
        last_failure_at: Wall-clock time of the latest failure
        rejected: Calls rejected while the circuit was open
    """

    key: str
    failures: int = 0
    last_failure: float = 0.0
    last_failure_at: datetime = field(default_factory=utcnow)
    rejected: int = 0

    def is_recent(self, now: float, window: float) -> bool:
        return now - self.last_failure < window

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "failures": self.failures,
            "last_failure_at": self.last_failure_at.isoformat(),
            "rejected": self.rejected,
        }


class CircuitBreakerRegistry:
    """Per-key failure counters over a trailing window.

    Thread-safe: runners on the event loop and sync analysis functions in
    worker threads may record failures concurrently.
    """

    def __init__(
        self,
        threshold: int = 3,
        window_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if threshold < 1:
            raise ValueError(f"threshold must be >= 1, got {threshold}")
        if window_seconds <= 0:
            raise ValueError(f"window_seconds must be positive, got {window_seconds}")
        self.threshold = threshold
        self.window_seconds = window_seconds
        self._clock = clock
        self._states: dict[str, CircuitState] = {}
        self._lock = threading.RLock()

    def _expire(self, now: float) -> None:
        """Drop every entry once all of them have aged out."""
        if self._states and not any(
            state.is_recent(now, self.window_seconds) for state in self._states.values()
        ):
            logger.debug("circuit.registry_reset", keys=len(self._states))
            self._states.clear()

    def recent_failures(self, key: str) -> int:
        """Failures for ``key`` still inside the window (0 when stale)."""
        with self._lock:
            now = self._clock()
            self._expire(now)
            state = self._states.get(key)
            if state is None or not state.is_recent(now, self.window_seconds):
                return 0
            return state.failures

    def is_open(self, key: str, threshold: int | None = None) -> bool:
        return self.recent_failures(key) >= (threshold or self.threshold)

    def record_failure(self, key: str) -> int:
        """Count one failure for ``key``; returns the recent count."""
        with self._lock:
            now = self._clock()
            state = self._states.get(key)
            if state is None:
                state = self._states[key] = CircuitState(key=key)
            elif not state.is_recent(now, self.window_seconds):
                state.failures = 0
            state.failures += 1
            state.last_failure = now
            state.last_failure_at = utcnow()
            return state.failures

    def reset(self, key: str | None = None) -> None:
        """Forget ``key``, or every key when ``key`` is None."""
        with self._lock:
            if key is None:
                self._states.clear()
            else:
                self._states.pop(key, None)

    def snapshot(self) -> dict[str, dict[str, Any]]:
        """Recent entries keyed by operation, with an ``open`` flag."""
        with self._lock:
            now = self._clock()
            self._expire(now)
            result = {}
            for key, state in self._states.items():
                if not state.is_recent(now, self.window_seconds):
                    continue
                entry = state.to_dict()
                entry["open"] = state.failures >= self.threshold
                result[key] = entry
            return result

    async def guard(
        self,
        key: str,
        fn: Callable[[], Awaitable[T]],
        threshold: int | None = None,
    ) -> T:
        """Await ``fn()`` unless the circuit for ``key`` is open.

        Args:
            key: Operation identity
            fn: Zero-argument coroutine function (usually the retried call)
            threshold: Per-call-site override of the registry threshold

        Raises:
            CircuitOpenError: Recent failures reached the threshold; ``fn``
                was not called
            Exception: Whatever ``fn`` raised (after counting the failure)
        """
        limit = threshold or self.threshold
        with self._lock:
            failures = self.recent_failures(key)
            if failures >= limit:
                self._states[key].rejected += 1
                logger.warning("circuit.open", key=key, failures=failures, threshold=limit)
                raise CircuitOpenError(key, failures)

        try:
            return await fn()
        except Exception:
            count = self.record_failure(key)
            logger.debug("circuit.failure_recorded", key=key, failures=count)
            raise


__all__ = ["CircuitState", "CircuitBreakerRegistry"]
