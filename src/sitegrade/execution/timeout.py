"""Per-target timeout enforcement.

The analysis call for one target races a fixed deadline; whichever settles
first wins. A lost race surfaces as :class:`TimeoutExpired`, which the
classifier maps to a ``NetworkError`` with code ``TIMEOUT``.

Example::

    result = await run_with_timeout_async(
        analyze(url, config),
        timeout_seconds=30.0,
        operation=url,
    )

Guardrails:
    - The timed-out coroutine is cancelled by ``asyncio.wait_for``; sync
      analysis functions run in a worker thread that keeps running until it
      returns on its own (threads cannot be killed).
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable
from typing import TypeVar

T = TypeVar("T")


class TimeoutExpired(TimeoutError):
    """Raised when an operation exceeds its deadline.

    Inherits from built-in TimeoutError for broad exception handling.

    Attributes:
        timeout: The timeout value that was exceeded
        elapsed: How long the operation ran before being interrupted
        operation: Name/description of the operation
    """

    code = "TIMEOUT"

    def __init__(
        self,
        timeout: float,
        elapsed: float | None = None,
        operation: str = "operation",
    ):
        self.timeout = timeout
        self.elapsed = elapsed
        self.operation = operation

        # Retry and severity rules match on message text: no operation here.
        msg = f"Analysis timeout after {timeout}s"

        if elapsed is not None:
            msg += f" (ran for {elapsed:.2f}s)"

        super().__init__(msg)


async def run_with_timeout_async(
    awaitable: Awaitable[T],
    timeout_seconds: float,
    operation: str | None = None,
) -> T:
    """Await ``awaitable`` with a deadline.

    Args:
        awaitable: Coroutine or future to await
        timeout_seconds: Maximum execution time
        operation: Name kept on the raised error as ``operation``

    Raises:
        TimeoutExpired: If execution exceeds timeout
        ValueError: If ``timeout_seconds`` is not positive
        Exception: Any exception raised by the awaitable
    """
    if timeout_seconds <= 0:
        raise ValueError(f"Timeout must be positive, got {timeout_seconds}")

    start = time.monotonic()

    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_seconds)
    except TimeoutError:
        elapsed = time.monotonic() - start
        raise TimeoutExpired(
            timeout=timeout_seconds,
            elapsed=elapsed,
            operation=operation or "operation",
        ) from None

