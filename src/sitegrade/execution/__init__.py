"""Resilience primitives wrapped around every analysis call.

Modules
-------
retry            RetryExecutor, ExponentialBackoff, non-retryable patterns
circuit_breaker  CircuitBreakerRegistry -- sliding-window fail-fast
timeout          run_with_timeout_async, TimeoutExpired
degradation      DegradationPolicy, PartialResult, PartialCreditTable
"""

from sitegrade.execution.circuit_breaker import CircuitBreakerRegistry, CircuitState
from sitegrade.execution.degradation import DegradationPolicy, PartialCreditTable, PartialResult
from sitegrade.execution.retry import (
    NON_RETRYABLE_PATTERNS,
    ExponentialBackoff,
    RetryContext,
    RetryExecutor,
    is_non_retryable,
)
from sitegrade.execution.timeout import TimeoutExpired, run_with_timeout_async

__all__ = [
    "NON_RETRYABLE_PATTERNS",
    "CircuitBreakerRegistry",
    "CircuitState",
    "DegradationPolicy",
    "ExponentialBackoff",
    "PartialCreditTable",
    "PartialResult",
    "RetryContext",
    "RetryExecutor",
    "TimeoutExpired",
    "is_non_retryable",
    "run_with_timeout_async",
]
