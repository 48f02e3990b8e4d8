"""
Structured error types for sitegrade.

Every failure that happens while analysing a target is turned into one
of three closed variants before anything else looks at it:

- **NetworkError:** connectivity, DNS, timeout, HTTP status
- **ParsingError:** malformed or unexpected content shape
- **ServiceError:** a third-party dependency failed (rate limits included)

Each variant carries a stable ``code`` (``TIMEOUT``, ``DNS_FAILURE``,
``HTTP_404`` ...) used for troubleshooting lookups, metrics labels and
circuit-breaker bucketing.

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                       AnalysisError                          │
        │   (kind, code, target, status_code, retryable, cause)        │
        ├──────────────────────────────────────────────────────────────┤
        │  NetworkError       ParsingError         ServiceError        │
        │  (NETWORK)          (PARSING, element)   (SERVICE, service,  │
        │                                           retry_after)       │
        └──────────────────────────────────────────────────────────────┘

        Orchestration errors (never attributed to a target):
          OrchestratorError
            ├── CircuitOpenError      (code CIRCUIT_OPEN)
            ├── JobCancelledError     (code JOB_CANCELLED)
            ├── JobNotFoundError
            ├── JobNotCompletedError
            └── InvalidTransitionError

Examples:
    >>> error = NetworkError("getaddrinfo ENOTFOUND example", code="DNS_FAILURE")
    >>> error.kind
    <ErrorKind.NETWORK: 'network'>
    >>> error.to_dict()["code"]
    'DNS_FAILURE'

Tags:
    error-handling, taxonomy, sitegrade, observability
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(UTC)


class ErrorKind(str, Enum):
    """Closed classification of target-level failures."""

    NETWORK = "network"
    PARSING = "parsing"
    SERVICE = "service"


class AnalysisError(Exception):
    """
    Base exception for every classified target-level failure.

    Subclasses set ``kind`` and ``default_code``. ``retryable`` defaults to
    ``True``; the retry executor additionally refuses to retry messages that
    match its non-retryable patterns, so the flag only ever narrows retries.
    """

    kind: ErrorKind
    default_code: str = "ANALYSIS_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        target: str | None = None,
        status_code: int | None = None,
        retryable: bool = True,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.target = target
        self.status_code = status_code
        self.retryable = retryable
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "kind": self.kind.value,
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.target is not None:
            result["target"] = self.target
        if self.status_code is not None:
            result["status_code"] = self.status_code
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, code={self.code})"


class NetworkError(AnalysisError):
    """Connectivity, DNS, timeout or HTTP-status failure."""

    kind = ErrorKind.NETWORK
    default_code = "NETWORK_ERROR"


class ParsingError(AnalysisError):
    """Content could not be parsed into the expected shape."""

    kind = ErrorKind.PARSING
    default_code = "PARSING_ERROR"

    def __init__(self, message: str, *, element: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.element = element

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.element:
            result["element"] = self.element
        return result


class ServiceError(AnalysisError):
    """A third-party service the analysis depends on failed."""

    kind = ErrorKind.SERVICE
    default_code = "API_ERROR"

    def __init__(
        self,
        message: str,
        *,
        service: str,
        retry_after: int | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.service = service
        self.retry_after = retry_after

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["service"] = self.service
        if self.retry_after is not None:
            result["retry_after"] = self.retry_after
        return result


# =============================================================================
# ORCHESTRATION ERRORS
# =============================================================================


class OrchestratorError(Exception):
    """Base for errors raised by the scheduler and its guards."""

    code: str = "ORCHESTRATOR_ERROR"


class CircuitOpenError(OrchestratorError):
    """Raised when a circuit is open and the call is rejected without running."""

    code = "CIRCUIT_OPEN"

    def __init__(self, key: str, failures: int):
        self.key = key
        self.failures = failures
        super().__init__(
            f"Circuit breaker open for {key}. Too many recent failures ({failures})"
        )


class JobCancelledError(OrchestratorError):
    """Synthetic error recorded on a job when a caller cancels it."""

    code = "JOB_CANCELLED"

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__("Job cancelled by user")


class JobNotFoundError(OrchestratorError, KeyError):
    """No job with the given id is known to the scheduler."""

    code = "JOB_NOT_FOUND"

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")

    def __str__(self) -> str:
        return f"Job not found: {self.job_id}"


class JobNotCompletedError(OrchestratorError):
    """Results were requested for a job that has not completed."""

    code = "JOB_NOT_COMPLETED"

    def __init__(self, job_id: str, status: str):
        self.job_id = job_id
        self.status = status
        super().__init__(f"Job {job_id} not completed (status: {status})")


class InvalidTransitionError(OrchestratorError, ValueError):
    """Raised when an illegal job status transition is attempted."""

    code = "INVALID_TRANSITION"

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Invalid JobStatus transition: {current} → {target}")


# =============================================================================
# ERROR RECORD
# =============================================================================


@dataclass(frozen=True)
class ErrorRecord:
    """A failure as stored on the Job that produced it.

    ``kind`` is ``None`` for failures the classifier could not place in the
    taxonomy (circuit rejections, cancellations, unexpected exceptions).
    Those are recorded but never degraded into a partial result.
    """

    kind: ErrorKind | None
    code: str
    message: str
    target: str | None = None
    attempts: int = 0
    timestamp: datetime = field(default_factory=utcnow)
    user_message: str = ""
    suggested_actions: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        """Serialise for logging / API responses."""
        return {
            "kind": self.kind.value if self.kind else None,
            "code": self.code,
            "message": self.message,
            "target": self.target,
            "attempts": self.attempts,
            "timestamp": self.timestamp.isoformat(),
            "user_message": self.user_message,
            "suggested_actions": list(self.suggested_actions),
        }


def error_code(error: BaseException) -> str:
    """Stable code for any exception, ``UNKNOWN_ERROR`` when it has none."""
    code = getattr(error, "code", None)
    return code if isinstance(code, str) and code else "UNKNOWN_ERROR"


__all__ = [
    "ErrorKind",
    "AnalysisError",
    "NetworkError",
    "ParsingError",
    "ServiceError",
    "OrchestratorError",
    "CircuitOpenError",
    "JobCancelledError",
    "JobNotFoundError",
    "JobNotCompletedError",
    "InvalidTransitionError",
    "ErrorRecord",
    "error_code",
]
