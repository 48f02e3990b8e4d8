"""Error aggregation, severity and alerting.

:class:`ErrorMetrics` is the single sink every target-level failure flows
through.  It keeps totals by error kind and by external service, a rolling
error rate (errors per minute over the last hour), and decides whether a
failure deserves an alert.

Severity rules::

    "authentication" / "authorization" / AUTHENTICATION_ERROR → critical
    > 10 errors of the same kind, or "service unavailable"    → high
    network or parsing error                                  → medium
    anything else                                             → low

An error is alert-worthy when its severity is critical/high, or when the
current error rate exceeds the configured threshold (default 5/min).

Example:
    >>> metrics = ErrorMetrics()
    >>> metrics.record(record)
    >>> metrics.should_alert(error)
    False
"""

from __future__ import annotations

import threading
import time
from collections import deque
from collections.abc import Callable, Iterable
from datetime import datetime
from enum import Enum
from typing import Any

from sitegrade.core.errors import (
    AnalysisError,
    ErrorKind,
    ErrorRecord,
    ServiceError,
    error_code,
    utcnow,
)
from sitegrade.core.logging import get_logger
from sitegrade.core.troubleshooting import get_guide
from sitegrade.observability.metrics import MetricsRegistry

logger = get_logger(__name__)

UNCLASSIFIED = "unclassified"


class ErrorSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


def _kind_of(error: BaseException | ErrorRecord) -> ErrorKind | None:
    if isinstance(error, ErrorRecord):
        return error.kind
    if isinstance(error, AnalysisError):
        return error.kind
    return None


def _type_key(error: BaseException | ErrorRecord) -> str:
    kind = _kind_of(error)
    return kind.value if kind else UNCLASSIFIED


class ErrorMetrics:
    """Thread-safe error counters shared by every runner of a scheduler."""

    def __init__(
        self,
        registry: MetricsRegistry | None = None,
        *,
        alert_rate_threshold: float = 5.0,
        window_seconds: float = 3600.0,
        high_count_threshold: int = 10,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.registry = registry or MetricsRegistry()
        self.alert_rate_threshold = alert_rate_threshold
        self.window_seconds = window_seconds
        self.high_count_threshold = high_count_threshold
        self._clock = clock
        self._lock = threading.Lock()
        self._errors_total = self.registry.counter(
            "sitegrade_errors_total", "Target-level errors by kind and code"
        )
        self._reset_state()

    def _reset_state(self) -> None:
        self._error_count = 0
        self._last_error_at: datetime | None = None
        self._by_type: dict[str, int] = {}
        self._by_service: dict[str, int] = {}
        self._recent: deque[float] = deque()

    def _prune(self, now: float) -> None:
        while self._recent and now - self._recent[0] >= self.window_seconds:
            self._recent.popleft()

    # ── Recording ────────────────────────────────────────────────

    def record(self, record: ErrorRecord, service: str | None = None) -> None:
        """Count one failure."""
        type_key = _type_key(record)
        with self._lock:
            now = self._clock()
            self._error_count += 1
            self._last_error_at = record.timestamp
            self._by_type[type_key] = self._by_type.get(type_key, 0) + 1
            if service:
                self._by_service[service] = self._by_service.get(service, 0) + 1
            self._recent.append(now)
            self._prune(now)
        self._errors_total.labels(kind=type_key, code=record.code).inc()

    def record_error(self, error: BaseException, target: str | None = None) -> ErrorRecord:
        """Build an :class:`ErrorRecord` for ``error`` and count it."""
        record = ErrorRecord(
            kind=_kind_of(error),
            code=error_code(error),
            message=str(error),
            target=target,
        )
        service = error.service if isinstance(error, ServiceError) else None
        self.record(record, service=service)
        return record

    def reset(self) -> None:
        with self._lock:
            self._reset_state()

    # ── Queries ──────────────────────────────────────────────────

    def error_rate(self) -> float:
        """Errors per minute over the trailing window.

        Errors inside the window divided by the minutes they span (at least
        one minute).
        """
        with self._lock:
            now = self._clock()
            self._prune(now)
            if not self._recent:
                return 0.0
            minutes = (now - self._recent[0]) / 60
            return len(self._recent) / max(1.0, minutes)

    def count_for(self, kind: ErrorKind | str) -> int:
        key = kind.value if isinstance(kind, ErrorKind) else kind
        with self._lock:
            return self._by_type.get(key, 0)

    def severity(self, error: BaseException | ErrorRecord) -> ErrorSeverity:
        message = (error.message if isinstance(error, ErrorRecord) else str(error)).lower()
        code = error.code if isinstance(error, ErrorRecord) else error_code(error)
        kind = _kind_of(error)

        if (
            "authentication" in message
            or "authorization" in message
            or code == "AUTHENTICATION_ERROR"
        ):
            return ErrorSeverity.CRITICAL
        if (
            self.count_for(_type_key(error)) > self.high_count_threshold
            or "service unavailable" in message
        ):
            return ErrorSeverity.HIGH
        if kind in (ErrorKind.NETWORK, ErrorKind.PARSING):
            return ErrorSeverity.MEDIUM
        return ErrorSeverity.LOW

    def should_alert(self, error: BaseException | ErrorRecord) -> bool:
        if self.severity(error) in (ErrorSeverity.CRITICAL, ErrorSeverity.HIGH):
            return True
        return self.error_rate() > self.alert_rate_threshold

    def snapshot(self) -> dict[str, Any]:
        rate = self.error_rate()
        with self._lock:
            return {
                "error_count": self._error_count,
                "error_rate": round(rate, 4),
                "last_error_at": self._last_error_at.isoformat() if self._last_error_at else None,
                "errors_by_type": dict(self._by_type),
                "errors_by_service": dict(self._by_service),
            }

    # ── Logging ──────────────────────────────────────────────────

    def log_error(self, error: BaseException | ErrorRecord, **context: Any) -> ErrorSeverity:
        """Log ``error`` at a level matching its severity.

        Returns the computed severity.
        """
        severity = self.severity(error)
        alert = self.should_alert(error)
        code = error.code if isinstance(error, ErrorRecord) else error_code(error)
        message = error.message if isinstance(error, ErrorRecord) else str(error)
        guide = get_guide(code)

        fields = {
            "error_code": code,
            "error_kind": _type_key(error),
            "error_message": message,
            "severity": severity.value,
            "should_alert": alert,
            **context,
        }
        if guide:
            fields["troubleshooting"] = guide.technical_details

        if severity in (ErrorSeverity.CRITICAL, ErrorSeverity.HIGH):
            logger.error("error.recorded", **fields)
        elif severity is ErrorSeverity.MEDIUM:
            logger.warning("error.recorded", **fields)
        else:
            logger.info("error.recorded", **fields)

        if alert:
            logger.error(
                "error.alert",
                alert=True,
                error_code=code,
                severity=severity.value,
                error_rate=round(self.error_rate(), 4),
                **context,
            )
        return severity

    def log_error_summary(self, records: Iterable[ErrorRecord], job_id: str | None = None) -> dict[str, Any]:
        """Log one summary line for a batch of records; returns the summary."""
        by_type: dict[str, int] = {}
        by_severity: dict[str, int] = {}
        total = 0
        for record in records:
            total += 1
            type_key = _type_key(record)
            severity = self.severity(record).value
            by_type[type_key] = by_type.get(type_key, 0) + 1
            by_severity[severity] = by_severity.get(severity, 0) + 1

        summary = {
            "total_errors": total,
            "error_types": by_type,
            "severity_distribution": by_severity,
            "timestamp": utcnow().isoformat(),
        }
        logger.info("error.summary", job_id=job_id, **summary)
        return summary


__all__ = ["ErrorSeverity", "ErrorMetrics", "UNCLASSIFIED"]
