"""Metrics and error aggregation."""

from sitegrade.observability.error_metrics import ErrorMetrics, ErrorSeverity
from sitegrade.observability.metrics import (
    Counter,
    Gauge,
    Histogram,
    JobMetrics,
    MetricsRegistry,
)

__all__ = [
    "Counter",
    "ErrorMetrics",
    "ErrorSeverity",
    "Gauge",
    "Histogram",
    "JobMetrics",
    "MetricsRegistry",
]
