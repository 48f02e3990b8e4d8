"""Labelled in-process metrics.

Counters, gauges and histograms keyed by an immutable label set, collected
by a :class:`MetricsRegistry` that a scheduler owns.  The registry can be
rendered in Prometheus text format for scraping or dumped as dicts for
``JobScheduler.stats()``.

Example:
    >>> registry = MetricsRegistry()
    >>> job_metrics = JobMetrics(registry)
    >>> job_metrics.job_finished("completed")
    >>> registry.counter("sitegrade_jobs_total").labels(status="completed").value
    1.0
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class Labels:
    """Immutable, order-independent label set."""

    items: tuple[tuple[str, str], ...] = ()

    @classmethod
    def from_dict(cls, d: dict[str, str] | None) -> Labels:
        if not d:
            return cls()
        return cls(tuple(sorted((k, str(v)) for k, v in d.items())))

    def to_dict(self) -> dict[str, str]:
        return dict(self.items)

    def render(self) -> str:
        """Prometheus label block, empty string when unlabelled."""
        if not self.items:
            return ""
        return "{" + ",".join(f'{k}="{v}"' for k, v in self.items) + "}"


class Metric(ABC):
    """Base class for metrics."""

    type_name = "untyped"

    def __init__(self, name: str, description: str = ""):
        self.name = name
        self.description = description
        self._lock = threading.Lock()

    @abstractmethod
    def collect(self) -> list[dict[str, Any]]:
        """Collect metric values for export."""
        ...


class _ValueMetric(Metric):
    """Counter/gauge storage: one float per label set."""

    def __init__(self, name: str, description: str = ""):
        super().__init__(name, description)
        self._values: dict[Labels, float] = {}

    def _add(self, labels: Labels, value: float) -> None:
        with self._lock:
            self._values[labels] = self._values.get(labels, 0.0) + value

    def _get(self, labels: Labels) -> float:
        with self._lock:
            return self._values.get(labels, 0.0)

    def collect(self) -> list[dict[str, Any]]:
        with self._lock:
            return [
                {"name": self.name, "type": self.type_name, "labels": labels.to_dict(), "value": value}
                for labels, value in self._values.items()
            ]


class Counter(_ValueMetric):
    """Monotonically increasing count (errors, finished jobs)."""

    type_name = "counter"

    def labels(self, **kwargs: str) -> CounterChild:
        return CounterChild(self, Labels.from_dict(kwargs))

    def inc(self, value: float = 1.0) -> None:
        self.labels().inc(value)


class CounterChild:
    """Counter with fixed labels."""

    def __init__(self, counter: Counter, labels: Labels):
        self._counter = counter
        self._labels = labels

    def inc(self, value: float = 1.0) -> None:
        if value < 0:
            raise ValueError("Counter can only increase")
        self._counter._add(self._labels, value)

    @property
    def value(self) -> float:
        return self._counter._get(self._labels)


class Gauge(_ValueMetric):
    """Value that can go up or down (running jobs)."""

    type_name = "gauge"

    def labels(self, **kwargs: str) -> GaugeChild:
        return GaugeChild(self, Labels.from_dict(kwargs))

    def set(self, value: float) -> None:
        self.labels().set(value)

    def inc(self, value: float = 1.0) -> None:
        self.labels().inc(value)

    def dec(self, value: float = 1.0) -> None:
        self.labels().inc(-value)

    @property
    def value(self) -> float:
        return self.labels().value


class GaugeChild:
    """Gauge with fixed labels."""

    def __init__(self, gauge: Gauge, labels: Labels):
        self._gauge = gauge
        self._labels = labels

    def set(self, value: float) -> None:
        with self._gauge._lock:
            self._gauge._values[self._labels] = value

    def inc(self, value: float = 1.0) -> None:
        self._gauge._add(self._labels, value)

    def dec(self, value: float = 1.0) -> None:
        self._gauge._add(self._labels, -value)

    @property
    def value(self) -> float:
        return self._gauge._get(self._labels)


class Histogram(Metric):
    """Distribution of observed values (per-target durations)."""

    type_name = "histogram"

    DEFAULT_BUCKETS = (0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, float("inf"))

    def __init__(
        self,
        name: str,
        description: str = "",
        buckets: tuple[float, ...] | None = None,
    ):
        super().__init__(name, description)
        self._buckets = buckets or self.DEFAULT_BUCKETS
        self._data: dict[Labels, dict[str, Any]] = {}

    def _empty(self) -> dict[str, Any]:
        return {"buckets": dict.fromkeys(self._buckets, 0), "sum": 0.0, "count": 0}

    def observe(self, value: float, **labels: str) -> None:
        key = Labels.from_dict(labels)
        with self._lock:
            data = self._data.setdefault(key, self._empty())
            data["sum"] += value
            data["count"] += 1
            for bucket in self._buckets:
                if value <= bucket:
                    data["buckets"][bucket] += 1

    def data(self, **labels: str) -> dict[str, Any]:
        with self._lock:
            return self._data.get(Labels.from_dict(labels), self._empty())

    def collect(self) -> list[dict[str, Any]]:
        with self._lock:
            return [
                {
                    "name": self.name,
                    "type": self.type_name,
                    "labels": labels.to_dict(),
                    "buckets": dict(data["buckets"]),
                    "sum": data["sum"],
                    "count": data["count"],
                }
                for labels, data in self._data.items()
            ]


class MetricsRegistry:
    """Get-or-create store of named metrics."""

    def __init__(self) -> None:
        self._metrics: dict[str, Metric] = {}
        self._lock = threading.Lock()

    def _get_or_create(self, name: str, factory: type[Metric], **kwargs: Any) -> Any:
        with self._lock:
            metric = self._metrics.get(name)
            if metric is None:
                metric = self._metrics[name] = factory(name, **kwargs)
            elif not isinstance(metric, factory):
                raise TypeError(f"metric '{name}' already registered as {metric.type_name}")
            return metric

    def counter(self, name: str, description: str = "") -> Counter:
        return self._get_or_create(name, Counter, description=description)

    def gauge(self, name: str, description: str = "") -> Gauge:
        return self._get_or_create(name, Gauge, description=description)

    def histogram(
        self,
        name: str,
        description: str = "",
        buckets: tuple[float, ...] | None = None,
    ) -> Histogram:
        return self._get_or_create(name, Histogram, description=description, buckets=buckets)

    def collect(self) -> list[dict[str, Any]]:
        with self._lock:
            metrics = list(self._metrics.values())
        results: list[dict[str, Any]] = []
        for metric in metrics:
            results.extend(metric.collect())
        return results

    def export_prometheus(self) -> str:
        """Render every metric in Prometheus text exposition format."""
        lines = []
        for data in self.collect():
            name = data["name"]
            labels = Labels.from_dict(data["labels"])
            label_str = labels.render()

            if data["type"] in ("counter", "gauge"):
                lines.append(f"{name}{label_str} {data['value']}")
                continue

            for bucket, count in data["buckets"].items():
                le = "+Inf" if bucket == float("inf") else str(bucket)
                bucket_labels = Labels(labels.items + (("le", le),)).render()
                lines.append(f"{name}_bucket{bucket_labels} {count}")
            lines.append(f"{name}_sum{label_str} {data['sum']}")
            lines.append(f"{name}_count{label_str} {data['count']}")

        return "\n".join(lines)


class JobMetrics:
    """Metrics the scheduler and runners update."""

    def __init__(self, registry: MetricsRegistry | None = None):
        self.registry = registry or MetricsRegistry()

        self.jobs_total = self.registry.counter(
            "sitegrade_jobs_total", "Jobs that reached a terminal status"
        )
        self.running_jobs = self.registry.gauge(
            "sitegrade_running_jobs", "Jobs currently running"
        )
        self.target_duration = self.registry.histogram(
            "sitegrade_target_duration_seconds", "Time spent analysing one target"
        )

    def job_started(self) -> None:
        self.running_jobs.inc()

    def job_finished(self, status: str, was_running: bool = False) -> None:
        self.jobs_total.labels(status=status).inc()
        if was_running:
            self.running_jobs.dec()

    def target_finished(self, duration: float, outcome: str) -> None:
        self.target_duration.observe(duration, outcome=outcome)


__all__ = [
    "Labels",
    "Metric",
    "Counter",
    "Gauge",
    "Histogram",
    "MetricsRegistry",
    "JobMetrics",
]
