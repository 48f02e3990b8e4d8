"""Job lifecycle events.

Why This Package Exists
-----------------------
The scheduler and its runners must tell callers (the CLI progress line,
a web layer, tests) what is happening to a job without importing them.
A closed set of event kinds plus a small publish/subscribe protocol keeps
producers and observers decoupled.

Usage::

    from sitegrade.core.events import JobEventType
    from sitegrade.core.events.memory import InMemoryEventBus

    bus = InMemoryEventBus()

    def on_progress(event):
        print(event.job_id, event.payload["progress"])

    sub_id = bus.on(JobEventType.PROGRESS, on_progress)

Delivery is synchronous: ``publish`` returns once every subscriber has
been called, so events for one job reach a given subscriber in emission
order.

Modules
-------
memory      InMemoryEventBus -- synchronous, single-process
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from sitegrade.core.errors import utcnow

__all__ = [
    "JobEventType",
    "JobEvent",
    "EventBus",
    "EventHandler",
]


# ── Event Model ──────────────────────────────────────────────────────────


class JobEventType(str, Enum):
    """Closed set of job lifecycle events."""

    STARTED = "started"
    PROGRESS = "progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class JobEvent:
    """One lifecycle notification for a job.

    Attributes:
        event_type: Which lifecycle step happened
        job_id: Job the event belongs to
        payload: Event-specific data (``progress``, ``completed_count``,
            ``total_count``, ``current_target`` for progress events;
            ``error`` for failed/cancelled)
        timestamp: When the event was emitted (UTC)
        event_id: Unique event identifier
    """

    event_type: JobEventType
    job_id: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def matches(self, pattern: JobEventType | str) -> bool:
        """``*`` matches everything, otherwise the event kind must be equal."""
        if pattern == "*":
            return True
        return self.event_type == JobEventType(pattern)


# ── Type Aliases ─────────────────────────────────────────────────────────

EventHandler = Callable[[JobEvent], None]


# ── EventBus Protocol ────────────────────────────────────────────────────


@runtime_checkable
class EventBus(Protocol):
    """Protocol for job event buses."""

    def publish(self, event: JobEvent) -> None:
        """Deliver ``event`` to every matching subscriber before returning."""
        ...

    def on(self, event_type: JobEventType | str, handler: EventHandler) -> str:
        """Subscribe ``handler``; returns a subscription id."""
        ...

    def off(self, subscription_id: str) -> None:
        """Remove a subscription (unknown ids are ignored)."""
        ...
