"""
In-memory event bus implementation.

Events are delivered synchronously, in subscription order, to every
matching handler. A failing handler is logged and skipped; it never stops
delivery to the others and never propagates into the job runner.

Tags:
    sitegrade, events, in-memory, testing, single-process
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass

from sitegrade.core.events import EventHandler, JobEvent, JobEventType
from sitegrade.core.logging import get_logger

__all__ = ["InMemoryEventBus"]

logger = get_logger(__name__)


@dataclass
class Subscription:
    """Internal subscription record."""

    id: str
    pattern: JobEventType | str
    handler: EventHandler


class InMemoryEventBus:
    """In-process event bus.

    Example::

        bus = InMemoryEventBus()
        bus.on("*", lambda event: print(event.event_type.value))
        bus.publish(JobEvent(JobEventType.STARTED, job_id="abc"))
        # Output: started
    """

    def __init__(self) -> None:
        self._subscriptions: dict[str, Subscription] = {}
        self._lock = threading.RLock()

    def publish(self, event: JobEvent) -> None:
        """Call every matching handler, catching handler exceptions."""
        with self._lock:
            handlers = [
                (sub.id, sub.handler)
                for sub in self._subscriptions.values()
                if event.matches(sub.pattern)
            ]

        for sub_id, handler in handlers:
            try:
                handler(event)
            except Exception as e:
                logger.warning(
                    "event_handler_error",
                    subscription_id=sub_id,
                    event_type=event.event_type.value,
                    job_id=event.job_id,
                    error=str(e),
                )

    def on(self, event_type: JobEventType | str, handler: EventHandler) -> str:
        """Subscribe to one event kind, or ``*`` for all of them.

        Raises:
            ValueError: If ``event_type`` is not a known event kind
        """
        pattern: JobEventType | str = (
            event_type if event_type == "*" else JobEventType(event_type)
        )
        sub_id = f"sub_{uuid.uuid4().hex[:12]}"
        with self._lock:
            self._subscriptions[sub_id] = Subscription(
                id=sub_id, pattern=pattern, handler=handler
            )
        return sub_id

    def off(self, subscription_id: str) -> None:
        with self._lock:
            self._subscriptions.pop(subscription_id, None)

    def clear(self) -> None:
        """Drop every subscription."""
        with self._lock:
            self._subscriptions.clear()

    @property
    def subscription_count(self) -> int:
        """Number of active subscriptions."""
        return len(self._subscriptions)
