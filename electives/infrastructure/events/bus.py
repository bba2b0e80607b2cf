# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""In-memory event bus for allocation notifications.

The allocation service publishes here once a selection change has been
committed; live enrollment counters and audit hooks subscribe. A
subscription key is either an exact event type ("subject.enrollment.updated")
or a shell-style pattern ("selection.*").

Example:
    from electives.infrastructure.events import get_event_bus, EventTypes

    async def refresh_counter(event):
        counters[event.payload["subject_id"]] = event.payload["enrolled_count"]

    get_event_bus().subscribe(EventTypes.Subject.ENROLLMENT_UPDATED, refresh_counter)
"""

import asyncio
import fnmatch
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable
from uuid import uuid4

from electives.utils.datetime import utc_now

logger = logging.getLogger(__name__)

EventHandler = Callable[["EventData"], Awaitable[None]]


@dataclass
class EventData:
    """A published event.

    Attributes:
        event_type: Dotted event name.
        payload: Event body; ids and counts only.
        event_id: Unique id of this publication.
        timestamp: Publication time (UTC).
        delivered: Number of handlers that completed without error.
    """

    event_type: str
    payload: dict[str, Any]
    event_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=utc_now)
    delivered: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Serialize for logging or forwarding."""
        return {
            "event_id": self.event_id,
            "event_type": self.event_type,
            "payload": self.payload,
            "timestamp": self.timestamp.isoformat(),
        }


def _is_pattern(key: str) -> bool:
    return any(ch in key for ch in "*?[")


class EventBus:
    """Single-process async publish/subscribe.

    Handlers of one event run concurrently. A failing handler is logged
    and does not affect the other handlers or the publisher.
    """

    def __init__(self) -> None:
        self._subscriptions: dict[str, list[EventHandler]] = defaultdict(list)
        self._published = 0

    def subscribe(self, key: str, handler: EventHandler) -> None:
        """Register a handler for an event type or pattern."""
        self._subscriptions[key].append(handler)
        logger.debug("Subscribed %s to %s", getattr(handler, "__name__", handler), key)

    def unsubscribe(self, key: str, handler: EventHandler) -> bool:
        """Remove a handler registered under key.

        Returns:
            True if the handler was registered, False otherwise.
        """
        handlers = self._subscriptions.get(key)
        if not handlers or handler not in handlers:
            return False

        handlers.remove(handler)
        if not handlers:
            del self._subscriptions[key]
        return True

    def handlers_for(self, event_type: str) -> list[EventHandler]:
        """Get the handlers an event of this type would be delivered to."""
        matched: list[EventHandler] = []
        for key, handlers in self._subscriptions.items():
            if key == event_type or (_is_pattern(key) and fnmatch.fnmatchcase(event_type, key)):
                matched.extend(handlers)
        return matched

    async def publish(self, event_type: str, payload: dict[str, Any]) -> EventData:
        """Deliver an event to every matching handler.

        Args:
            event_type: Dotted event name.
            payload: Event body.

        Returns:
            The published event, with the count of successful deliveries.
        """
        event = EventData(event_type=event_type, payload=payload)
        self._published += 1

        handlers = self.handlers_for(event_type)
        if not handlers:
            logger.debug("No subscribers for %s", event_type)
            return event

        results = await asyncio.gather(
            *(handler(event) for handler in handlers),
            return_exceptions=True,
        )
        for handler, result in zip(handlers, results):
            if isinstance(result, BaseException):
                logger.error(
                    "Event handler %s failed on %s",
                    getattr(handler, "__name__", handler),
                    event_type,
                    exc_info=result,
                )
            else:
                event.delivered += 1

        return event

    def clear(self) -> None:
        """Drop all subscriptions."""
        self._subscriptions.clear()

    def get_stats(self) -> dict[str, Any]:
        """Get subscription and publication counters."""
        exact = [k for k in self._subscriptions if not _is_pattern(k)]
        patterns = [k for k in self._subscriptions if _is_pattern(k)]
        return {
            "exact_subscriptions": len(exact),
            "pattern_subscriptions": len(patterns),
            "total_handlers": sum(len(h) for h in self._subscriptions.values()),
            "events_published": self._published,
        }


_event_bus: EventBus | None = None


def get_event_bus() -> EventBus:
    """Get the process-wide event bus."""
    global _event_bus
    if _event_bus is None:
        _event_bus = EventBus()
    return _event_bus


def reset_event_bus() -> None:
    """Drop the process-wide event bus and its subscriptions."""
    global _event_bus
    if _event_bus is not None:
        _event_bus.clear()
    _event_bus = None
