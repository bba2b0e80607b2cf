# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Event infrastructure: in-memory event bus and event type constants.

Quick Start:
    from electives.infrastructure.events import get_event_bus, EventTypes

    event_bus = get_event_bus()
    event_bus.subscribe(EventTypes.Subject.ENROLLMENT_UPDATED, my_handler)
"""

from electives.infrastructure.events.bus import (
    EventBus,
    EventData,
    EventHandler,
    get_event_bus,
    reset_event_bus,
)
from electives.infrastructure.events.types import EventPatterns, EventTypes

__all__ = [
    # Event Bus
    "EventBus",
    "EventData",
    "EventHandler",
    "get_event_bus",
    "reset_event_bus",
    # Event Types
    "EventTypes",
    "EventPatterns",
]
