# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Enrollment window clock.

Pure functions deriving an elective's open/closed state from its optional
start and end timestamps. Safe to call from any task or thread.
"""

from datetime import datetime
from typing import Protocol

from electives.models.allocation import WindowState
from electives.utils.datetime import ensure_utc


class Windowed(Protocol):
    """Anything carrying an enrollment window."""

    start_date: datetime | None
    end_date: datetime | None


def window_state(elective: Windowed, now: datetime) -> WindowState:
    """Get the window state of an elective at an instant.

    The window is closed before start_date and after end_date; both bounds
    are inclusive. Once past end_date the elective is closed for good, so
    that check wins over the start bound.

    Args:
        elective: Elective (or any object with start_date/end_date).
        now: Instant to evaluate. Naive values are taken as UTC.

    Returns:
        The WindowState at now.
    """
    start = ensure_utc(elective.start_date)
    end = ensure_utc(elective.end_date)
    now = ensure_utc(now)

    if start is None and end is None:
        return WindowState.ALWAYS_OPEN
    if end is not None and now > end:
        return WindowState.CLOSED_AFTER
    if start is not None and now < start:
        return WindowState.CLOSED_BEFORE
    return WindowState.OPEN


def next_transition(elective: Windowed, now: datetime) -> datetime | None:
    """Get the next instant at which the window state changes.

    Args:
        elective: Elective (or any object with start_date/end_date).
        now: Instant to evaluate.

    Returns:
        start_date while closed before the window, end_date while open with
        an end bound, otherwise None.
    """
    state = window_state(elective, now)

    if state == WindowState.CLOSED_BEFORE:
        return ensure_utc(elective.start_date)
    if state == WindowState.OPEN:
        return ensure_utc(elective.end_date)
    return None
