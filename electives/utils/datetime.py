# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""UTC helpers for window comparisons.

SQLite returns naive values for ``DateTime(timezone=True)`` columns, so
timestamps read from storage go through ensure_utc() before they are
compared with "now".
"""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Get the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime | None) -> datetime | None:
    """Normalize a datetime to aware UTC.

    Naive values are taken to be UTC already; aware values are converted.
    None passes through.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)
