# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Pytest configuration and shared fixtures.

This module provides fixtures used across all test types:
- Unit tests
- Integration tests (SQLite via aiosqlite, no external services)
"""

from collections.abc import Generator
from datetime import datetime, timezone

import pytest

from electives.core.config import clear_settings_cache
from electives.infrastructure.events import reset_event_bus


# =============================================================================
# Clock
# =============================================================================

# Fixed instant used as "now" by window-sensitive tests.
NOW = datetime(2025, 9, 1, 8, 0, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    """Provide the fixed reference instant."""
    return NOW


# =============================================================================
# Global State
# =============================================================================


@pytest.fixture(autouse=True)
def clean_globals() -> Generator[None, None, None]:
    """Reset process-wide singletons between tests."""
    yield
    reset_event_bus()
    clear_settings_cache()


# =============================================================================
# Marker Configuration
# =============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test (uses a SQLite file)"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )
