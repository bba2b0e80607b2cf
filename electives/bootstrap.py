# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Process startup and shutdown for hosts embedding the allocation engine.

Example:
    >>> async with engine_lifespan(create_tables=True) as service:
    ...     result = await service.select(student_id=1, elective_id=2, subject_id=3)
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from electives.core.config import Settings, get_settings
from electives.domains.allocation import AllocationService
from electives.infrastructure.database import (
    close_database,
    create_schema,
    get_engine,
    get_sessionmaker,
    init_database,
)
from electives.infrastructure.events import get_event_bus
from electives.utils.logging import setup_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def engine_lifespan(
    settings: Settings | None = None,
    *,
    create_tables: bool = False,
) -> AsyncIterator[AllocationService]:
    """Set up logging and storage, and yield a ready AllocationService.

    Args:
        settings: Settings to use; loaded from the environment if omitted.
        create_tables: Create missing tables before yielding.

    Yields:
        AllocationService bound to the configured database.
    """
    settings = settings or get_settings()
    setup_logging(settings)
    logger.info(
        "Starting allocation engine: environment=%s, sqlite=%s",
        settings.environment,
        settings.db.is_sqlite,
    )

    # =========================================================================
    # Startup
    # =========================================================================
    await init_database(settings)
    try:
        if create_tables:
            await create_schema(get_engine())
            logger.info("Database schema ensured")

        yield AllocationService(
            get_sessionmaker(),
            settings=settings.allocation,
            event_bus=get_event_bus(),
        )

    # =========================================================================
    # Shutdown
    # =========================================================================
    finally:
        await close_database()
        logger.info("Allocation engine stopped")
