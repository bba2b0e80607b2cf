# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Database infrastructure for the allocation state.

Example:
    from electives.infrastructure.database import init_database, get_session

    await init_database(settings)
    async with get_session() as session:
        result = await session.execute(select(Subject))
"""

from electives.infrastructure.database.connection import (
    DatabaseError,
    check_database_connection,
    close_database,
    create_database_engine,
    create_schema,
    create_sessionmaker,
    drop_schema,
    get_engine,
    get_session,
    get_sessionmaker,
    init_database,
)

__all__ = [
    "DatabaseError",
    "check_database_connection",
    "close_database",
    "create_database_engine",
    "create_schema",
    "create_sessionmaker",
    "drop_schema",
    "get_engine",
    "get_session",
    "get_sessionmaker",
    "init_database",
]
