# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Database connection management using SQLAlchemy async.

Uses the SQLAlchemy 2.0 async API with asyncpg for PostgreSQL and
aiosqlite for SQLite.

SQLite has no row locks, so every SQLite transaction is opened with
``BEGIN IMMEDIATE``: the write lock is taken up front and concurrent
allocation transactions queue on the busy timeout instead of failing when
they try to upgrade a read lock.

Example:
    from electives.infrastructure.database.connection import (
        init_database,
        get_session,
    )

    # once per process
    await init_database(settings)

    # per unit of work
    async with get_session() as session:
        result = await session.execute(select(Elective))
        electives = result.scalars().all()
"""

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, AsyncIterator, Optional

from sqlalchemy import event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from electives.infrastructure.database.models.base import Base

if TYPE_CHECKING:
    from electives.core.config.settings import Settings

# Module-level state for the database connection
_engine: Optional[AsyncEngine] = None
_sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None


class DatabaseError(Exception):
    """Raised when the engine cannot be used or a session fails.

    Attributes:
        message: What failed.
        original_error: The SQLAlchemy error behind it, if any.
    """

    def __init__(self, message: str, original_error: Optional[Exception] = None) -> None:
        super().__init__(message)
        self.message = message
        self.original_error = original_error

    def __str__(self) -> str:
        if self.original_error:
            return f"{self.message}: {self.original_error}"
        return self.message


def _install_sqlite_hooks(engine: AsyncEngine) -> None:
    """Make SQLite transactions take the write lock when they begin."""

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
        # Stop the driver from emitting its own deferred BEGIN.
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_database_engine(
    url: str,
    *,
    pool_size: int = 10,
    max_overflow: int = 20,
    echo: bool = False,
    sqlite_busy_timeout: float = 30.0,
) -> AsyncEngine:
    """Create an async engine configured for allocation workloads.

    Args:
        url: SQLAlchemy async database URL.
        pool_size: Connection pool size (ignored for SQLite).
        max_overflow: Maximum overflow connections (ignored for SQLite).
        echo: Log emitted SQL.
        sqlite_busy_timeout: Seconds to wait for the SQLite write lock.

    Returns:
        Configured AsyncEngine.
    """
    if url.startswith("sqlite"):
        engine = create_async_engine(
            url,
            echo=echo,
            connect_args={"timeout": sqlite_busy_timeout},
        )
        _install_sqlite_hooks(engine)
        return engine

    return create_async_engine(
        url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=True,
        pool_recycle=1800,
        echo=echo,
    )


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create the sessionmaker used by services for a given engine."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_database(settings: "Settings") -> None:
    """Initialize the database connection pool.

    Call once per process, before any service is used.

    Args:
        settings: Settings whose db section describes the database.

    Raises:
        DatabaseError: If the engine cannot be created.
    """
    global _engine, _sessionmaker

    try:
        _engine = create_database_engine(
            settings.db.url,
            pool_size=settings.db.pool_size,
            max_overflow=settings.db.max_overflow,
            echo=settings.db.echo,
            sqlite_busy_timeout=settings.db.sqlite_busy_timeout,
        )
        _sessionmaker = create_sessionmaker(_engine)
    except SQLAlchemyError as e:
        raise DatabaseError("Failed to initialize database connection", e) from e


async def close_database() -> None:
    """Close the database connection pool.

    Disposes every pooled connection. Safe to call when not initialized.
    """
    global _engine, _sessionmaker

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _sessionmaker = None


def get_engine() -> AsyncEngine:
    """Get the database async engine.

    Raises:
        DatabaseError: If the database has not been initialized.
    """
    if _engine is None:
        raise DatabaseError("Database not initialized. Call init_database() first.")
    return _engine


def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    """Get the database sessionmaker.

    Raises:
        DatabaseError: If the database has not been initialized.
    """
    if _sessionmaker is None:
        raise DatabaseError("Database not initialized. Call init_database() first.")
    return _sessionmaker


@asynccontextmanager
async def get_session() -> AsyncIterator[AsyncSession]:
    """Get an async session for the database.

    Commits when the block exits normally and rolls back when it raises.

    Yields:
        A session on the process-wide engine.

    Raises:
        DatabaseError: If init_database() has not run, or a statement fails.
    """
    sessionmaker = get_sessionmaker()

    async with sessionmaker() as session:
        try:
            yield session
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            raise DatabaseError("Database operation failed", e) from e
        except Exception:
            await session.rollback()
            raise


async def create_schema(engine: AsyncEngine) -> None:
    """Create all allocation tables that do not exist yet."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_schema(engine: AsyncEngine) -> None:
    """Drop all allocation tables."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


async def check_database_connection() -> bool:
    """Check if the database is reachable.

    Returns:
        True if the database is reachable, False otherwise.
    """
    if _engine is None:
        return False

    try:
        async with _engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError:
        return False
