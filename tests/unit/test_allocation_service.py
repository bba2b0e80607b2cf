# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for the allocation service.

Storage is mocked: these tests cover the decision order and the retry
loop. Behaviour against a real database lives in the integration suite.
"""

from contextlib import asynccontextmanager, nullcontext
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import DBAPIError, IntegrityError, InvalidRequestError, OperationalError

from electives.core.config.settings import AllocationSettings
from electives.domains.allocation.service import (
    AllocationService,
    AllocationStorageError,
    EntityNotFoundError,
)
from electives.infrastructure.database.models import (
    Elective,
    Student,
    Subject,
    TeacherSubject,
)
from electives.infrastructure.events import EventBus
from electives.models.allocation import (
    Executor,
    IneligibilityReason,
    NotFoundEntity,
    SelectionOutcome,
    UserRole,
    WindowState,
)

NOW = datetime(2025, 9, 1, 8, 0, tzinfo=timezone.utc)


class FakeSessionFactory:
    """Hands out the same mock session and counts attempts."""

    def __init__(self, db):
        self.db = db
        self.calls = 0

    @asynccontextmanager
    async def __call__(self):
        self.calls += 1
        yield self.db


@pytest.fixture
def rows():
    """Rows returned by db.get, keyed by model."""
    return {
        Student: SimpleNamespace(id=1),
        Elective: SimpleNamespace(id=10, team_id=None, start_date=None, end_date=None),
        Subject: SimpleNamespace(id=101, elective_id=10, team_id=None),
        TeacherSubject: None,
    }


@pytest.fixture
def mock_db(rows):
    """Create mock database session."""
    db = AsyncMock()
    db.begin = MagicMock(return_value=nullcontext())
    db.execute = AsyncMock()

    async def get(model, key):
        return rows.get(model)

    db.get = AsyncMock(side_effect=get)
    return db


@pytest.fixture
def session_factory(mock_db):
    return FakeSessionFactory(mock_db)


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def allocation_service(session_factory, event_bus):
    """Create allocation service with mock storage."""
    return AllocationService(
        session_factory,
        settings=AllocationSettings(max_attempts=3, publish_events=True),
        event_bus=event_bus,
    )


def db_error(cls):
    return cls("UPDATE subjects", {}, Exception("database is locked"))


class FakeDriverError(Exception):
    """Driver exception carrying a PostgreSQL SQLSTATE."""

    def __init__(self, sqlstate):
        super().__init__(f"SQLSTATE {sqlstate}")
        self.sqlstate = sqlstate


def pg_error(sqlstate, *, chained=False):
    """Build a DBAPIError the way the asyncpg dialect reports server errors."""
    if not chained:
        return DBAPIError("UPDATE subjects", {}, FakeDriverError(sqlstate))
    orig = Exception("translated")
    orig.__cause__ = FakeDriverError(sqlstate)
    return DBAPIError("UPDATE subjects", {}, orig)


class TestSelectNotFound:
    """Tests for missing entities."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("missing", "entity"),
        [
            (Student, NotFoundEntity.STUDENT),
            (Elective, NotFoundEntity.ELECTIVE),
            (Subject, NotFoundEntity.SUBJECT),
        ],
    )
    async def test_missing_entity(self, allocation_service, rows, missing, entity):
        """Test each missing entity is reported as a typed outcome."""
        rows[missing] = None

        result = await allocation_service.select(1, 10, 101, NOW)

        assert result.outcome == SelectionOutcome.NOT_FOUND
        assert result.not_found == entity
        assert not result.ok

    @pytest.mark.asyncio
    async def test_subject_of_other_elective(self, allocation_service, rows, mock_db):
        """Test a subject from another elective counts as not found."""
        rows[Subject] = SimpleNamespace(id=201, elective_id=20, team_id=None)

        result = await allocation_service.select(1, 10, 201, NOW)

        assert result.outcome == SelectionOutcome.NOT_FOUND
        assert result.not_found == NotFoundEntity.SUBJECT
        mock_db.execute.assert_not_awaited()


class TestSelectGates:
    """Tests for checks made before any seat is touched."""

    @pytest.mark.asyncio
    async def test_closed_window(self, allocation_service, rows, mock_db, event_bus):
        """Test a closed window rejects without touching storage."""
        rows[Elective].end_date = NOW - timedelta(days=1)

        result = await allocation_service.select(1, 10, 101, NOW)

        assert result.outcome == SelectionOutcome.ELECTIVE_CLOSED
        assert result.window_state == WindowState.CLOSED_AFTER
        mock_db.execute.assert_not_awaited()
        assert event_bus.get_stats()["events_published"] == 0

    @pytest.mark.asyncio
    async def test_not_yet_open(self, allocation_service, rows):
        rows[Elective].start_date = NOW + timedelta(hours=1)

        result = await allocation_service.select(1, 10, 101, NOW)

        assert result.outcome == SelectionOutcome.ELECTIVE_CLOSED
        assert result.window_state == WindowState.CLOSED_BEFORE

    @pytest.mark.asyncio
    async def test_not_eligible_with_given_teams(self, allocation_service, rows, mock_db):
        """Test provided team memberships are used without a lookup."""
        rows[Elective].team_id = 5

        result = await allocation_service.select(1, 10, 101, NOW, student_teams=frozenset({4}))

        assert result.outcome == SelectionOutcome.NOT_ELIGIBLE
        assert result.reason == IneligibilityReason.NOT_IN_ELECTIVE_TEAM
        mock_db.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_student_cannot_act_for_another(self, allocation_service, mock_db):
        result = await allocation_service.select(
            1, 10, 101, NOW, executor=Executor(user_id=2, role=UserRole.STUDENT)
        )

        assert result.outcome == SelectionOutcome.FORBIDDEN
        mock_db.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_teacher_of_other_subject(self, allocation_service):
        """Test a teacher needs to teach the subject."""
        result = await allocation_service.select(
            1, 10, 101, NOW, executor=Executor(user_id=900, role=UserRole.TEACHER)
        )

        assert result.outcome == SelectionOutcome.FORBIDDEN

    @pytest.mark.asyncio
    async def test_forbidden_checked_before_window(self, allocation_service, rows):
        rows[Elective].end_date = NOW - timedelta(days=1)

        result = await allocation_service.select(
            1, 10, 101, NOW, executor=Executor(user_id=2, role=UserRole.STUDENT)
        )

        assert result.outcome == SelectionOutcome.FORBIDDEN


class TestRetries:
    """Tests for the transaction retry loop."""

    @pytest.mark.asyncio
    async def test_retry_then_succeed(self, allocation_service, session_factory):
        """Test a retryable conflict reruns the unit of work."""
        work = AsyncMock(side_effect=[db_error(OperationalError), db_error(IntegrityError), "done"])

        assert await allocation_service._run("select", work) == "done"
        assert work.await_count == 3
        assert session_factory.calls == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, allocation_service):
        """Test exhausted retries surface a storage failure."""
        work = AsyncMock(side_effect=db_error(OperationalError))

        with pytest.raises(AllocationStorageError) as exc_info:
            await allocation_service._run("select", work)

        assert work.await_count == 3
        assert isinstance(exc_info.value.original_error, OperationalError)

    @pytest.mark.asyncio
    async def test_non_retryable_error(self, allocation_service):
        """Test other storage errors fail on the first attempt."""
        work = AsyncMock(side_effect=InvalidRequestError("bad state"))

        with pytest.raises(AllocationStorageError):
            await allocation_service._run("deselect", work)

        assert work.await_count == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("sqlstate", ["40001", "40P01", "55P03"])
    async def test_postgres_conflicts_retried(self, allocation_service, session_factory, sqlstate):
        """Test deadlocks, serialization failures and lock timeouts are retried."""
        work = AsyncMock(side_effect=[pg_error(sqlstate), "done"])

        assert await allocation_service._run("select", work) == "done"
        assert session_factory.calls == 2

    @pytest.mark.asyncio
    async def test_sqlstate_on_chained_cause(self, allocation_service):
        work = AsyncMock(side_effect=[pg_error("40P01", chained=True), "done"])

        assert await allocation_service._run("select", work) == "done"
        assert work.await_count == 2

    @pytest.mark.asyncio
    async def test_other_sqlstate_not_retried(self, allocation_service):
        """Test an undefined-table error fails on the first attempt."""
        work = AsyncMock(side_effect=pg_error("42P01"))

        with pytest.raises(AllocationStorageError) as exc_info:
            await allocation_service._run("select", work)

        assert work.await_count == 1
        assert isinstance(exc_info.value.original_error, DBAPIError)

    @pytest.mark.asyncio
    async def test_domain_errors_pass_through(self, allocation_service):
        """Test domain exceptions are not retried or wrapped."""
        work = AsyncMock(side_effect=EntityNotFoundError(NotFoundEntity.STUDENT, 1))

        with pytest.raises(EntityNotFoundError):
            await allocation_service._run("force_set_selections", work)

        assert work.await_count == 1

    @pytest.mark.asyncio
    async def test_select_storage_failure(self, allocation_service, mock_db):
        """Test select raises when every attempt conflicts."""
        mock_db.execute.side_effect = db_error(OperationalError)

        with pytest.raises(AllocationStorageError):
            await allocation_service.select(1, 10, 101, NOW, student_teams=frozenset())


class TestDeselect:
    """Tests for deselect decisions."""

    @pytest.mark.asyncio
    async def test_nothing_to_remove(self, allocation_service, mock_db, event_bus):
        """Test deselecting without a selection is a quiet success."""
        result_mock = MagicMock()
        result_mock.scalar_one_or_none.return_value = None
        mock_db.execute.return_value = result_mock

        result = await allocation_service.deselect(1, 10)

        assert result.ok
        assert result.changed is False
        assert event_bus.get_stats()["events_published"] == 0

    @pytest.mark.asyncio
    async def test_other_student_forbidden(self, allocation_service, mock_db):
        result_mock = MagicMock()
        result_mock.scalar_one_or_none.return_value = 101
        mock_db.execute.return_value = result_mock

        result = await allocation_service.deselect(
            1, 10, executor=Executor(user_id=2, role=UserRole.STUDENT)
        )

        assert result.outcome == SelectionOutcome.FORBIDDEN
        mock_db.execute.assert_awaited_once()
