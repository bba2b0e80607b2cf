# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Pytest fixtures for allocation integration tests.

Each test gets its own SQLite database file, so concurrent requests go
through real transactions and real locking.
"""

from collections.abc import AsyncGenerator
from datetime import datetime, timedelta
from pathlib import Path
from types import SimpleNamespace

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from electives.core.config.settings import AllocationSettings
from electives.domains.allocation import AllocationService
from electives.domains.catalog import CatalogService
from electives.infrastructure.database import (
    create_database_engine,
    create_schema,
    create_sessionmaker,
    drop_schema,
)
from electives.infrastructure.events import EventBus
from electives.models.catalog import (
    ElectiveCreateRequest,
    StudentCreateRequest,
    SubjectCreateRequest,
    TeacherCreateRequest,
    TeamCreateRequest,
)

# Capacities: chess 1, drama 3, choir 30, everything else 5.
# lab_work is restricted to the lab team.
SCHOOL = SimpleNamespace(
    # Teams
    science=1,
    arts=2,
    lab=3,
    # Electives
    open_elective=10,
    science_elective=20,
    past_elective=30,
    future_elective=40,
    # Subjects
    chess=101,
    drama=102,
    choir=103,
    physics=201,
    lab_work=202,
    history=301,
    astronomy=401,
    teacher=900,
)


@pytest.fixture
def db_url(tmp_path: Path) -> str:
    """Get a SQLite URL in the test's temporary directory."""
    return f"sqlite+aiosqlite:///{tmp_path / 'electives.db'}"


@pytest_asyncio.fixture
async def db_engine(db_url: str) -> AsyncGenerator[AsyncEngine, None]:
    """Create async engine with the schema in place."""
    engine = create_database_engine(db_url, sqlite_busy_timeout=30.0)
    await create_schema(engine)

    yield engine

    await drop_schema(engine)
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create the sessionmaker services use."""
    return create_sessionmaker(db_engine)


@pytest.fixture
def event_bus() -> EventBus:
    """Create a private event bus."""
    return EventBus()


@pytest.fixture
def allocation_service(session_factory, event_bus) -> AllocationService:
    """Create allocation service on the test database."""
    return AllocationService(
        session_factory,
        settings=AllocationSettings(max_attempts=3, publish_events=True),
        event_bus=event_bus,
    )


@pytest_asyncio.fixture
async def school(session_factory, now: datetime) -> SimpleNamespace:
    """Seed teams, students, electives, subjects and a teacher.

    Students 1-20 are in science (student 1 also in lab), 21-25 in arts.
    The science elective is open for an hour either side of now; the past
    elective closed a day ago and the future one opens in a day.

    Returns:
        Namespace of the seeded ids.
    """
    s = SCHOOL
    hour = timedelta(hours=1)
    day = timedelta(days=1)

    async with session_factory() as db:
        catalog = CatalogService(db)

        for team_id, name in ((s.science, "Science"), (s.arts, "Arts"), (s.lab, "Lab")):
            await catalog.create_team(TeamCreateRequest(id=team_id, name=name))

        for student_id in range(1, 26):
            if student_id == 1:
                teams = [s.science, s.lab]
            elif student_id <= 20:
                teams = [s.science]
            else:
                teams = [s.arts]
            await catalog.create_student(
                StudentCreateRequest(id=student_id, first_name=f"Student {student_id}", team_ids=teams)
            )

        await catalog.create_elective(ElectiveCreateRequest(id=s.open_elective, name="Clubs"))
        await catalog.create_elective(
            ElectiveCreateRequest(
                id=s.science_elective,
                name="Science track",
                team_id=s.science,
                start_date=now - hour,
                end_date=now + hour,
            )
        )
        await catalog.create_elective(
            ElectiveCreateRequest(id=s.past_elective, name="Last term", end_date=now - day)
        )
        await catalog.create_elective(
            ElectiveCreateRequest(id=s.future_elective, name="Next term", start_date=now + day)
        )

        subjects = [
            (s.open_elective, SubjectCreateRequest(id=s.chess, name="Chess", capacity=1)),
            (s.open_elective, SubjectCreateRequest(id=s.drama, name="Drama", capacity=3)),
            (s.open_elective, SubjectCreateRequest(id=s.choir, name="Choir", capacity=30)),
            (s.science_elective, SubjectCreateRequest(id=s.physics, name="Physics", capacity=5)),
            (
                s.science_elective,
                SubjectCreateRequest(id=s.lab_work, name="Lab work", capacity=5, team_id=s.lab),
            ),
            (s.past_elective, SubjectCreateRequest(id=s.history, name="History", capacity=5)),
            (s.future_elective, SubjectCreateRequest(id=s.astronomy, name="Astronomy", capacity=5)),
        ]
        for elective_id, request in subjects:
            await catalog.create_subject(elective_id, request)

        await catalog.create_teacher(
            TeacherCreateRequest(id=s.teacher, first_name="Teacher", subject_ids=[s.physics])
        )

    return s


@pytest.fixture
def events(event_bus) -> list[tuple[str, dict]]:
    """Collect every event published on the test bus."""
    received: list[tuple[str, dict]] = []

    async def collect(event):
        received.append((event.event_type, event.payload))

    event_bus.subscribe("*", collect)
    return received
