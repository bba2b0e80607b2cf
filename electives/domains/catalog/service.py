# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Catalog service for administrative tooling.

This module provides the CatalogService class for:
- Team, student and teacher registration
- Elective and subject creation
- Enrollment window changes
- Listing the electives visible to a set of teams

Example:
    >>> catalog = CatalogService(db_session)
    >>> team = await catalog.create_team(TeamCreateRequest(name="M.4/1"))
    >>> elective = await catalog.create_elective(ElectiveCreateRequest(name="Science", team_id=team.id))
"""

import logging
from collections.abc import Collection

from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from electives.infrastructure.database.models import (
    Elective,
    Student,
    StudentTeam,
    Subject,
    Teacher,
    TeacherSubject,
    Team,
)
from electives.models.catalog import (
    ElectiveCreateRequest,
    ElectiveResponse,
    ElectiveWindowUpdateRequest,
    StudentCreateRequest,
    SubjectCreateRequest,
    SubjectResponse,
    TeacherCreateRequest,
    TeamCreateRequest,
    TeamResponse,
)
from electives.utils.datetime import ensure_utc

logger = logging.getLogger(__name__)


class CatalogServiceError(Exception):
    """Base exception for catalog service errors."""

    pass


class TeamNotFoundError(CatalogServiceError):
    """Raised when a referenced team does not exist."""

    pass


class ElectiveNotFoundError(CatalogServiceError):
    """Raised when an elective is not found."""

    pass


class SubjectNotFoundError(CatalogServiceError):
    """Raised when a referenced subject does not exist."""

    pass


class StudentNotFoundError(CatalogServiceError):
    """Raised when a student is not found."""

    pass


class AlreadyExistsError(CatalogServiceError):
    """Raised when creating a record whose id is taken."""

    pass


class CatalogService:
    """Service for managing teams, people, electives and subjects.

    Attributes:
        db: Async database session.
    """

    def __init__(self, db: AsyncSession) -> None:
        """Initialize catalog service.

        Args:
            db: Async database session.
        """
        self.db = db

    async def create_team(self, request: TeamCreateRequest) -> TeamResponse:
        """Create a team.

        Raises:
            AlreadyExistsError: If the requested id is taken.
        """
        if request.id is not None and await self.db.get(Team, request.id):
            raise AlreadyExistsError(f"Team {request.id} already exists")

        team = Team(id=request.id, name=request.name)
        self.db.add(team)
        await self.db.commit()
        await self.db.refresh(team)

        logger.info("Created team: id=%s, name=%s", team.id, team.name)
        return TeamResponse.model_validate(team)

    async def create_student(self, request: StudentCreateRequest) -> int:
        """Register a student with their team memberships.

        Returns:
            The student id.

        Raises:
            AlreadyExistsError: If the student already exists.
            TeamNotFoundError: If a team does not exist.
        """
        if await self.db.get(Student, request.id):
            raise AlreadyExistsError(f"Student {request.id} already exists")
        await self._require_teams(request.team_ids)

        self.db.add(
            Student(
                id=request.id,
                first_name=request.first_name,
                last_name=request.last_name,
            )
        )
        await self.db.flush()
        self.db.add_all(
            StudentTeam(student_id=request.id, team_id=team_id)
            for team_id in set(request.team_ids)
        )
        await self.db.commit()

        logger.info("Created student: id=%s, teams=%s", request.id, sorted(set(request.team_ids)))
        return request.id

    async def set_student_teams(self, student_id: int, team_ids: Collection[int]) -> None:
        """Replace a student's team memberships.

        Existing selections are kept; team rules apply when selecting.

        Raises:
            StudentNotFoundError: If the student does not exist.
            TeamNotFoundError: If a team does not exist.
        """
        if not await self.db.get(Student, student_id):
            raise StudentNotFoundError(f"Student {student_id} not found")
        await self._require_teams(team_ids)

        await self.db.execute(delete(StudentTeam).where(StudentTeam.student_id == student_id))
        self.db.add_all(
            StudentTeam(student_id=student_id, team_id=team_id) for team_id in set(team_ids)
        )
        await self.db.commit()

        logger.info("Updated student teams: id=%s, teams=%s", student_id, sorted(set(team_ids)))

    async def get_student_teams(self, student_id: int) -> frozenset[int]:
        """Get ids of the teams a student belongs to."""
        result = await self.db.execute(
            select(StudentTeam.team_id).where(StudentTeam.student_id == student_id)
        )
        return frozenset(result.scalars().all())

    async def create_teacher(self, request: TeacherCreateRequest) -> int:
        """Register a teacher and the subjects they teach.

        Returns:
            The teacher id.

        Raises:
            AlreadyExistsError: If the teacher already exists.
            SubjectNotFoundError: If a subject does not exist.
        """
        if await self.db.get(Teacher, request.id):
            raise AlreadyExistsError(f"Teacher {request.id} already exists")
        for subject_id in request.subject_ids:
            if not await self.db.get(Subject, subject_id):
                raise SubjectNotFoundError(f"Subject {subject_id} not found")

        self.db.add(
            Teacher(
                id=request.id,
                first_name=request.first_name,
                last_name=request.last_name,
            )
        )
        await self.db.flush()
        self.db.add_all(
            TeacherSubject(teacher_id=request.id, subject_id=subject_id)
            for subject_id in set(request.subject_ids)
        )
        await self.db.commit()

        logger.info("Created teacher: id=%s, subjects=%s", request.id, sorted(set(request.subject_ids)))
        return request.id

    async def create_elective(self, request: ElectiveCreateRequest) -> ElectiveResponse:
        """Create an elective.

        Raises:
            AlreadyExistsError: If the requested id is taken.
            TeamNotFoundError: If the team does not exist.
        """
        if request.id is not None and await self.db.get(Elective, request.id):
            raise AlreadyExistsError(f"Elective {request.id} already exists")
        if request.team_id is not None:
            await self._require_teams([request.team_id])

        elective = Elective(
            id=request.id,
            name=request.name,
            team_id=request.team_id,
            start_date=ensure_utc(request.start_date),
            end_date=ensure_utc(request.end_date),
        )
        self.db.add(elective)
        await self.db.commit()
        await self.db.refresh(elective)

        logger.info(
            "Created elective: id=%s, team=%s, start=%s, end=%s",
            elective.id,
            elective.team_id,
            elective.start_date,
            elective.end_date,
        )
        return ElectiveResponse.model_validate(elective)

    async def update_elective_window(
        self,
        elective_id: int,
        request: ElectiveWindowUpdateRequest,
    ) -> ElectiveResponse:
        """Replace an elective's enrollment window.

        Raises:
            ElectiveNotFoundError: If the elective does not exist.
        """
        elective = await self._get_elective(elective_id)
        elective.start_date = ensure_utc(request.start_date)
        elective.end_date = ensure_utc(request.end_date)
        await self.db.commit()
        await self.db.refresh(elective)

        logger.info(
            "Updated elective window: id=%s, start=%s, end=%s",
            elective_id,
            elective.start_date,
            elective.end_date,
        )
        return ElectiveResponse.model_validate(elective)

    async def create_subject(self, elective_id: int, request: SubjectCreateRequest) -> SubjectResponse:
        """Create a subject inside an elective.

        Raises:
            ElectiveNotFoundError: If the elective does not exist.
            AlreadyExistsError: If the requested id is taken.
            TeamNotFoundError: If the team does not exist.
        """
        await self._get_elective(elective_id)
        if request.id is not None and await self.db.get(Subject, request.id):
            raise AlreadyExistsError(f"Subject {request.id} already exists")
        if request.team_id is not None:
            await self._require_teams([request.team_id])

        subject = Subject(
            id=request.id,
            elective_id=elective_id,
            team_id=request.team_id,
            name=request.name,
            code=request.code,
            description=request.description,
            location=request.location,
            capacity=request.capacity,
            enrolled_count=0,
        )
        self.db.add(subject)
        await self.db.commit()
        await self.db.refresh(subject)

        logger.info(
            "Created subject: id=%s, elective=%s, capacity=%d, team=%s",
            subject.id,
            elective_id,
            subject.capacity,
            subject.team_id,
        )
        return SubjectResponse.model_validate(subject)

    async def list_subjects(self, elective_id: int) -> list[SubjectResponse]:
        """List the subjects of an elective with their occupancy.

        Raises:
            ElectiveNotFoundError: If the elective does not exist.
        """
        await self._get_elective(elective_id)
        result = await self.db.execute(
            select(Subject).where(Subject.elective_id == elective_id).order_by(Subject.id)
        )
        return [SubjectResponse.model_validate(s) for s in result.scalars().all()]

    async def list_visible_electives(self, team_ids: Collection[int]) -> list[ElectiveResponse]:
        """List electives open to members of the given teams.

        An elective without a team is visible to everyone.
        """
        query = select(Elective).order_by(Elective.id)
        if team_ids:
            query = query.where(or_(Elective.team_id.is_(None), Elective.team_id.in_(list(team_ids))))
        else:
            query = query.where(Elective.team_id.is_(None))

        result = await self.db.execute(query)
        return [ElectiveResponse.model_validate(e) for e in result.scalars().all()]

    async def _get_elective(self, elective_id: int) -> Elective:
        elective = await self.db.get(Elective, elective_id)
        if not elective:
            raise ElectiveNotFoundError(f"Elective {elective_id} not found")
        return elective

    async def _require_teams(self, team_ids: Collection[int]) -> None:
        if not team_ids:
            return
        result = await self.db.execute(select(Team.id).where(Team.id.in_(list(team_ids))))
        missing = set(team_ids) - set(result.scalars().all())
        if missing:
            raise TeamNotFoundError(f"Teams not found: {sorted(missing)}")
