# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Allocation service: atomic select and deselect of elective subjects.

This module provides the AllocationService class for:
- Selecting a subject for a student (create or replace a selection)
- Deselecting (removing a selection)
- Reading current selections and subject occupancy
- Administrative bulk replacement and occupancy reconciliation

Each select/deselect runs as one database transaction covering the
selection row and the seat counts it affects. A conflict with a
concurrent transaction restarts the whole unit of work; nothing from a
failed attempt is kept. Conflicts are recognized by exception class
(IntegrityError, OperationalError) or by PostgreSQL SQLSTATE, since the
asyncpg dialect reports deadlocks and serialization failures as a plain
DBAPIError.

A replace touches two subject rows. Both are locked in ascending id order
before either count changes, so crossed replaces queue instead of
deadlocking.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Collection
from datetime import datetime
from typing import TypeVar

from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from electives.core.config.settings import AllocationSettings
from electives.domains.allocation.eligibility import evaluate_eligibility
from electives.domains.allocation.ledger import CapacityLedger, Reservation
from electives.domains.allocation.store import SelectionStore
from electives.domains.allocation.window import next_transition, window_state
from electives.infrastructure.database.models import (
    Elective,
    Student,
    StudentTeam,
    Subject,
    TeacherSubject,
)
from electives.infrastructure.events import EventBus, EventTypes, get_event_bus
from electives.models.allocation import (
    ElectiveWindow,
    Executor,
    ForceSelectionsRequest,
    NotFoundEntity,
    OccupancyCorrection,
    SelectionOutcome,
    SelectionResult,
    UserRole,
)
from electives.utils.datetime import utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_ERRORS = (IntegrityError, OperationalError)

# serialization_failure, deadlock_detected, lock_not_available
RETRYABLE_SQLSTATES = frozenset({"40001", "40P01", "55P03"})


def is_retryable(error: SQLAlchemyError) -> bool:
    """Check whether a storage error is a conflict worth another attempt."""
    if isinstance(error, RETRYABLE_ERRORS):
        return True
    if not isinstance(error, DBAPIError):
        return False

    for source in (error.orig, getattr(error.orig, "__cause__", None)):
        code = getattr(source, "sqlstate", None) or getattr(source, "pgcode", None)
        if code in RETRYABLE_SQLSTATES:
            return True
    return False


class AllocationServiceError(Exception):
    """Base exception for allocation service errors."""

    pass


class EntityNotFoundError(AllocationServiceError):
    """Raised when a referenced student, elective or subject does not exist."""

    def __init__(self, entity: NotFoundEntity, entity_id: int) -> None:
        super().__init__(f"{entity.value.capitalize()} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class SubjectFullError(AllocationServiceError):
    """Raised by administrative operations when a subject has no free seat."""

    def __init__(self, subject_id: int) -> None:
        super().__init__(f"Subject {subject_id} is full")
        self.subject_id = subject_id


class AllocationStorageError(AllocationServiceError):
    """Raised when the storage could not commit an allocation.

    No partial state is ever committed, so the whole operation is safe
    to retry.

    Attributes:
        original_error: The underlying SQLAlchemy error.
    """

    def __init__(self, message: str, original_error: Exception | None = None) -> None:
        super().__init__(message)
        self.original_error = original_error


class AllocationService:
    """Service deciding and applying elective selections.

    Attributes:
        session_factory: Sessionmaker producing one session per attempt.
        settings: Allocation settings (retry count, event publishing).
        event_bus: Bus receiving notifications about committed changes.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: AllocationSettings | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        """Initialize allocation service.

        Args:
            session_factory: Sessionmaker bound to the allocation database.
            settings: Allocation settings; defaults are used if omitted.
            event_bus: Event bus; the process-wide bus if omitted.
        """
        self.session_factory = session_factory
        self.settings = settings or AllocationSettings()
        self.event_bus = event_bus or get_event_bus()

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def select(
        self,
        student_id: int,
        elective_id: int,
        subject_id: int,
        now: datetime | None = None,
        *,
        student_teams: Collection[int] | None = None,
        executor: Executor | None = None,
    ) -> SelectionResult:
        """Select a subject of an elective for a student.

        Creates the student's selection, or atomically moves an existing
        selection in the same elective to the new subject. Selecting the
        already selected subject succeeds without touching any count.

        Args:
            student_id: Student identifier.
            elective_id: Elective identifier.
            subject_id: Subject identifier; must belong to the elective.
            now: Instant used for the window check (defaults to now, UTC).
            student_teams: Team ids from the identity provider. Read from
                storage when omitted.
            executor: User performing the request. Omitted means the student
                acts for themselves.

        Returns:
            SelectionResult with outcome OK, ELECTIVE_CLOSED, NOT_ELIGIBLE,
            SUBJECT_FULL, NOT_FOUND or FORBIDDEN.

        Raises:
            AllocationStorageError: If the transaction could not be committed.
        """
        now = now or utc_now()

        async def work(db: AsyncSession) -> tuple[SelectionResult, dict[int, int]]:
            return await self._select(
                db, student_id, elective_id, subject_id, now, student_teams, executor
            )

        try:
            result, occupancy = await self._run("select", work)
        except EntityNotFoundError as e:
            logger.info(
                "Selection rejected: student=%s, elective=%s, subject=%s, missing=%s",
                student_id,
                elective_id,
                subject_id,
                e.entity.value,
            )
            return SelectionResult(
                outcome=SelectionOutcome.NOT_FOUND,
                student_id=student_id,
                elective_id=elective_id,
                subject_id=subject_id,
                not_found=e.entity,
            )

        if result.changed:
            logger.info(
                "Student elective selected: student=%s, elective=%s, subject=%s, previous=%s, executor=%s",
                student_id,
                elective_id,
                subject_id,
                result.previous_subject_id,
                executor.user_id if executor else student_id,
            )
            await self._announce(result, EventTypes.Selection.CREATED, occupancy)
        elif not result.ok:
            logger.info(
                "Selection rejected: student=%s, elective=%s, subject=%s, outcome=%s",
                student_id,
                elective_id,
                subject_id,
                result.outcome.value,
            )

        return result

    async def deselect(
        self,
        student_id: int,
        elective_id: int,
        *,
        executor: Executor | None = None,
    ) -> SelectionResult:
        """Remove a student's selection in an elective.

        Allowed whatever the window state. Removing a selection that does
        not exist is a successful no-op.

        Args:
            student_id: Student identifier.
            elective_id: Elective identifier.
            executor: User performing the request. Omitted means the student
                acts for themselves.

        Returns:
            SelectionResult with outcome OK or FORBIDDEN.

        Raises:
            AllocationStorageError: If the transaction could not be committed.
        """

        async def work(db: AsyncSession) -> tuple[SelectionResult, dict[int, int]]:
            return await self._deselect(db, student_id, elective_id, executor)

        result, occupancy = await self._run("deselect", work)

        if result.changed:
            logger.info(
                "Student elective removed: student=%s, elective=%s, subject=%s, executor=%s",
                student_id,
                elective_id,
                result.subject_id,
                executor.user_id if executor else student_id,
            )
            await self._announce(result, EventTypes.Selection.REMOVED, occupancy)
        elif not result.ok:
            logger.info(
                "Deselection rejected: student=%s, elective=%s, outcome=%s",
                student_id,
                elective_id,
                result.outcome.value,
            )

        return result

    async def current_selection(self, student_id: int, elective_id: int) -> int | None:
        """Get the subject a student currently holds in an elective."""
        async with self.session_factory() as db:
            return await SelectionStore(db).get(student_id, elective_id)

    async def get_student_selections(self, student_id: int) -> dict[int, int]:
        """Get all selections of a student.

        Returns:
            Mapping of elective id to subject id.

        Raises:
            EntityNotFoundError: If the student does not exist.
        """
        async with self.session_factory() as db:
            await self._require(db, Student, student_id, NotFoundEntity.STUDENT)
            return await SelectionStore(db).for_student(student_id)

    async def get_enrolled_counts(self, elective_id: int) -> dict[int, int]:
        """Get the occupancy of every subject of an elective.

        Returns:
            Mapping of subject id to number of students enrolled.

        Raises:
            EntityNotFoundError: If the elective does not exist.
        """
        async with self.session_factory() as db:
            await self._require(db, Elective, elective_id, NotFoundEntity.ELECTIVE)
            return await CapacityLedger(db).occupancies(elective_id)

    async def get_subject_students(self, elective_id: int, subject_id: int) -> list[int]:
        """Get ids of the students enrolled in a subject of an elective.

        Raises:
            EntityNotFoundError: If the elective or subject does not exist,
                or the subject belongs to another elective.
        """
        async with self.session_factory() as db:
            await self._require(db, Elective, elective_id, NotFoundEntity.ELECTIVE)
            await self._require_subject(db, elective_id, subject_id)
            return await SelectionStore(db).students_of(subject_id)

    async def get_window(self, elective_id: int, now: datetime | None = None) -> ElectiveWindow:
        """Get the enrollment window of an elective at an instant.

        Raises:
            EntityNotFoundError: If the elective does not exist.
        """
        now = now or utc_now()
        async with self.session_factory() as db:
            elective = await self._require(db, Elective, elective_id, NotFoundEntity.ELECTIVE)

        return ElectiveWindow(
            elective_id=elective_id,
            state=window_state(elective, now),
            start_date=elective.start_date,
            end_date=elective.end_date,
            next_transition=next_transition(elective, now),
        )

    async def force_set_selections(
        self,
        student_id: int,
        request: ForceSelectionsRequest,
    ) -> dict[int, int]:
        """Replace all selections of a student in one transaction.

        Window and team rules are not applied. Seat limits are: if any
        requested subject is full the whole batch is rolled back.

        Args:
            student_id: Student identifier.
            request: Requested elective id -> subject id mapping.

        Returns:
            The student's selections after the change.

        Raises:
            EntityNotFoundError: If the student, an elective or a subject
                does not exist, or a subject is not part of its elective.
            SubjectFullError: If a requested subject has no free seat.
            AllocationStorageError: If the transaction could not be committed.
        """

        async def work(db: AsyncSession) -> tuple[dict[int, int], list[tuple[int, int, int]]]:
            return await self._force_set(db, student_id, request.selections)

        selections, occupancy = await self._run("force_set_selections", work)

        logger.info(
            "Force-set student selections: student=%s, selections=%s",
            student_id,
            selections,
        )
        for elective_id, subject_id, count in occupancy:
            await self._publish_occupancy(subject_id, count, elective_id)

        return selections

    async def reconcile_occupancy(self, subject_id: int | None = None) -> list[OccupancyCorrection]:
        """Recount seats from the selection rows and fix cached counts.

        Args:
            subject_id: Only this subject; every subject if omitted.

        Returns:
            The corrections that were applied.
        """

        async def work(db: AsyncSession) -> list[OccupancyCorrection]:
            return await CapacityLedger(db).reconcile(subject_id)

        corrections = await self._run("reconcile_occupancy", work)
        if corrections:
            logger.warning("Reconciled occupancy of %d subjects", len(corrections))
        return corrections

    # ------------------------------------------------------------------
    # Units of work
    # ------------------------------------------------------------------

    async def _select(
        self,
        db: AsyncSession,
        student_id: int,
        elective_id: int,
        subject_id: int,
        now: datetime,
        student_teams: Collection[int] | None,
        executor: Executor | None,
    ) -> tuple[SelectionResult, dict[int, int]]:
        await self._require(db, Student, student_id, NotFoundEntity.STUDENT)
        elective = await self._require(db, Elective, elective_id, NotFoundEntity.ELECTIVE)
        subject = await self._require_subject(db, elective_id, subject_id)

        def reject(outcome: SelectionOutcome, **fields: object) -> tuple[SelectionResult, dict[int, int]]:
            return (
                SelectionResult(
                    outcome=outcome,
                    student_id=student_id,
                    elective_id=elective_id,
                    subject_id=subject_id,
                    **fields,
                ),
                {},
            )

        if not await self._may_modify(db, executor, student_id, subject_id):
            return reject(SelectionOutcome.FORBIDDEN)

        state = window_state(elective, now)
        if not state.accepts_selections:
            return reject(SelectionOutcome.ELECTIVE_CLOSED, window_state=state)

        if student_teams is None:
            student_teams = await self._load_student_teams(db, student_id)
        eligibility = evaluate_eligibility(student_teams, elective, subject)
        if not eligibility:
            return reject(SelectionOutcome.NOT_ELIGIBLE, reason=eligibility.reason)

        store = SelectionStore(db)
        ledger = CapacityLedger(db)

        prior = await store.get(student_id, elective_id, for_update=True)
        if prior == subject_id:
            return (
                SelectionResult(
                    outcome=SelectionOutcome.OK,
                    student_id=student_id,
                    elective_id=elective_id,
                    subject_id=subject_id,
                    previous_subject_id=prior,
                ),
                {},
            )

        if prior is not None:
            await ledger.lock_subjects((prior, subject_id))

        # Take the new seat before giving the old one back, and before the
        # selection row points at it.
        if await ledger.try_reserve(subject_id) == Reservation.FULL:
            return reject(SelectionOutcome.SUBJECT_FULL, previous_subject_id=prior)

        await store.put(student_id, elective_id, subject_id)
        if prior is not None:
            await ledger.release(prior)

        occupancy = {subject_id: await ledger.occupancy(subject_id)}
        if prior is not None:
            occupancy[prior] = await ledger.occupancy(prior)

        return (
            SelectionResult(
                outcome=SelectionOutcome.OK,
                student_id=student_id,
                elective_id=elective_id,
                subject_id=subject_id,
                previous_subject_id=prior,
                changed=True,
            ),
            occupancy,
        )

    async def _deselect(
        self,
        db: AsyncSession,
        student_id: int,
        elective_id: int,
        executor: Executor | None,
    ) -> tuple[SelectionResult, dict[int, int]]:
        store = SelectionStore(db)
        ledger = CapacityLedger(db)

        current = await store.get(student_id, elective_id, for_update=True)
        if current is None:
            return (
                SelectionResult(
                    outcome=SelectionOutcome.OK,
                    student_id=student_id,
                    elective_id=elective_id,
                ),
                {},
            )

        if not await self._may_modify(db, executor, student_id, current):
            return (
                SelectionResult(
                    outcome=SelectionOutcome.FORBIDDEN,
                    student_id=student_id,
                    elective_id=elective_id,
                    subject_id=current,
                ),
                {},
            )

        await store.remove(student_id, elective_id)
        await ledger.release(current)

        return (
            SelectionResult(
                outcome=SelectionOutcome.OK,
                student_id=student_id,
                elective_id=elective_id,
                subject_id=current,
                previous_subject_id=current,
                changed=True,
            ),
            {current: await ledger.occupancy(current)},
        )

    async def _force_set(
        self,
        db: AsyncSession,
        student_id: int,
        requested: dict[int, int],
    ) -> tuple[dict[int, int], list[tuple[int, int, int]]]:
        await self._require(db, Student, student_id, NotFoundEntity.STUDENT)
        for elective_id, subject_id in requested.items():
            await self._require(db, Elective, elective_id, NotFoundEntity.ELECTIVE)
            await self._require_subject(db, elective_id, subject_id)

        store = SelectionStore(db)
        ledger = CapacityLedger(db)
        current = await store.for_student(student_id)
        touched: dict[int, int] = {}
        await ledger.lock_subjects([*requested.values(), *current.values()])

        for elective_id, subject_id in requested.items():
            prior = current.get(elective_id)
            if prior == subject_id:
                continue
            if await ledger.try_reserve(subject_id) == Reservation.FULL:
                raise SubjectFullError(subject_id)
            await store.put(student_id, elective_id, subject_id)
            touched[subject_id] = elective_id
            if prior is not None:
                await ledger.release(prior)
                touched[prior] = elective_id

        for elective_id, prior in current.items():
            if elective_id in requested:
                continue
            await store.remove(student_id, elective_id)
            await ledger.release(prior)
            touched[prior] = elective_id

        occupancy = [
            (elective_id, subject_id, await ledger.occupancy(subject_id))
            for subject_id, elective_id in sorted(touched.items())
        ]
        return await store.for_student(student_id), occupancy

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _run(self, operation: str, work: Callable[[AsyncSession], Awaitable[T]]) -> T:
        """Run a unit of work in its own transaction, retrying conflicts.

        Raises:
            AllocationStorageError: On a non-retryable storage error, or when
                every attempt hit a retryable one.
        """
        attempts = self.settings.max_attempts
        last_error: SQLAlchemyError | None = None

        for attempt in range(1, attempts + 1):
            try:
                async with self.session_factory() as db:
                    async with db.begin():
                        return await work(db)
            except SQLAlchemyError as e:
                if not is_retryable(e):
                    logger.error("Storage failure during %s", operation, exc_info=True)
                    raise AllocationStorageError(f"{operation} failed", e) from e

                last_error = e
                logger.warning(
                    "Retryable conflict during %s (attempt %d/%d): %s",
                    operation,
                    attempt,
                    attempts,
                    e.__class__.__name__,
                )

        logger.error(
            "Storage failure during %s: gave up after %d attempts",
            operation,
            attempts,
            exc_info=last_error,
        )
        raise AllocationStorageError(
            f"{operation} failed after {attempts} attempts", last_error
        ) from last_error

    async def _require(self, db: AsyncSession, model: type[T], entity_id: int, entity: NotFoundEntity) -> T:
        """Load a row by primary key or raise EntityNotFoundError."""
        row = await db.get(model, entity_id)
        if row is None:
            raise EntityNotFoundError(entity, entity_id)
        return row

    async def _require_subject(self, db: AsyncSession, elective_id: int, subject_id: int) -> Subject:
        """Load a subject that belongs to the given elective."""
        subject = await db.get(Subject, subject_id)
        if subject is None or subject.elective_id != elective_id:
            raise EntityNotFoundError(NotFoundEntity.SUBJECT, subject_id)
        return subject

    async def _load_student_teams(self, db: AsyncSession, student_id: int) -> frozenset[int]:
        result = await db.execute(
            select(StudentTeam.team_id).where(StudentTeam.student_id == student_id)
        )
        return frozenset(result.scalars().all())

    async def _may_modify(
        self,
        db: AsyncSession,
        executor: Executor | None,
        student_id: int,
        subject_id: int,
    ) -> bool:
        """Check whether the executor may change this student's selection.

        Students may change only their own selections, teachers only for
        subjects they teach, admins anything.
        """
        if executor is None:
            return True
        if executor.role == UserRole.STUDENT:
            return executor.user_id == student_id
        if executor.role == UserRole.ADMIN:
            return True
        if executor.role == UserRole.TEACHER:
            teaches = await db.get(TeacherSubject, (executor.user_id, subject_id))
            return teaches is not None
        return False

    async def _announce(
        self,
        result: SelectionResult,
        event_type: str,
        occupancy: dict[int, int],
    ) -> None:
        if not self.settings.publish_events:
            return

        await self.event_bus.publish(
            event_type,
            {
                "student_id": result.student_id,
                "elective_id": result.elective_id,
                "subject_id": result.subject_id,
                "previous_subject_id": result.previous_subject_id,
            },
        )
        for subject_id, count in occupancy.items():
            await self._publish_occupancy(subject_id, count, result.elective_id)

    async def _publish_occupancy(
        self,
        subject_id: int,
        enrolled_count: int,
        elective_id: int | None = None,
    ) -> None:
        if not self.settings.publish_events:
            return

        await self.event_bus.publish(
            EventTypes.Subject.ENROLLMENT_UPDATED,
            {
                "elective_id": elective_id,
                "subject_id": subject_id,
                "enrolled_count": enrolled_count,
            },
        )
