# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Capacity ledger.

Tracks how many selections point at each subject and admits new ones only
while there is room. The count lives in subjects.enrolled_count and is
changed with a conditional UPDATE, so the "is there room" check and the
increment are a single statement: PostgreSQL holds the row lock until the
surrounding transaction ends, SQLite holds the database write lock.

The ledger never commits. It works inside the caller's session, and the
caller commits the count together with the selection rows it describes.
"""

import logging
from collections.abc import Iterable
from enum import Enum

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from electives.infrastructure.database.models import Selection, Subject
from electives.models.allocation import OccupancyCorrection

logger = logging.getLogger(__name__)


class Reservation(str, Enum):
    """Outcome of a reservation attempt."""

    RESERVED = "reserved"
    FULL = "full"


class CapacityLedger:
    """Occupancy bookkeeping for subjects within one unit of work.

    Attributes:
        db: Async session whose transaction the ledger participates in.
    """

    def __init__(self, db: AsyncSession) -> None:
        """Initialize the ledger.

        Args:
            db: Async session with an open (or autobegun) transaction.
        """
        self.db = db

    async def lock_subjects(self, subject_ids: Iterable[int]) -> list[int]:
        """Lock subject rows in ascending id order.

        Units of work that touch several subjects take their locks here
        first, so two of them always lock shared rows in the same order.
        SQLite ignores FOR UPDATE; its write lock already covers this.

        Returns:
            The ids that were locked, ascending.
        """
        ids = sorted(set(subject_ids))
        if not ids:
            return []

        result = await self.db.execute(
            select(Subject.id).where(Subject.id.in_(ids)).order_by(Subject.id).with_for_update()
        )
        return list(result.scalars().all())

    async def try_reserve(self, subject_id: int) -> Reservation:
        """Take one seat of a subject if one is free.

        Args:
            subject_id: Subject identifier.

        Returns:
            RESERVED if the seat was taken, FULL otherwise.
        """
        stmt = (
            update(Subject)
            .where(
                Subject.id == subject_id,
                Subject.enrolled_count < Subject.capacity,
            )
            .values(enrolled_count=Subject.enrolled_count + 1)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)

        if result.rowcount == 1:
            logger.debug("Reserved seat: subject=%s", subject_id)
            return Reservation.RESERVED

        logger.debug("Subject full: subject=%s", subject_id)
        return Reservation.FULL

    async def release(self, subject_id: int) -> None:
        """Give back one seat of a subject.

        Callers release exactly once per removed selection.

        Args:
            subject_id: Subject identifier.
        """
        stmt = (
            update(Subject)
            .where(Subject.id == subject_id, Subject.enrolled_count > 0)
            .values(enrolled_count=Subject.enrolled_count - 1)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)

        if result.rowcount != 1:
            logger.warning("Release on empty subject ignored: subject=%s", subject_id)

    async def occupancy(self, subject_id: int) -> int:
        """Get the cached number of selections of a subject."""
        result = await self.db.execute(
            select(Subject.enrolled_count).where(Subject.id == subject_id)
        )
        return result.scalar_one_or_none() or 0

    async def occupancies(self, elective_id: int) -> dict[int, int]:
        """Get cached occupancy of every subject of an elective."""
        result = await self.db.execute(
            select(Subject.id, Subject.enrolled_count)
            .where(Subject.elective_id == elective_id)
            .order_by(Subject.id)
        )
        return {row.id: row.enrolled_count for row in result.all()}

    async def reconcile(self, subject_id: int | None = None) -> list[OccupancyCorrection]:
        """Rewrite cached occupancy from the selection rows.

        Args:
            subject_id: Only reconcile this subject; all subjects if None.

        Returns:
            The subjects whose cached count was wrong, with both values.
        """
        counts = (
            select(Selection.subject_id, func.count().label("counted"))
            .group_by(Selection.subject_id)
            .subquery()
        )
        query = select(
            Subject.id,
            Subject.enrolled_count,
            func.coalesce(counts.c.counted, 0).label("counted"),
        ).outerjoin(counts, counts.c.subject_id == Subject.id)
        if subject_id is not None:
            query = query.where(Subject.id == subject_id)

        result = await self.db.execute(query.order_by(Subject.id))

        corrections: list[OccupancyCorrection] = []
        for row in result.all():
            if row.enrolled_count == row.counted:
                continue
            await self.db.execute(
                update(Subject)
                .where(Subject.id == row.id)
                .values(enrolled_count=row.counted)
                .execution_options(synchronize_session=False)
            )
            corrections.append(
                OccupancyCorrection(
                    subject_id=row.id,
                    cached=row.enrolled_count,
                    counted=row.counted,
                )
            )
            logger.warning(
                "Corrected occupancy: subject=%s, cached=%d, counted=%d",
                row.id,
                row.enrolled_count,
                row.counted,
            )

        return corrections
