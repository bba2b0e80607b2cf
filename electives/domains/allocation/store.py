# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Selection store: the (student, elective) -> subject mapping.

Like the capacity ledger, the store only stages changes in the caller's
session. Seat accounting for a replaced or removed selection is the
allocation service's job.
"""

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from electives.infrastructure.database.models import Selection


class SelectionStore:
    """Reads and writes selection rows within one unit of work.

    Attributes:
        db: Async session whose transaction the store participates in.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get(
        self,
        student_id: int,
        elective_id: int,
        *,
        for_update: bool = False,
    ) -> int | None:
        """Get the subject a student selected in an elective.

        Args:
            student_id: Student identifier.
            elective_id: Elective identifier.
            for_update: Lock the row until the transaction ends
                (PostgreSQL; SQLite already holds the write lock).

        Returns:
            Subject id, or None if the student has no selection.
        """
        query = select(Selection.subject_id).where(
            Selection.student_id == student_id,
            Selection.elective_id == elective_id,
        )
        if for_update:
            query = query.with_for_update()

        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def put(self, student_id: int, elective_id: int, subject_id: int) -> int | None:
        """Point a student's selection in an elective at a subject.

        Updates the existing row in place, or inserts one. A concurrent
        insert for the same pair fails on the primary key when flushed.

        Returns:
            The previously selected subject id, or None.
        """
        existing = await self.db.get(Selection, (student_id, elective_id))

        if existing is None:
            self.db.add(
                Selection(
                    student_id=student_id,
                    elective_id=elective_id,
                    subject_id=subject_id,
                )
            )
            await self.db.flush()
            return None

        previous = existing.subject_id
        existing.subject_id = subject_id
        await self.db.flush()
        return previous

    async def remove(self, student_id: int, elective_id: int) -> int | None:
        """Delete a student's selection in an elective if there is one.

        Returns:
            The subject id that was selected, or None if nothing was removed.
        """
        subject_id = await self.get(student_id, elective_id, for_update=True)
        if subject_id is None:
            return None

        await self.db.execute(
            delete(Selection)
            .where(
                Selection.student_id == student_id,
                Selection.elective_id == elective_id,
            )
            .execution_options(synchronize_session=False)
        )
        return subject_id

    async def for_student(self, student_id: int) -> dict[int, int]:
        """Get all selections of a student as {elective_id: subject_id}."""
        result = await self.db.execute(
            select(Selection.elective_id, Selection.subject_id)
            .where(Selection.student_id == student_id)
            .order_by(Selection.elective_id)
        )
        return {row.elective_id: row.subject_id for row in result.all()}

    async def students_of(self, subject_id: int) -> list[int]:
        """Get ids of the students who selected a subject."""
        result = await self.db.execute(
            select(Selection.student_id)
            .where(Selection.subject_id == subject_id)
            .order_by(Selection.student_id)
        )
        return list(result.scalars().all())
