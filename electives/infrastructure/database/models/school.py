# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""School models: teams, students, teachers, electives, subjects, selections.

Relationships are not declared. Every read the allocation engine makes
is an explicit query.
"""

from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from electives.infrastructure.database.models.base import Base, TimestampMixin, UTCDateTime


class Team(Base, TimestampMixin):
    """A named group of students used to restrict electives and subjects."""

    __tablename__ = "teams"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)


class Student(Base, TimestampMixin):
    """A student. Identity and credentials live in the identity provider."""

    __tablename__ = "students"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    first_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    last_name: Mapped[str | None] = mapped_column(String(255), nullable=True)


class StudentTeam(Base):
    """Many-to-many membership of students in teams."""

    __tablename__ = "students_to_teams"

    student_id: Mapped[int] = mapped_column(
        ForeignKey("students.id", ondelete="CASCADE"),
        primary_key=True,
    )
    team_id: Mapped[int] = mapped_column(
        ForeignKey("teams.id", ondelete="CASCADE"),
        primary_key=True,
    )


class Teacher(Base, TimestampMixin):
    """A teacher who may manage selections for the subjects they teach."""

    __tablename__ = "teachers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    first_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    last_name: Mapped[str | None] = mapped_column(String(255), nullable=True)


class TeacherSubject(Base):
    """Which teachers teach which subjects."""

    __tablename__ = "teachers_to_subjects"

    teacher_id: Mapped[int] = mapped_column(
        ForeignKey("teachers.id", ondelete="CASCADE"),
        primary_key=True,
    )
    subject_id: Mapped[int] = mapped_column(
        ForeignKey("subjects.id", ondelete="CASCADE"),
        primary_key=True,
    )


class Elective(Base, TimestampMixin):
    """A time-windowed group of subjects a student picks exactly one of.

    A null start_date or end_date leaves the window unbounded on that side.
    If team_id is set only members of that team may enroll.
    """

    __tablename__ = "electives"
    __table_args__ = (
        CheckConstraint(
            "start_date IS NULL OR end_date IS NULL OR start_date <= end_date",
            name="window_order",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    team_id: Mapped[int | None] = mapped_column(
        ForeignKey("teams.id", ondelete="RESTRICT"),
        nullable=True,
    )
    start_date: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    end_date: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)


class Subject(Base, TimestampMixin):
    """An enrollable unit with a hard seat cap, owned by one elective.

    enrolled_count caches the number of selections pointing at the subject.
    It is only written inside the allocation transaction, together with the
    selection rows it counts.
    """

    __tablename__ = "subjects"
    __table_args__ = (
        CheckConstraint("capacity > 0", name="capacity_positive"),
        CheckConstraint(
            "enrolled_count >= 0 AND enrolled_count <= capacity",
            name="enrolled_within_capacity",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    elective_id: Mapped[int] = mapped_column(
        ForeignKey("electives.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    team_id: Mapped[int | None] = mapped_column(
        ForeignKey("teams.id", ondelete="RESTRICT"),
        nullable=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    code: Mapped[str | None] = mapped_column(String(127), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    enrolled_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class Selection(Base, TimestampMixin):
    """A student's chosen subject within an elective.

    The composite primary key allows at most one row per (student, elective).
    """

    __tablename__ = "selections"

    student_id: Mapped[int] = mapped_column(
        ForeignKey("students.id", ondelete="CASCADE"),
        primary_key=True,
    )
    elective_id: Mapped[int] = mapped_column(
        ForeignKey("electives.id", ondelete="CASCADE"),
        primary_key=True,
    )
    subject_id: Mapped[int] = mapped_column(
        ForeignKey("subjects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
