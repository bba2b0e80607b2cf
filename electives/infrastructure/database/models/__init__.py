# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""SQLAlchemy models for the allocation engine."""

from electives.infrastructure.database.models.base import Base, TimestampMixin
from electives.infrastructure.database.models.school import (
    Elective,
    Selection,
    Student,
    StudentTeam,
    Subject,
    Teacher,
    TeacherSubject,
    Team,
)

__all__ = [
    "Base",
    "TimestampMixin",
    "Team",
    "Student",
    "StudentTeam",
    "Teacher",
    "TeacherSubject",
    "Elective",
    "Subject",
    "Selection",
]
