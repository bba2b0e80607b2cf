# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Allocation request/response models.

Every outcome of a select or deselect call is a SelectionResult. Closed
windows, team mismatches, full subjects, missing records and forbidden
executors are ordinary business answers, so they travel as typed values
rather than exceptions.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class WindowState(str, Enum):
    """Enrollment window state of an elective at a given instant."""

    OPEN = "open"
    CLOSED_BEFORE = "closed_before"
    CLOSED_AFTER = "closed_after"
    ALWAYS_OPEN = "always_open"

    @property
    def accepts_selections(self) -> bool:
        """Whether new selections may be created in this state."""
        return self in (WindowState.OPEN, WindowState.ALWAYS_OPEN)


class IneligibilityReason(str, Enum):
    """Why a student may not enroll in a subject."""

    NOT_IN_ELECTIVE_TEAM = "not_in_elective_team"
    NOT_IN_SUBJECT_TEAM = "not_in_subject_team"


class SelectionOutcome(str, Enum):
    """Result kinds of the select and deselect operations."""

    OK = "ok"
    ELECTIVE_CLOSED = "elective_closed"
    NOT_ELIGIBLE = "not_eligible"
    SUBJECT_FULL = "subject_full"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"


class NotFoundEntity(str, Enum):
    """Which referenced record was missing."""

    STUDENT = "student"
    ELECTIVE = "elective"
    SUBJECT = "subject"


class UserRole(str, Enum):
    """Role reported by the identity provider."""

    STUDENT = "student"
    TEACHER = "teacher"
    ADMIN = "admin"


class Executor(BaseModel):
    """The authenticated user performing an allocation request.

    Attributes:
        user_id: Stable user id from the identity provider.
        role: Role from the identity provider.
    """

    model_config = ConfigDict(frozen=True)

    user_id: int
    role: UserRole = UserRole.STUDENT


class SelectionResult(BaseModel):
    """Outcome of a select or deselect call.

    Attributes:
        outcome: What happened.
        student_id: Student the request was about.
        elective_id: Elective the request was about.
        subject_id: Subject now selected (OK select), or the subject that
            was requested/released otherwise.
        previous_subject_id: Subject the student held before the call.
        changed: False for idempotent re-selects and no-op deselects.
        not_found: Missing entity when outcome is NOT_FOUND.
        reason: Team rule that failed when outcome is NOT_ELIGIBLE.
        window_state: Window state when outcome is ELECTIVE_CLOSED.
    """

    outcome: SelectionOutcome
    student_id: int
    elective_id: int
    subject_id: int | None = None
    previous_subject_id: int | None = None
    changed: bool = False
    not_found: NotFoundEntity | None = None
    reason: IneligibilityReason | None = None
    window_state: WindowState | None = None

    @property
    def ok(self) -> bool:
        """Whether the call succeeded."""
        return self.outcome == SelectionOutcome.OK


class ElectiveWindow(BaseModel):
    """Window snapshot of an elective at a given instant."""

    elective_id: int
    state: WindowState
    start_date: datetime | None = None
    end_date: datetime | None = None
    next_transition: datetime | None = None


class ForceSelectionsRequest(BaseModel):
    """Administrative replacement of all selections of one student.

    Attributes:
        selections: Mapping of elective id to subject id.
    """

    selections: dict[int, int] = Field(default_factory=dict)


class OccupancyCorrection(BaseModel):
    """A subject whose cached occupancy disagreed with its selection rows."""

    subject_id: int
    cached: int
    counted: int
