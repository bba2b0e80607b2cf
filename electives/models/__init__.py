# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Pydantic models exchanged with callers of the allocation engine."""

from electives.models.allocation import (
    ElectiveWindow,
    Executor,
    ForceSelectionsRequest,
    IneligibilityReason,
    NotFoundEntity,
    OccupancyCorrection,
    SelectionOutcome,
    SelectionResult,
    UserRole,
    WindowState,
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

__all__ = [
    # Allocation
    "ElectiveWindow",
    "Executor",
    "ForceSelectionsRequest",
    "IneligibilityReason",
    "NotFoundEntity",
    "OccupancyCorrection",
    "SelectionOutcome",
    "SelectionResult",
    "UserRole",
    "WindowState",
    # Catalog
    "ElectiveCreateRequest",
    "ElectiveResponse",
    "ElectiveWindowUpdateRequest",
    "StudentCreateRequest",
    "SubjectCreateRequest",
    "SubjectResponse",
    "TeacherCreateRequest",
    "TeamCreateRequest",
    "TeamResponse",
]
