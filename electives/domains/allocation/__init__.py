# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Allocation domain package.

This package decides and applies elective selections:
- Window clock: open/closed state of an elective
- Eligibility: team restrictions of electives and subjects
- Capacity ledger: seat counting and admission
- Selection store: the (student, elective) -> subject mapping
- Allocation service: atomic select/deselect built from the above
"""

from electives.domains.allocation.eligibility import (
    ELIGIBLE,
    Eligibility,
    evaluate_eligibility,
)
from electives.domains.allocation.ledger import CapacityLedger, Reservation
from electives.domains.allocation.service import (
    AllocationService,
    AllocationServiceError,
    AllocationStorageError,
    EntityNotFoundError,
    SubjectFullError,
)
from electives.domains.allocation.store import SelectionStore
from electives.domains.allocation.window import next_transition, window_state

__all__ = [
    "AllocationService",
    "AllocationServiceError",
    "AllocationStorageError",
    "EntityNotFoundError",
    "SubjectFullError",
    "CapacityLedger",
    "Reservation",
    "SelectionStore",
    "ELIGIBLE",
    "Eligibility",
    "evaluate_eligibility",
    "next_transition",
    "window_state",
]
