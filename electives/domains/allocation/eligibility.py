# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Team eligibility rules.

A student may enroll in a subject only if they belong to the elective's
team (when it has one) and to the subject's team (when it has one). The two
checks are independent: membership of one team never stands in for the
other.
"""

from collections.abc import Collection
from dataclasses import dataclass
from typing import Protocol

from electives.models.allocation import IneligibilityReason


class TeamRestricted(Protocol):
    """Anything that may be restricted to a team."""

    team_id: int | None


@dataclass(frozen=True)
class Eligibility:
    """Eligibility verdict."""

    eligible: bool
    reason: IneligibilityReason | None = None

    def __bool__(self) -> bool:
        return self.eligible


ELIGIBLE = Eligibility(eligible=True)


def evaluate_eligibility(
    student_teams: Collection[int],
    elective: TeamRestricted,
    subject: TeamRestricted,
) -> Eligibility:
    """Evaluate whether a student with the given teams may take a subject.

    Args:
        student_teams: Ids of the teams the student belongs to.
        elective: The elective (only team_id is read).
        subject: The subject (only team_id is read).

    Returns:
        ELIGIBLE, or an ineligible verdict naming the first failed rule.
    """
    if elective.team_id is not None and elective.team_id not in student_teams:
        return Eligibility(False, IneligibilityReason.NOT_IN_ELECTIVE_TEAM)

    if subject.team_id is not None and subject.team_id not in student_teams:
        return Eligibility(False, IneligibilityReason.NOT_IN_SUBJECT_TEAM)

    return ELIGIBLE
