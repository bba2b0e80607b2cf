# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Event type definitions.

Using constants instead of string literals keeps publishers and
subscribers in agreement on event names.
"""


class EventTypes:
    """All event types organized by domain."""

    class Selection:
        """Selection lifecycle events.

        Payload: student_id, elective_id, subject_id and, for a replacement,
        previous_subject_id.
        """

        CREATED = "selection.created"
        REMOVED = "selection.removed"

    class Subject:
        """Subject occupancy events.

        Payload: elective_id, subject_id, enrolled_count (as committed).
        """

        ENROLLMENT_UPDATED = "subject.enrollment.updated"


class EventPatterns:
    """Common subscription patterns."""

    ALL_SELECTION = "selection.*"
    ALL_SUBJECT = "subject.*"
