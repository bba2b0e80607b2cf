# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for catalog request validation."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from electives.models.catalog import (
    ElectiveCreateRequest,
    ElectiveWindowUpdateRequest,
    SubjectCreateRequest,
)

START = datetime(2025, 9, 1, tzinfo=timezone.utc)


class TestElectiveWindowValidation:
    """Tests for enrollment window validation."""

    def test_ordered_window(self) -> None:
        request = ElectiveCreateRequest(name="Clubs", start_date=START, end_date=START + timedelta(days=7))

        assert request.end_date > request.start_date

    def test_single_instant_window(self) -> None:
        """Test a window may start and end at the same instant."""
        request = ElectiveWindowUpdateRequest(start_date=START, end_date=START)

        assert request.start_date == request.end_date

    def test_reversed_window(self) -> None:
        with pytest.raises(ValidationError, match="start_date must not be after end_date"):
            ElectiveCreateRequest(name="Clubs", start_date=START, end_date=START - timedelta(seconds=1))

    def test_open_ended(self) -> None:
        request = ElectiveWindowUpdateRequest(start_date=START)

        assert request.end_date is None

    def test_offset_bounds_converted_to_utc(self) -> None:
        bangkok = timezone(timedelta(hours=7))
        request = ElectiveWindowUpdateRequest(end_date=datetime(2025, 9, 1, 14, 0, tzinfo=bangkok))

        assert request.end_date == datetime(2025, 9, 1, 7, 0, tzinfo=timezone.utc)
        assert request.end_date.utcoffset() == timedelta(0)

    def test_naive_and_aware_bounds(self) -> None:
        """Test a naive bound is read as UTC and compared without error."""
        request = ElectiveCreateRequest(
            name="x",
            start_date=datetime(2025, 1, 1),
            end_date=datetime(2025, 2, 1, tzinfo=timezone.utc),
        )

        assert request.start_date == datetime(2025, 1, 1, tzinfo=timezone.utc)

    def test_naive_and_aware_reversed(self) -> None:
        with pytest.raises(ValidationError, match="start_date must not be after end_date"):
            ElectiveCreateRequest(
                name="x",
                start_date=datetime(2025, 3, 1),
                end_date=datetime(2025, 2, 1, tzinfo=timezone.utc),
            )


class TestSubjectValidation:
    """Tests for subject request validation."""

    @pytest.mark.parametrize("capacity", [0, -1])
    def test_capacity_must_be_positive(self, capacity: int) -> None:
        with pytest.raises(ValidationError):
            SubjectCreateRequest(name="Chess", capacity=capacity)

    def test_name_required(self) -> None:
        with pytest.raises(ValidationError):
            SubjectCreateRequest(name="", capacity=1)
