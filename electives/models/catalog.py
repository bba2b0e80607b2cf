# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Catalog request/response models for administrative tooling."""

from datetime import datetime
from typing import Self

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from electives.utils.datetime import ensure_utc


class TeamCreateRequest(BaseModel):
    """Request to create a team."""

    id: int | None = None
    name: str = Field(min_length=1, max_length=255)


class StudentCreateRequest(BaseModel):
    """Request to register a student known to the identity provider."""

    id: int
    first_name: str = Field(default="", max_length=255)
    last_name: str | None = Field(default=None, max_length=255)
    team_ids: list[int] = Field(default_factory=list)


class TeacherCreateRequest(BaseModel):
    """Request to register a teacher and the subjects they teach."""

    id: int
    first_name: str = Field(default="", max_length=255)
    last_name: str | None = Field(default=None, max_length=255)
    subject_ids: list[int] = Field(default_factory=list)


class ElectiveWindowMixin(BaseModel):
    """Optional enrollment window; a missing bound is unbounded."""

    start_date: datetime | None = None
    end_date: datetime | None = None

    @field_validator("start_date", "end_date")
    @classmethod
    def normalize_to_utc(cls, value: datetime | None) -> datetime | None:
        """Store bounds in UTC; a naive bound is taken as UTC."""
        return ensure_utc(value)

    @model_validator(mode="after")
    def validate_window(self) -> Self:
        """Reject windows that end before they start."""
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self


class ElectiveCreateRequest(ElectiveWindowMixin):
    """Request to create an elective."""

    id: int | None = None
    name: str = Field(min_length=1, max_length=255)
    team_id: int | None = None


class ElectiveWindowUpdateRequest(ElectiveWindowMixin):
    """Request to replace an elective's enrollment window."""


class SubjectCreateRequest(BaseModel):
    """Request to create a subject inside an elective."""

    id: int | None = None
    name: str = Field(min_length=1, max_length=255)
    capacity: int = Field(gt=0)
    team_id: int | None = None
    code: str | None = Field(default=None, max_length=127)
    description: str | None = None
    location: str | None = Field(default=None, max_length=255)


class TeamResponse(BaseModel):
    """Team details."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str


class ElectiveResponse(BaseModel):
    """Elective details."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    team_id: int | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None


class SubjectResponse(BaseModel):
    """Subject details with current occupancy."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    elective_id: int
    name: str
    capacity: int
    enrolled_count: int
    team_id: int | None = None
    code: str | None = None
    description: str | None = None
    location: str | None = None
