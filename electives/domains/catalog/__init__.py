# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Catalog domain package: teams, people, electives and subjects."""

from electives.domains.catalog.service import (
    AlreadyExistsError,
    CatalogService,
    CatalogServiceError,
    ElectiveNotFoundError,
    StudentNotFoundError,
    SubjectNotFoundError,
    TeamNotFoundError,
)

__all__ = [
    "CatalogService",
    "CatalogServiceError",
    "AlreadyExistsError",
    "ElectiveNotFoundError",
    "StudentNotFoundError",
    "SubjectNotFoundError",
    "TeamNotFoundError",
]
