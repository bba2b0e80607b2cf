# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Elective enrollment allocation engine.

Decides whether a student may select a subject of an elective and applies
the change atomically so that subject capacity and the one-selection-per-
elective rule hold under concurrent requests.
"""

__version__ = "0.1.0"
