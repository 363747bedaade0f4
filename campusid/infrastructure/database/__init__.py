# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Relational store: connection management, models and repositories."""

from campusid.infrastructure.database.connection import (
    DatabaseError,
    close_database,
    get_session,
    init_database,
)

__all__ = [
    "DatabaseError",
    "close_database",
    "get_session",
    "init_database",
]
