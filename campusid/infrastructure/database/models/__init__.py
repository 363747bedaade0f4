# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""SQLAlchemy models for the CampusID relational store."""

from campusid.infrastructure.database.models.account import Account, AccountRole
from campusid.infrastructure.database.models.base import Base, TimestampMixin
from campusid.infrastructure.database.models.relationship import (
    InvitationStatus,
    ParentInvitation,
    ParentStudentRelationship,
    RelationshipStatus,
)

__all__ = [
    "Base",
    "TimestampMixin",
    "Account",
    "AccountRole",
    "InvitationStatus",
    "ParentInvitation",
    "ParentStudentRelationship",
    "RelationshipStatus",
]
