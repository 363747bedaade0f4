# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Parent invitation and parent-student relationship models.

Both tables carry a partial unique index over the pair of parties
restricted to pending rows: at most one pending row per pair, while
verified and expired history may accumulate.
"""

from datetime import datetime
from enum import Enum
from uuid import uuid4

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, String, text
from sqlalchemy.orm import Mapped, mapped_column

from campusid.infrastructure.database.models.base import Base
from campusid.utils.datetime import utc_now

_PENDING_ONLY = text("status = 'pending'")


class InvitationStatus(str, Enum):
    """Lifecycle of a parent invitation."""

    PENDING = "pending"
    VERIFIED = "verified"
    EXPIRED = "expired"


class RelationshipStatus(str, Enum):
    """Lifecycle of a parent-student relationship."""

    PENDING = "pending"
    VERIFIED = "verified"


class ParentInvitation(Base):
    """Invitation for a parent email that has no account yet."""

    __tablename__ = "parent_invitations"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'verified', 'expired')",
            name="valid_invitation_status",
        ),
        Index(
            "uq_parent_invitations_pending_pair",
            "parent_email",
            "student_id",
            unique=True,
            postgresql_where=_PENDING_ONLY,
            sqlite_where=_PENDING_ONLY,
        ),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    parent_email: Mapped[str] = mapped_column(String(255), nullable=False)
    student_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=InvitationStatus.PENDING.value
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<ParentInvitation(id={self.id}, parent_email={self.parent_email}, "
            f"student_id={self.student_id}, status={self.status})>"
        )


class ParentStudentRelationship(Base):
    """Link between a parent account and a student account."""

    __tablename__ = "parent_student_relationships"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'verified')",
            name="valid_relationship_status",
        ),
        Index(
            "uq_parent_student_relationships_pending_pair",
            "parent_id",
            "student_id",
            unique=True,
            postgresql_where=_PENDING_ONLY,
            sqlite_where=_PENDING_ONLY,
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    parent_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    student_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    relationship_type: Mapped[str] = mapped_column(String(20), nullable=False, default="parent")
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=RelationshipStatus.PENDING.value
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<ParentStudentRelationship(id={self.id}, parent_id={self.parent_id}, "
            f"student_id={self.student_id}, status={self.status})>"
        )
