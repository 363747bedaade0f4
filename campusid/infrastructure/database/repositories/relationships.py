# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Relationship store: parent invitations and parent-student relationships.

The partial unique indexes on pending pairs serialize concurrent writers;
the losing insert is surfaced as ConflictError so the service can re-read
the surviving row.
"""

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from campusid.core.errors import ConflictError
from campusid.infrastructure.database.models import (
    Account,
    InvitationStatus,
    ParentInvitation,
    ParentStudentRelationship,
    RelationshipStatus,
)
from campusid.infrastructure.database.repositories.credentials import normalize_email

logger = logging.getLogger(__name__)


class RelationshipStore:
    """Persistence for parent invitations and parent-student links.

    Attributes:
        db: Async database session.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def _insert(self, row: ParentInvitation | ParentStudentRelationship) -> None:
        self.db.add(row)
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise ConflictError("A pending link already exists for this pair.") from e
        await self.db.refresh(row)

    # =========================================================================
    # Relationships
    # =========================================================================

    async def create_relationship(
        self,
        parent_id: str,
        student_id: str,
        *,
        status: RelationshipStatus = RelationshipStatus.PENDING,
        created_at: datetime | None = None,
        verified_at: datetime | None = None,
    ) -> ParentStudentRelationship:
        """Insert a relationship row.

        Raises:
            ConflictError: If a pending row already exists for the pair.
        """
        relationship = ParentStudentRelationship(
            parent_id=parent_id,
            student_id=student_id,
            relationship_type="parent",
            status=status.value,
            verified_at=verified_at,
        )
        if created_at is not None:
            relationship.created_at = created_at
        await self._insert(relationship)
        return relationship

    async def get_relationship(self, relationship_id: str) -> ParentStudentRelationship | None:
        """Get a relationship by id."""
        result = await self.db.execute(
            select(ParentStudentRelationship)
            .where(ParentStudentRelationship.id == relationship_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_pending_relationship(
        self, parent_id: str, student_id: str
    ) -> ParentStudentRelationship | None:
        """Get the pending relationship for a pair, if any."""
        result = await self.db.execute(
            select(ParentStudentRelationship)
            .where(
                ParentStudentRelationship.parent_id == parent_id,
                ParentStudentRelationship.student_id == student_id,
                ParentStudentRelationship.status == RelationshipStatus.PENDING.value,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_for_student(
        self, student_id: str, parent_id: str | None = None
    ) -> list[ParentStudentRelationship]:
        """List relationships of a student, optionally for one parent."""
        query = select(ParentStudentRelationship).where(
            ParentStudentRelationship.student_id == student_id
        )
        if parent_id is not None:
            query = query.where(ParentStudentRelationship.parent_id == parent_id)
        result = await self.db.execute(
            query.order_by(ParentStudentRelationship.created_at).execution_options(
                populate_existing=True
            )
        )
        return list(result.scalars().all())

    async def list_for_parent(
        self, parent_id: str, status: RelationshipStatus
    ) -> list[tuple[ParentStudentRelationship, Account]]:
        """List a parent's relationships in one status, joined with the student."""
        result = await self.db.execute(
            select(ParentStudentRelationship, Account)
            .join(Account, Account.id == ParentStudentRelationship.student_id)
            .where(
                ParentStudentRelationship.parent_id == parent_id,
                ParentStudentRelationship.status == status.value,
            )
            .order_by(ParentStudentRelationship.created_at)
        )
        return [(row[0], row[1]) for row in result.all()]

    async def mark_relationships_verified(
        self, relationships: list[ParentStudentRelationship], at: datetime
    ) -> list[ParentStudentRelationship]:
        """Verify the pending rows among ``relationships``.

        Rows that are already verified keep their original timestamp.
        """
        for relationship in relationships:
            if relationship.status == RelationshipStatus.PENDING.value:
                relationship.status = RelationshipStatus.VERIFIED.value
                relationship.verified_at = at
        await self.db.commit()
        return relationships

    async def delete_relationships(self, relationships: list[ParentStudentRelationship]) -> None:
        """Remove relationship rows."""
        for relationship in relationships:
            await self.db.delete(relationship)
        await self.db.commit()

    # =========================================================================
    # Invitations
    # =========================================================================

    async def create_invitation(
        self,
        invitation_id: str,
        parent_email: str,
        student_id: str,
        expires_at: datetime,
        created_at: datetime,
    ) -> ParentInvitation:
        """Insert a pending invitation.

        Raises:
            ConflictError: If a pending invitation already exists for the pair.
        """
        invitation = ParentInvitation(
            id=invitation_id,
            parent_email=normalize_email(parent_email),
            student_id=student_id,
            status=InvitationStatus.PENDING.value,
            expires_at=expires_at,
            created_at=created_at,
        )
        await self._insert(invitation)
        return invitation

    async def get_invitation(self, invitation_id: str) -> ParentInvitation | None:
        """Get an invitation by id."""
        result = await self.db.execute(
            select(ParentInvitation)
            .where(ParentInvitation.id == invitation_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_pending_invitation(
        self, parent_email: str, student_id: str
    ) -> ParentInvitation | None:
        """Get the pending invitation for a pair, if any."""
        result = await self.db.execute(
            select(ParentInvitation)
            .where(
                ParentInvitation.parent_email == normalize_email(parent_email),
                ParentInvitation.student_id == student_id,
                ParentInvitation.status == InvitationStatus.PENDING.value,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def set_invitation_status(
        self,
        invitation: ParentInvitation,
        status: InvitationStatus,
        verified_at: datetime | None = None,
    ) -> ParentInvitation:
        """Move an invitation to a new status."""
        invitation.status = status.value
        if verified_at is not None:
            invitation.verified_at = verified_at
        await self.db.commit()
        logger.debug("Invitation %s is now %s", invitation.id, status.value)
        return invitation
