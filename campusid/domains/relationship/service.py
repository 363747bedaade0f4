# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Parent-student relationship service.

This module provides the RelationshipService class for:
- Linking a parent email to a student (existing parent or invitation)
- Verifying links by invitation id or by student id
- Declining links and re-sending their notifications
- Listing a parent's verified children and pending link requests
- Registering a parent account from an invitation

Invitation lifecycle: pending -> verified, or pending -> expired once the
expiry instant has passed or the parent declines it. Relationship
lifecycle: pending -> verified; a declined pending relationship is removed.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta
from typing import Callable
from urllib.parse import urlencode

from sqlalchemy.ext.asyncio import AsyncSession

from campusid.core.config.settings import InvitationSettings
from campusid.core.errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from campusid.domains.auth.jwt import TokenCodec
from campusid.domains.identity.service import IdentityService
from campusid.infrastructure.database.models import (
    AccountRole,
    InvitationStatus,
    ParentInvitation,
    ParentStudentRelationship,
    RelationshipStatus,
)
from campusid.infrastructure.database.repositories import RelationshipStore, normalize_email
from campusid.infrastructure.notifications import InvitationNotifier, TemplateKind
from campusid.models.account import AccountView
from campusid.models.relationship import (
    ChildView,
    ConnectionRejection,
    ConnectionVerification,
    InvitationPreview,
    InvitationRegistration,
    InvitationView,
    LinkOutcome,
    LinkResult,
    RelationshipView,
    StudentSummary,
)
from campusid.utils.datetime import ensure_utc, is_expired, utc_now

logger = logging.getLogger(__name__)

INVALID_INVITATION_MESSAGE = "Invalid or expired invitation."
EXPIRED_INVITATION_MESSAGE = "This invitation has expired."
USED_INVITATION_MESSAGE = "This invitation has already been used."


class RelationshipService:
    """Service for parent-student links and parent invitations.

    Attributes:
        db: Async database session.
        store: Relationship store bound to ``db``.
    """

    def __init__(
        self,
        db: AsyncSession,
        identity: IdentityService,
        notifier: InvitationNotifier,
        token_codec: TokenCodec,
        settings: InvitationSettings,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize relationship service.

        Args:
            db: Async database session.
            identity: Identity service, used as the account directory.
            notifier: Invitation notifier.
            token_codec: Source of invitation identifiers.
            settings: Invitation expiry and link settings.
            clock: Source of the current time.
        """
        self.db = db
        self.store = RelationshipStore(db)
        self._identity = identity
        self._notifier = notifier
        self._tokens = token_codec
        self._settings = settings
        self._clock = clock

    @property
    def invitation_ttl(self) -> timedelta:
        """How long an invitation stays redeemable."""
        return timedelta(days=self._settings.expire_days)

    def _confirmation_link(self, **params: str) -> str:
        base = self._settings.frontend_url.rstrip("/")
        return f"{base}/parent-verification?{urlencode(params)}"

    # =========================================================================
    # Linking
    # =========================================================================

    async def link_parent(
        self,
        student_id: str,
        parent_email: str,
        student_display_name: str,
    ) -> LinkResult:
        """Link a parent email to a student.

        Reuses a pending row for the same pair instead of creating a second
        one; a fresh notification is sent either way.

        Args:
            student_id: Student account id.
            parent_email: Parent or guardian email.
            student_display_name: Name shown in the notification.

        Returns:
            LinkResult describing the branch taken.

        Raises:
            NotFoundError: If the student does not exist.
            BadRequestError: If the student or parent account has the wrong role.
        """
        student = await self._identity.get_account(student_id)
        if student.role != AccountRole.STUDENT.value:
            raise BadRequestError("Parents can only be linked to student accounts.")

        parent_email = normalize_email(parent_email)
        parent = await self._identity.find_account_by_email(parent_email)

        if parent is not None:
            return await self._link_existing_parent(student, parent, student_display_name)
        return await self._invite_parent(student, parent_email, student_display_name)

    async def _link_existing_parent(
        self,
        student: AccountView,
        parent: AccountView,
        student_display_name: str,
    ) -> LinkResult:
        if parent.role != AccountRole.PARENT.value:
            raise BadRequestError("The parent email belongs to an account that is not a parent.")

        relationship = await self.store.get_pending_relationship(parent.id, student.id)
        reused = relationship is not None
        if relationship is None:
            try:
                relationship = await self.store.create_relationship(
                    parent.id, student.id, created_at=self._clock()
                )
            except ConflictError:
                relationship = await self.store.get_pending_relationship(parent.id, student.id)
                if relationship is None:
                    raise
                reused = True

        relationship_id = relationship.id
        notified = await self._send_link_request(parent.email, student.id, student_display_name)
        logger.info(
            "Parent link %s for student %s is pending (reused=%s)",
            relationship_id,
            student.id,
            reused,
        )
        return LinkResult(
            outcome=LinkOutcome.RELATIONSHIP_PENDING,
            relationship_id=relationship_id,
            reused=reused,
            notified=notified,
        )

    async def _invite_parent(
        self,
        student: AccountView,
        parent_email: str,
        student_display_name: str,
    ) -> LinkResult:
        now = self._clock()
        invitation = await self.store.get_pending_invitation(parent_email, student.id)

        if invitation is not None and is_expired(invitation.expires_at, now):
            await self.store.set_invitation_status(invitation, InvitationStatus.EXPIRED)
            logger.info("Expired stale invitation %s before re-inviting", invitation.id)
            invitation = None

        reused = invitation is not None
        if invitation is None:
            try:
                invitation = await self.store.create_invitation(
                    self._tokens.generate_identifier(),
                    parent_email,
                    student.id,
                    expires_at=now + self.invitation_ttl,
                    created_at=now,
                )
            except ConflictError:
                invitation = await self.store.get_pending_invitation(parent_email, student.id)
                if invitation is None:
                    raise
                reused = True

        invitation_id = invitation.id
        notified = await self._send_invitation(
            parent_email, invitation_id, student_display_name, self._settings.expire_days
        )
        logger.info(
            "Parent invitation %s for student %s is pending (reused=%s)",
            invitation_id,
            student.id,
            reused,
        )
        return LinkResult(
            outcome=LinkOutcome.INVITATION_PENDING,
            invitation_id=invitation_id,
            reused=reused,
            notified=notified,
        )

    async def _send_link_request(self, parent_email: str, student_id: str, student_name: str) -> bool:
        return await self._notifier.send(
            parent_email,
            TemplateKind.PARENT_LINK_REQUEST,
            {
                "student_name": student_name,
                "link": self._confirmation_link(studentId=student_id),
            },
        )

    async def _send_invitation(
        self, parent_email: str, invitation_id: str, student_name: str, expires_in_days: int
    ) -> bool:
        return await self._notifier.send(
            parent_email,
            TemplateKind.PARENT_INVITATION,
            {
                "student_name": student_name,
                "link": self._confirmation_link(invitationId=invitation_id),
                "expires_in_days": expires_in_days,
            },
        )

    async def resend_link_notification(
        self,
        requester_id: str,
        relationship_id: str | None = None,
        invitation_id: str | None = None,
    ) -> LinkResult:
        """Send the notification of a pending link again.

        The student of a link may resend it, and so may the parent of a
        relationship. Links the requester is not part of are reported as
        missing.

        Args:
            requester_id: Account asking for the resend.
            relationship_id: Pending relationship to resend.
            invitation_id: Pending invitation to resend.

        Returns:
            LinkResult for the existing row, with ``reused`` set.

        Raises:
            BadRequestError: If both or neither identifier is given, the link
                is already verified, or the invitation has expired.
            NotFoundError: If the link does not exist for the requester.
        """
        if bool(relationship_id) == bool(invitation_id):
            raise BadRequestError("Provide exactly one of relationship_id or invitation_id.")
        if relationship_id:
            return await self._resend_link_request(requester_id, relationship_id)
        return await self._resend_invitation(requester_id, invitation_id)

    async def _resend_link_request(self, requester_id: str, relationship_id: str) -> LinkResult:
        relationship = await self.store.get_relationship(relationship_id)
        if relationship is None or requester_id not in (
            relationship.parent_id,
            relationship.student_id,
        ):
            raise NotFoundError("Parent link not found.")
        if relationship.status == RelationshipStatus.VERIFIED.value:
            raise BadRequestError("This parent link is already verified.")

        student = await self._identity.get_account(relationship.student_id)
        parent = await self._identity.get_account(relationship.parent_id)
        notified = await self._send_link_request(
            parent.email, student.id, f"{student.first_name} {student.last_name}".strip()
        )
        logger.info("Re-sent link request %s (notified=%s)", relationship.id, notified)
        return LinkResult(
            outcome=LinkOutcome.RELATIONSHIP_PENDING,
            relationship_id=relationship.id,
            reused=True,
            notified=notified,
        )

    async def _resend_invitation(self, requester_id: str, invitation_id: str) -> LinkResult:
        invitation = await self.store.get_invitation(invitation_id)
        if invitation is None or invitation.student_id != requester_id:
            raise NotFoundError("Invitation not found.")
        if invitation.status == InvitationStatus.VERIFIED.value:
            raise BadRequestError(USED_INVITATION_MESSAGE)
        now = self._clock()
        await self._reject_if_expired(invitation, now)

        student = await self._identity.get_account(invitation.student_id)
        remaining = ensure_utc(invitation.expires_at) - now
        notified = await self._send_invitation(
            invitation.parent_email,
            invitation.id,
            f"{student.first_name} {student.last_name}".strip(),
            max(1, math.ceil(remaining / timedelta(days=1))),
        )
        logger.info("Re-sent invitation %s (notified=%s)", invitation.id, notified)
        return LinkResult(
            outcome=LinkOutcome.INVITATION_PENDING,
            invitation_id=invitation.id,
            reused=True,
            notified=notified,
        )

    # =========================================================================
    # Verification
    # =========================================================================

    async def verify_connection(
        self,
        invitation_id: str | None = None,
        student_id: str | None = None,
        parent_id: str | None = None,
    ) -> ConnectionVerification:
        """Verify a pending link.

        Exactly one of ``invitation_id`` and ``student_id`` identifies the
        target. Verifying something already verified returns it unchanged.

        Args:
            invitation_id: Invitation to verify.
            student_id: Student whose pending relationships to verify.
            parent_id: Restrict student verification to this parent.

        Returns:
            The resulting invitation and/or relationships.

        Raises:
            BadRequestError: If both or neither identifier is given, the
                target does not exist, or the invitation has expired.
        """
        if bool(invitation_id) == bool(student_id):
            raise BadRequestError("Provide exactly one of invitation_id or student_id.")

        if invitation_id:
            return await self._verify_invitation(invitation_id)

        relationships = await self.store.list_for_student(student_id, parent_id=parent_id)
        if not relationships:
            raise BadRequestError("No parent link found for this student.")

        relationships = await self.store.mark_relationships_verified(relationships, self._clock())
        logger.info("Verified %d parent link(s) for student %s", len(relationships), student_id)
        return ConnectionVerification(
            relationships=[RelationshipView.model_validate(r) for r in relationships]
        )

    async def _verify_invitation(self, invitation_id: str) -> ConnectionVerification:
        invitation = await self.store.get_invitation(invitation_id)
        if invitation is None:
            raise BadRequestError(INVALID_INVITATION_MESSAGE)

        if invitation.status == InvitationStatus.VERIFIED.value:
            return ConnectionVerification(invitation=InvitationView.model_validate(invitation))

        now = self._clock()
        await self._reject_if_expired(invitation, now)

        invitation = await self.store.set_invitation_status(
            invitation, InvitationStatus.VERIFIED, verified_at=now
        )
        view = InvitationView.model_validate(invitation)
        logger.info("Verified invitation %s", view.id)

        relationships: list[RelationshipView] = []
        parent = await self._identity.find_account_by_email(view.parent_email)
        if parent is not None and parent.role == AccountRole.PARENT.value:
            relationship = await self._verified_relationship(parent.id, view.student_id, now)
            relationships.append(RelationshipView.model_validate(relationship))

        return ConnectionVerification(invitation=view, relationships=relationships)

    async def _reject_if_expired(self, invitation: ParentInvitation, now: datetime) -> None:
        """Persist and reject an invitation that is past its expiry."""
        if invitation.status == InvitationStatus.EXPIRED.value:
            raise BadRequestError(EXPIRED_INVITATION_MESSAGE)
        if is_expired(invitation.expires_at, now):
            await self.store.set_invitation_status(invitation, InvitationStatus.EXPIRED)
            logger.info("Invitation %s expired at %s", invitation.id, invitation.expires_at)
            raise BadRequestError(EXPIRED_INVITATION_MESSAGE)

    async def reject_connection(
        self,
        invitation_id: str | None = None,
        student_id: str | None = None,
        parent_id: str | None = None,
    ) -> ConnectionRejection:
        """Decline a pending link.

        A declined invitation becomes expired, so its link stops working. A
        declined relationship is removed, so the student can ask again.
        Verified links cannot be declined. Declining an invitation that is
        already expired returns it unchanged.

        Args:
            invitation_id: Invitation to decline.
            student_id: Student whose pending link to the parent to decline.
            parent_id: Parent declining by student id.

        Raises:
            BadRequestError: If both or neither identifier is given, the
                invitation is unknown or already used, or no pending link
                exists between the parent and the student.
            ForbiddenError: If declining by student id without a parent.
        """
        if bool(invitation_id) == bool(student_id):
            raise BadRequestError("Provide exactly one of invitation_id or student_id.")

        if invitation_id:
            invitation = await self.store.get_invitation(invitation_id)
            if invitation is None:
                raise BadRequestError(INVALID_INVITATION_MESSAGE)
            if invitation.status == InvitationStatus.VERIFIED.value:
                raise BadRequestError(USED_INVITATION_MESSAGE)
            if invitation.status == InvitationStatus.PENDING.value:
                invitation = await self.store.set_invitation_status(
                    invitation, InvitationStatus.EXPIRED
                )
                logger.info("Invitation %s declined", invitation.id)
            return ConnectionRejection(invitation=InvitationView.model_validate(invitation))

        if parent_id is None:
            raise ForbiddenError("Only the parent can decline this link.")
        pending = await self.store.get_pending_relationship(parent_id, student_id)
        if pending is None:
            raise BadRequestError("No pending parent link found for this student.")

        removed_id = pending.id
        await self.store.delete_relationships([pending])
        logger.info("Parent %s declined link %s to student %s", parent_id, removed_id, student_id)
        return ConnectionRejection(removed_relationship_ids=[removed_id])

    async def _verified_relationship(
        self, parent_id: str, student_id: str, now: datetime
    ) -> ParentStudentRelationship:
        """Verify the pending relationship for a pair, creating it if absent."""
        pending = await self.store.get_pending_relationship(parent_id, student_id)
        if pending is not None:
            verified = await self.store.mark_relationships_verified([pending], now)
            return verified[0]
        return await self.store.create_relationship(
            parent_id,
            student_id,
            status=RelationshipStatus.VERIFIED,
            created_at=now,
            verified_at=now,
        )

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_children_for(self, parent_id: str) -> list[ChildView]:
        """Get verified children of a parent with minimal student profiles."""
        return await self._list_for_parent(parent_id, RelationshipStatus.VERIFIED)

    async def get_pending_for(self, parent_id: str) -> list[ChildView]:
        """Get link requests awaiting the parent's confirmation."""
        return await self._list_for_parent(parent_id, RelationshipStatus.PENDING)

    async def _list_for_parent(self, parent_id: str, status: RelationshipStatus) -> list[ChildView]:
        rows = await self.store.list_for_parent(parent_id, status)
        return [
            ChildView(
                relationship_id=relationship.id,
                status=relationship.status,
                created_at=relationship.created_at,
                verified_at=relationship.verified_at,
                student=StudentSummary.model_validate(student),
            )
            for relationship, student in rows
        ]

    async def get_invitation(self, invitation_id: str) -> InvitationPreview:
        """Get invitation details for the confirmation page.

        Raises:
            NotFoundError: If the invitation does not exist.
        """
        invitation = await self.store.get_invitation(invitation_id)
        if invitation is None:
            raise NotFoundError("Invitation not found.")

        student = await self._identity.get_account(invitation.student_id)
        return InvitationPreview(
            id=invitation.id,
            parent_email=invitation.parent_email,
            student_name=f"{student.first_name} {student.last_name}".strip(),
            status=invitation.status,
            expires_at=invitation.expires_at,
            is_expired=(
                invitation.status == InvitationStatus.EXPIRED.value
                or (
                    invitation.status == InvitationStatus.PENDING.value
                    and is_expired(invitation.expires_at, self._clock())
                )
            ),
        )

    # =========================================================================
    # Registration from invitation
    # =========================================================================

    async def register_parent_from_invitation(
        self,
        invitation_id: str,
        password: str,
        first_name: str,
        last_name: str,
    ) -> InvitationRegistration:
        """Create the invited parent's account and verify the link.

        Raises:
            BadRequestError: If the invitation is missing, used or expired.
            ConflictError: If an account already exists for the invited email.
        """
        invitation = await self.store.get_invitation(invitation_id)
        if invitation is None:
            raise BadRequestError(INVALID_INVITATION_MESSAGE)
        if invitation.status == InvitationStatus.VERIFIED.value:
            raise BadRequestError(USED_INVITATION_MESSAGE)
        await self._reject_if_expired(invitation, self._clock())

        parent_email = invitation.parent_email
        student_id = invitation.student_id

        registration = await self._identity.register(
            email=parent_email,
            password=password,
            first_name=first_name,
            last_name=last_name,
            role=AccountRole.PARENT.value,
        )

        now = self._clock()
        invitation = await self.store.get_invitation(invitation_id)
        if invitation is not None and invitation.status == InvitationStatus.PENDING.value:
            await self.store.set_invitation_status(
                invitation, InvitationStatus.VERIFIED, verified_at=now
            )

        relationship = await self._verified_relationship(registration.account.id, student_id, now)
        logger.info(
            "Parent %s registered from invitation %s for student %s",
            registration.account.id,
            invitation_id,
            student_id,
        )
        return InvitationRegistration(
            account=registration.account,
            session=registration.session,
            relationship=RelationshipView.model_validate(relationship),
        )
