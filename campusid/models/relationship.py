# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Parent-student relationship request and response models."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from campusid.domains.auth.jwt import SessionToken
from campusid.models.account import AccountView
from campusid.models.auth import PASSWORD_MAX_LENGTH, PASSWORD_MIN_LENGTH, AuthResponse


class LinkOutcome(str, Enum):
    """Which branch link_parent took."""

    RELATIONSHIP_PENDING = "relationship_pending"
    INVITATION_PENDING = "invitation_pending"


class RelationshipView(BaseModel):
    """Parent-student relationship row."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    parent_id: str
    student_id: str
    relationship_type: str
    status: str
    created_at: datetime
    verified_at: datetime | None = None


class InvitationView(BaseModel):
    """Parent invitation row."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    parent_email: str
    student_id: str
    status: str
    expires_at: datetime
    created_at: datetime
    verified_at: datetime | None = None


class LinkResult(BaseModel):
    """Outcome of linking a parent email to a student.

    Attributes:
        outcome: Existing-parent or invitation branch.
        relationship_id: Pending relationship, existing-parent branch.
        invitation_id: Pending invitation, invitation branch.
        reused: True if an existing pending row was reused.
        notified: True if the notification was handed to the transport.
    """

    outcome: LinkOutcome
    relationship_id: str | None = None
    invitation_id: str | None = None
    reused: bool = False
    notified: bool = False


class ConnectionVerification(BaseModel):
    """Linkage identifiers resulting from a verification.

    Attributes:
        invitation: The verified invitation, when verifying by invitation.
        relationships: The relationships of the student, when verifying
            by student.
    """

    invitation: InvitationView | None = None
    relationships: list[RelationshipView] = Field(default_factory=list)


class StudentSummary(BaseModel):
    """Minimal student profile shown to a parent."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    first_name: str
    last_name: str


class ChildView(BaseModel):
    """A relationship joined with the student it points to."""

    relationship_id: str
    status: str
    created_at: datetime
    verified_at: datetime | None = None
    student: StudentSummary


class InvitationPreview(BaseModel):
    """Invitation details for the confirmation page.

    Attributes:
        id: Invitation id.
        parent_email: Invited email address.
        student_name: Display name of the student.
        status: Stored status.
        expires_at: Expiry time.
        is_expired: True if the invitation can no longer be redeemed.
    """

    id: str
    parent_email: str
    student_name: str
    status: str
    expires_at: datetime
    is_expired: bool


class VerifyConnectionRequest(BaseModel):
    """Verification request. Exactly one identifier must be given."""

    invitation_id: str | None = Field(default=None, max_length=128)
    student_id: str | None = Field(default=None, max_length=64)


class RejectConnectionRequest(VerifyConnectionRequest):
    """Decline request. Exactly one identifier must be given."""


class ConnectionRejection(BaseModel):
    """Outcome of declining a link.

    Attributes:
        invitation: The declined invitation, now expired.
        removed_relationship_ids: Pending relationships that were removed.
    """

    invitation: InvitationView | None = None
    removed_relationship_ids: list[str] = Field(default_factory=list)


class ResendLinkRequest(BaseModel):
    """Resend request. Exactly one identifier must be given."""

    relationship_id: str | None = Field(default=None, max_length=36)
    invitation_id: str | None = Field(default=None, max_length=128)


class RegisterFromInvitationRequest(BaseModel):
    """Parent account creation from an invitation link."""

    password: str = Field(..., min_length=PASSWORD_MIN_LENGTH, max_length=PASSWORD_MAX_LENGTH)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)


class InvitationRegistration(BaseModel):
    """Outcome of registering a parent from an invitation."""

    account: AccountView
    session: SessionToken
    relationship: RelationshipView


class InvitationRegistrationResponse(AuthResponse):
    """Response for registering a parent from an invitation."""

    relationship: RelationshipView

    @classmethod
    def from_registration(cls, result: InvitationRegistration) -> "InvitationRegistrationResponse":
        """Flatten a registration outcome into the wire shape."""
        return cls(
            account=result.account,
            access_token=result.session.access_token,
            token_type=result.session.token_type,
            expires_in=result.session.expires_in,
            relationship=result.relationship,
        )
