# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Parent-student relation API endpoints.

This module provides endpoints for parent-student linkage:
- POST /verify - Verify a link from an emailed confirmation link
- POST /reject - Decline a link from an emailed confirmation link
- POST /resend - Re-send the notification of a pending link
- GET /invitations/{invitation_id} - Preview an invitation
- POST /invitations/{invitation_id}/register - Create the invited parent's account
- GET /children - List the signed-in parent's verified children
- GET /pending - List link requests awaiting the signed-in parent

Confirmation links carry an invitation id or a student id; opening one
does not require a session, except declining by student id, which
requires the parent role. Resending and the listing endpoints require a
session.
"""

import logging

from fastapi import APIRouter, Query, Request, status

from campusid.api.dependencies import (
    AuthenticatedUser,
    OptionalUser,
    ParentUser,
    RelationshipServiceDep,
)
from campusid.api.middleware.rate_limit import RATE_LIMIT_EMAIL, limiter
from campusid.core.errors import UnauthorizedError
from campusid.models.relationship import (
    ChildView,
    ConnectionRejection,
    ConnectionVerification,
    InvitationPreview,
    InvitationRegistrationResponse,
    LinkResult,
    RegisterFromInvitationRequest,
    RejectConnectionRequest,
    ResendLinkRequest,
    VerifyConnectionRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/verify",
    response_model=ConnectionVerification,
    summary="Verify parent-student link",
    description=(
        "Verify by invitation id or by student id, passed in the body or "
        "as query parameters. Exactly one must be given."
    ),
)
async def verify_connection(
    relationships: RelationshipServiceDep,
    current_user: OptionalUser,
    data: VerifyConnectionRequest | None = None,
    invitation_id: str | None = Query(default=None, alias="invitationId", max_length=128),
    student_id: str | None = Query(default=None, alias="studentId", max_length=64),
) -> ConnectionVerification:
    """Verify a pending link.

    When a signed-in parent verifies by student id, only that parent's
    links to the student are verified.

    Args:
        relationships: Relationship service.
        current_user: Signed-in account, if any.
        data: Identifiers in the request body.
        invitation_id: Invitation id from the confirmation link.
        student_id: Student id from the confirmation link.

    Returns:
        The verified invitation and/or relationships.
    """
    if data is not None:
        invitation_id = data.invitation_id or invitation_id
        student_id = data.student_id or student_id

    parent_id = current_user.id if current_user and current_user.is_parent else None
    return await relationships.verify_connection(
        invitation_id=invitation_id,
        student_id=student_id,
        parent_id=parent_id,
    )


@router.post(
    "/reject",
    response_model=ConnectionRejection,
    summary="Decline parent-student link",
    description=(
        "Decline by invitation id or by student id, passed in the body or "
        "as query parameters. Exactly one must be given. Declining by "
        "student id requires a parent session."
    ),
)
async def reject_connection(
    relationships: RelationshipServiceDep,
    current_user: OptionalUser,
    data: RejectConnectionRequest | None = None,
    invitation_id: str | None = Query(default=None, alias="invitationId", max_length=128),
    student_id: str | None = Query(default=None, alias="studentId", max_length=64),
) -> ConnectionRejection:
    """Decline a pending link."""
    if data is not None:
        invitation_id = data.invitation_id or invitation_id
        student_id = data.student_id or student_id

    if student_id and not invitation_id and current_user is None:
        raise UnauthorizedError()

    parent_id = current_user.id if current_user and current_user.is_parent else None
    return await relationships.reject_connection(
        invitation_id=invitation_id,
        student_id=student_id,
        parent_id=parent_id,
    )


@router.post(
    "/resend",
    response_model=LinkResult,
    summary="Resend link notification",
    description=(
        "Send the email for a pending relationship or invitation again. "
        "Exactly one identifier must be given."
    ),
)
@limiter.limit(RATE_LIMIT_EMAIL)
async def resend_link_notification(
    request: Request,
    data: ResendLinkRequest,
    current_user: AuthenticatedUser,
    relationships: RelationshipServiceDep,
) -> LinkResult:
    """Re-send the notification of a pending link.

    Args:
        request: Incoming request, used by the rate limiter.
        data: Relationship or invitation id.
        current_user: Signed-in student or parent of the link.
        relationships: Relationship service.

    Returns:
        The pending link and whether the email was handed off.
    """
    return await relationships.resend_link_notification(
        current_user.id,
        relationship_id=data.relationship_id,
        invitation_id=data.invitation_id,
    )


@router.get(
    "/invitations/{invitation_id}",
    response_model=InvitationPreview,
    summary="Get invitation",
)
async def get_invitation(
    invitation_id: str,
    relationships: RelationshipServiceDep,
) -> InvitationPreview:
    """Get invitation details for the confirmation page."""
    return await relationships.get_invitation(invitation_id)


@router.post(
    "/invitations/{invitation_id}/register",
    response_model=InvitationRegistrationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register from invitation",
    description="Create the invited parent's account and verify the link to the student.",
)
async def register_from_invitation(
    invitation_id: str,
    data: RegisterFromInvitationRequest,
    relationships: RelationshipServiceDep,
) -> InvitationRegistrationResponse:
    """Register the invited parent.

    Args:
        invitation_id: Invitation id from the invitation email.
        data: Password and name of the new parent account.
        relationships: Relationship service.

    Returns:
        The new parent account, its session credential and the verified link.
    """
    result = await relationships.register_parent_from_invitation(
        invitation_id,
        password=data.password,
        first_name=data.first_name,
        last_name=data.last_name,
    )
    return InvitationRegistrationResponse.from_registration(result)


@router.get(
    "/children",
    response_model=list[ChildView],
    summary="List children",
)
async def list_children(
    current_user: ParentUser,
    relationships: RelationshipServiceDep,
) -> list[ChildView]:
    """List the signed-in parent's verified children."""
    return await relationships.get_children_for(current_user.id)


@router.get(
    "/pending",
    response_model=list[ChildView],
    summary="List pending link requests",
)
async def list_pending(
    current_user: ParentUser,
    relationships: RelationshipServiceDep,
) -> list[ChildView]:
    """List link requests awaiting the signed-in parent's confirmation."""
    return await relationships.get_pending_for(current_user.id)
