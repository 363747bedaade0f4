# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Authentication API endpoints.

This module provides endpoints for the account lifecycle:
- POST /register - Create an account and sign in
- POST /login - Sign in with email and password
- POST /verify-email - Redeem an email confirmation token
- POST /verify-email/resend - Re-send the confirmation email
- POST /password/forgot - Start a password reset
- POST /password/reset - Complete a password reset
- GET /me - Get the signed-in account

Responses to resend and forgot never reveal whether an email is
registered.
"""

import logging

from fastapi import APIRouter, Request, status

from campusid.api.dependencies import AuthenticatedUser, IdentityServiceDep
from campusid.api.middleware.rate_limit import (
    RATE_LIMIT_EMAIL,
    get_ip_only,
    limiter,
    login_rate_limit,
)
from campusid.models.account import AccountView
from campusid.models.auth import (
    AuthResponse,
    EmailRequest,
    LoginRequest,
    MessageResponse,
    RegisterRequest,
    ResetPasswordRequest,
    VerifyEmailRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter()

RESEND_MESSAGE = "If the account exists and is not yet verified, a new confirmation email has been sent."
FORGOT_MESSAGE = "If the account exists, a password reset email has been sent."


@router.post(
    "/register",
    response_model=AuthResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register",
    description="Create an account with the identity provider and locally, then sign in.",
)
async def register(
    data: RegisterRequest,
    identity: IdentityServiceDep,
) -> AuthResponse:
    """Register a new account.

    Students may name a parent email; the parent is linked on a best
    effort basis and the link never fails the registration.

    Args:
        data: Registration request.
        identity: Identity service.

    Returns:
        The new account and its session credential.
    """
    result = await identity.register(
        email=data.email,
        password=data.password,
        first_name=data.first_name,
        last_name=data.last_name,
        role=data.role,
        parent_email=data.parent_email,
    )
    return AuthResponse.from_result(result)


@router.post(
    "/login",
    response_model=AuthResponse,
    summary="Login",
    description="Authenticate with email and password. Rate limited per IP.",
)
@limiter.limit(login_rate_limit, key_func=get_ip_only)
async def login(
    request: Request,
    data: LoginRequest,
    identity: IdentityServiceDep,
) -> AuthResponse:
    """Authenticate and issue a session credential.

    Args:
        request: HTTP request, used for rate limiting.
        data: Login request.
        identity: Identity service.

    Returns:
        The account and its session credential.
    """
    result = await identity.login(data.email, data.password)
    return AuthResponse.from_result(result)


@router.post(
    "/verify-email",
    response_model=AccountView,
    summary="Verify email",
)
async def verify_email(
    data: VerifyEmailRequest,
    identity: IdentityServiceDep,
) -> AccountView:
    """Redeem the confirmation token from the verification email."""
    return await identity.verify_email(data.token)


@router.post(
    "/verify-email/resend",
    response_model=MessageResponse,
    summary="Resend verification email",
)
@limiter.limit(RATE_LIMIT_EMAIL, key_func=get_ip_only)
async def resend_verification(
    request: Request,
    data: EmailRequest,
    identity: IdentityServiceDep,
) -> MessageResponse:
    """Re-send the confirmation email to an unverified account."""
    await identity.resend_verification(data.email)
    return MessageResponse(message=RESEND_MESSAGE)


@router.post(
    "/password/forgot",
    response_model=MessageResponse,
    summary="Request password reset",
)
@limiter.limit(RATE_LIMIT_EMAIL, key_func=get_ip_only)
async def forgot_password(
    request: Request,
    data: EmailRequest,
    identity: IdentityServiceDep,
) -> MessageResponse:
    """Start a password reset.

    Always returns the same message, whether or not the email exists and
    whether or not the provider accepted the request.
    """
    await identity.request_password_reset(data.email)
    return MessageResponse(message=FORGOT_MESSAGE)


@router.post(
    "/password/reset",
    response_model=MessageResponse,
    summary="Reset password",
)
async def reset_password(
    data: ResetPasswordRequest,
    identity: IdentityServiceDep,
) -> MessageResponse:
    """Set a new password using the token from the reset email."""
    await identity.reset_password(data.token, data.new_password)
    return MessageResponse(message="Your password has been reset.")


@router.get(
    "/me",
    response_model=AccountView,
    summary="Get current account",
)
async def get_me(
    current_user: AuthenticatedUser,
    identity: IdentityServiceDep,
) -> AccountView:
    """Get the account the session credential belongs to."""
    return await identity.get_account(current_user.id)
