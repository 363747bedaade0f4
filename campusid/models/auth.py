# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Authentication request and response models."""

from typing import Literal

from pydantic import BaseModel, EmailStr, Field

from campusid.domains.auth.jwt import SessionToken
from campusid.models.account import AccountView

SelfServiceRole = Literal["teacher", "student", "parent"]

PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 128


class RegisterRequest(BaseModel):
    """Registration request.

    Attributes:
        email: Email address, unique across the platform.
        password: Plain text password.
        first_name: Given name.
        last_name: Family name.
        role: Requested role. Administrators are provisioned out of band.
        parent_email: Parent or guardian email, students only.
    """

    email: EmailStr
    password: str = Field(..., min_length=PASSWORD_MIN_LENGTH, max_length=PASSWORD_MAX_LENGTH)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    role: SelfServiceRole = "student"
    parent_email: EmailStr | None = Field(
        default=None,
        description="Parent or guardian to link when registering a student",
    )


class LoginRequest(BaseModel):
    """Login request."""

    email: EmailStr
    password: str = Field(..., min_length=1, max_length=PASSWORD_MAX_LENGTH)


class VerifyEmailRequest(BaseModel):
    """Email confirmation request carrying the token from the email link."""

    token: str = Field(..., min_length=1, max_length=512)


class EmailRequest(BaseModel):
    """Request carrying only an email address (resend, forgot password)."""

    email: EmailStr


class ResetPasswordRequest(BaseModel):
    """Password reset request."""

    token: str = Field(..., min_length=1, max_length=512)
    new_password: str = Field(
        ..., min_length=PASSWORD_MIN_LENGTH, max_length=PASSWORD_MAX_LENGTH
    )


class RegistrationResult(BaseModel):
    """Outcome of a registration: the new account and its first session."""

    account: AccountView
    session: SessionToken


class LoginResult(BaseModel):
    """Outcome of a login."""

    account: AccountView
    session: SessionToken


class AuthResponse(BaseModel):
    """Response for register and login.

    Attributes:
        account: The authenticated account.
        access_token: Session credential for the Authorization header.
        token_type: Always "Bearer".
        expires_in: Session lifetime in seconds.
    """

    account: AccountView
    access_token: str
    token_type: str = "Bearer"
    expires_in: int

    @classmethod
    def from_result(cls, result: RegistrationResult | LoginResult) -> "AuthResponse":
        """Flatten a service result into the wire shape."""
        return cls(
            account=result.account,
            access_token=result.session.access_token,
            token_type=result.session.token_type,
            expires_in=result.session.expires_in,
        )


class MessageResponse(BaseModel):
    """Plain acknowledgement."""

    message: str
