# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Service error taxonomy.

Every failure leaving the identity and relationship services is one of
these exceptions. The API layer renders them with a single exception
handler; provider-specific and database-specific errors never cross the
service boundary.

Hierarchy:
- ServiceError
    - BadRequestError (400): malformed or expired token, missing field
    - UnauthorizedError (401): bad credentials, invalid or expired session
    - ForbiddenError (403): role not permitted, email not verified
    - NotFoundError (404): no such resource
    - ConflictError (409): uniqueness violation
    - InternalError (500): dependency failure, dual-write invariant violation
"""


class ServiceError(Exception):
    """Base exception for all service errors.

    Attributes:
        message: Human-readable error description, safe to show to clients.
        code: Stable machine-readable error code.
        status_code: HTTP status code the API layer responds with.
    """

    status_code: int = 500
    default_code: str = "SERVICE_ERROR"
    default_message: str = "The request could not be completed."

    def __init__(self, message: str | None = None, code: str | None = None) -> None:
        """Initialize the service error.

        Args:
            message: Human-readable error description.
            code: Machine-readable error code.
        """
        self.message = message or self.default_message
        self.code = code or self.default_code
        super().__init__(self.message)


class BadRequestError(ServiceError):
    """Raised for malformed input or an invalid or expired one-time token."""

    status_code = 400
    default_code = "BAD_REQUEST"
    default_message = "The request is invalid."


class UnauthorizedError(ServiceError):
    """Raised for bad credentials or an invalid session."""

    status_code = 401
    default_code = "UNAUTHORIZED"
    default_message = "Authentication failed."


class ForbiddenError(ServiceError):
    """Raised when the caller is authenticated but not permitted."""

    status_code = 403
    default_code = "FORBIDDEN"
    default_message = "Access denied."


class NotFoundError(ServiceError):
    """Raised when a requested resource does not exist."""

    status_code = 404
    default_code = "NOT_FOUND"
    default_message = "Resource not found."


class ConflictError(ServiceError):
    """Raised when a write violates a uniqueness constraint."""

    status_code = 409
    default_code = "CONFLICT"
    default_message = "The resource already exists."


class InternalError(ServiceError):
    """Raised for unexpected dependency failures and invariant violations."""

    status_code = 500
    default_code = "INTERNAL_ERROR"
    default_message = "An unexpected error occurred."
