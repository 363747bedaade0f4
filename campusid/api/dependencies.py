# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""FastAPI dependency injection definitions.

This module provides dependency functions for FastAPI endpoints.
Dependencies are used to:
- Get database sessions
- Get authenticated users
- Get service instances wired to the collaborators on app.state

Example:
    @router.get("/me")
    async def me(
        current_user: CurrentUser = Depends(require_auth),
        identity: IdentityService = Depends(get_identity_service),
    ):
        ...
"""

import logging
from typing import Annotated, AsyncGenerator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from campusid.api.middleware.auth import CurrentUser, get_current_user
from campusid.core.errors import ForbiddenError, UnauthorizedError
from campusid.domains.identity import IdentityService
from campusid.domains.relationship import RelationshipService
from campusid.infrastructure.database.connection import get_session

logger = logging.getLogger(__name__)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Get a database session for the duration of the request.

    Yields:
        AsyncSession for the relational store.
    """
    async with get_session() as session:
        yield session


def _build_services(request: Request, db: AsyncSession) -> tuple[IdentityService, RelationshipService]:
    """Build the identity and relationship services for one request.

    Both services share the request's session. The relationship service
    is attached to the identity service so student registration can
    link a parent.
    """
    state = request.app.state
    identity = IdentityService(
        db=db,
        provider=state.identity_provider,
        token_codec=state.token_codec,
        password_hasher=state.password_hasher,
        clock=state.clock,
    )
    relationships = RelationshipService(
        db=db,
        identity=identity,
        notifier=state.notifier,
        token_codec=state.token_codec,
        settings=state.settings.invitation,
        clock=state.clock,
    )
    identity.attach_parent_linker(relationships)
    return identity, relationships


def get_identity_service(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> IdentityService:
    """Get an identity service bound to the request's session."""
    identity, _ = _build_services(request, db)
    return identity


def get_relationship_service(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> RelationshipService:
    """Get a relationship service bound to the request's session."""
    _, relationships = _build_services(request, db)
    return relationships


# =========================================================================
# Authentication Dependencies
# =========================================================================


def get_optional_user(request: Request) -> CurrentUser | None:
    """Get current user if authenticated, None otherwise."""
    return get_current_user(request)


def require_auth(request: Request) -> CurrentUser:
    """Require an authenticated account.

    Args:
        request: HTTP request.

    Returns:
        CurrentUser.

    Raises:
        UnauthorizedError: If no valid session credential was presented.
    """
    user = get_current_user(request)
    if not user:
        raise UnauthorizedError()
    return user


class RequireRole:
    """Dependency for requiring specific roles.

    Example:
        @router.get("/children")
        async def list_children(
            user: CurrentUser = Depends(RequireRole("parent")),
        ):
            ...
    """

    def __init__(self, *roles: str) -> None:
        """Initialize role requirement.

        Args:
            roles: Accepted role codes (any of these).
        """
        self.roles = roles

    def __call__(self, request: Request) -> CurrentUser:
        """Check roles and return user.

        Raises:
            UnauthorizedError: If not authenticated.
            ForbiddenError: If the account has none of the roles.
        """
        user = require_auth(request)

        if not user.has_any_role(*self.roles):
            raise ForbiddenError(f"Requires role: {', '.join(self.roles)}")

        return user


# Type aliases for cleaner endpoint signatures
AuthenticatedUser = Annotated[CurrentUser, Depends(require_auth)]
OptionalUser = Annotated[CurrentUser | None, Depends(get_optional_user)]
ParentUser = Annotated[CurrentUser, Depends(RequireRole("parent"))]
IdentityServiceDep = Annotated[IdentityService, Depends(get_identity_service)]
RelationshipServiceDep = Annotated[RelationshipService, Depends(get_relationship_service)]
