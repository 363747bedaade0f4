# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""FastAPI Application Factory.

This module provides the main application factory for the CampusID API.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncGenerator, Callable

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from campusid import __version__
from campusid.api.middleware.auth import AuthMiddleware
from campusid.api.middleware.rate_limit import limiter, rate_limit_exceeded_handler
from campusid.api.routes import health
from campusid.api.v1 import router as v1_router
from campusid.core.config import Settings, get_settings
from campusid.core.errors import InternalError, ServiceError
from campusid.domains.auth.jwt import TokenCodec
from campusid.domains.auth.password import PasswordHasher
from campusid.infrastructure.database.connection import (
    DatabaseError,
    close_database,
    init_database,
)
from campusid.infrastructure.identity_provider import GoTrueIdentityProvider, IdentityProvider
from campusid.infrastructure.notifications import EmailInvitationNotifier, InvitationNotifier
from campusid.utils.datetime import utc_now
from campusid.utils.logging import setup_logging

logger = logging.getLogger(__name__)


def _error_body(error: ServiceError) -> dict[str, str]:
    return {"error": error.code, "message": error.message}


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    """Render a service error as ``{"error": code, "message": message}``."""
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=_error_body(exc), headers=headers)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render request validation failures as 400 Bad Request."""
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{field}: {first.get('msg')}" if field else str(first.get("msg"))
    else:
        message = "The request is invalid."
    return JSONResponse(status_code=400, content={"error": "VALIDATION_ERROR", "message": message})


async def database_error_handler(request: Request, exc: DatabaseError) -> JSONResponse:
    """Render unexpected database failures as 500 Internal Error."""
    logger.error("%s %s hit a database error: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content=_error_body(InternalError()))


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    Handles startup and shutdown events for the application.
    Initializes and cleans up:
    - Logging
    - Database connections
    - Identity provider HTTP client

    Args:
        app: The FastAPI application instance.

    Yields:
        None during application runtime.
    """
    settings: Settings = app.state.settings
    setup_logging(settings)
    logger.info(
        "Starting CampusID API (environment=%s, debug=%s)",
        settings.environment,
        settings.debug,
    )

    # =========================================================================
    # Startup
    # =========================================================================

    try:
        await init_database(settings)
        logger.info("Database connection initialized")
    except DatabaseError as e:
        logger.warning("Failed to initialize database connection: %s", str(e))

    yield

    # =========================================================================
    # Shutdown
    # =========================================================================

    try:
        await app.state.identity_provider.aclose()
        logger.info("Identity provider client closed")
    except Exception as e:
        logger.warning("Error closing identity provider client: %s", str(e))

    try:
        await close_database()
        logger.info("Database connection closed")
    except Exception as e:
        logger.warning("Error closing database connection: %s", str(e))

    logger.info("Shutting down CampusID API")


def create_app(
    settings: Settings | None = None,
    identity_provider: IdentityProvider | None = None,
    notifier: InvitationNotifier | None = None,
    clock: Callable[[], datetime] = utc_now,
    password_hasher: PasswordHasher | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    This factory function creates a new FastAPI instance with all
    middleware, routes, and configurations applied. Collaborators are
    constructed once here and shared by every request through app.state.

    Args:
        settings: Application settings, loaded from the environment if omitted.
        identity_provider: Identity provider client, GoTrue by default.
        notifier: Invitation notifier, SMTP email by default.
        clock: Source of the current time for sessions and expiries.
        password_hasher: Local password hasher.

    Returns:
        Configured FastAPI application instance.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="CampusID API",
        description="Identity and parent-student relationship verification",
        version=__version__,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan,
        # Disable automatic redirects from /path to /path/
        # This prevents 307 redirects that lose Authorization headers
        redirect_slashes=False,
    )

    # =========================================================================
    # State
    # =========================================================================
    app.state.settings = settings
    app.state.clock = clock
    app.state.token_codec = TokenCodec(settings.jwt, clock=clock)
    app.state.password_hasher = password_hasher or PasswordHasher()
    app.state.identity_provider = identity_provider or GoTrueIdentityProvider(
        settings.identity_provider
    )
    app.state.notifier = notifier or EmailInvitationNotifier(settings.smtp)

    limiter.enabled = settings.rate_limit.enabled
    app.state.limiter = limiter

    # =========================================================================
    # Exception handlers
    # =========================================================================
    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(DatabaseError, database_error_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

    # =========================================================================
    # Middleware (order matters - last added is first executed)
    # =========================================================================

    # Auth middleware - validates session credentials
    app.add_middleware(AuthMiddleware)

    # CORS middleware (added last so it executes first)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors.origins_list,
        allow_credentials=settings.cors.allow_credentials,
        allow_methods=settings.cors.allow_methods,
        allow_headers=settings.cors.allow_headers,
    )

    # =========================================================================
    # Routes
    # =========================================================================
    app.include_router(health.router, tags=["Health"])
    app.include_router(v1_router)

    return app
