# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Rate limiting using slowapi.

This module provides rate limiting for the credential-guessing and
email-triggering endpoints. Limits are counted per client in process
memory. Whether limits are enforced is read from the application's
limiter at request time, so create_app switches them on or off.

Example:
    @router.post("/login")
    @limiter.limit(login_rate_limit, key_func=get_ip_only)
    async def login(request: Request, ...):
        ...
"""

import json
import logging

from fastapi import Request, Response
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from campusid.core.config import get_settings

logger = logging.getLogger(__name__)

# Endpoints that send email are capped independently of login.
RATE_LIMIT_EMAIL = "5/minute"


def get_client_identifier(request: Request) -> str:
    """Get a unique identifier for the client.

    Uses the account id if authenticated, otherwise the IP address.

    Args:
        request: HTTP request.

    Returns:
        Client identifier string.
    """
    user = getattr(request.state, "user", None)
    if user:
        return f"user:{user.id}"
    return f"ip:{get_remote_address(request)}"


def get_ip_only(request: Request) -> str:
    """Get client IP address only.

    Used for login endpoints where the caller is not yet authenticated.

    Args:
        request: HTTP request.

    Returns:
        IP address string.
    """
    return get_remote_address(request)


def login_rate_limit() -> str:
    """Login attempts allowed per minute per IP."""
    return f"{get_settings().rate_limit.login_per_minute}/minute"


limiter = Limiter(
    key_func=get_client_identifier,
    default_limits=[f"{get_settings().rate_limit.requests_per_minute}/minute"],
    storage_uri="memory://",
)


async def rate_limit_exceeded_handler(
    request: Request,
    exc: RateLimitExceeded,
) -> Response:
    """Handle rate limit exceeded errors.

    Returns a 429 Too Many Requests response in the service error shape.

    Args:
        request: HTTP request.
        exc: Rate limit exceeded exception.

    Returns:
        JSON response with error details.
    """
    logger.warning(
        "Rate limit exceeded: %s for %s",
        exc.detail,
        get_client_identifier(request),
    )

    return Response(
        content=json.dumps(
            {"error": "RATE_LIMITED", "message": "Too many requests. Please try again later."}
        ),
        status_code=429,
        media_type="application/json",
        headers={"Retry-After": "60"},
    )
