# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""API middleware package."""

from campusid.api.middleware.auth import AuthMiddleware, CurrentUser, get_current_user
from campusid.api.middleware.rate_limit import (
    get_client_identifier,
    get_ip_only,
    limiter,
    rate_limit_exceeded_handler,
)

__all__ = [
    "AuthMiddleware",
    "CurrentUser",
    "get_client_identifier",
    "get_current_user",
    "get_ip_only",
    "limiter",
    "rate_limit_exceeded_handler",
]
