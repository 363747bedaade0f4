# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Identity domain: account lifecycle against the identity provider."""

from campusid.domains.identity.service import (
    INVALID_LOGIN_MESSAGE,
    LOGIN_LOCKOUT,
    MAX_FAILED_LOGIN_ATTEMPTS,
    IdentityService,
    ParentLinker,
)

__all__ = [
    "INVALID_LOGIN_MESSAGE",
    "LOGIN_LOCKOUT",
    "MAX_FAILED_LOGIN_ATTEMPTS",
    "IdentityService",
    "ParentLinker",
]
