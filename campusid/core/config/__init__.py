# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Configuration package for CampusID.

Example:
    >>> from campusid.core.config import get_settings
    >>> settings = get_settings()
    >>> print(settings.jwt.access_token_expire_minutes)
    1440
"""

from campusid.core.config.settings import (
    CORSSettings,
    DatabaseSettings,
    IdentityProviderSettings,
    InvitationSettings,
    JWTSettings,
    RateLimitSettings,
    Settings,
    SMTPSettings,
    clear_settings_cache,
    get_settings,
)

__all__ = [
    # Settings
    "Settings",
    "get_settings",
    "clear_settings_cache",
    # Subsettings
    "DatabaseSettings",
    "JWTSettings",
    "IdentityProviderSettings",
    "SMTPSettings",
    "InvitationSettings",
    "RateLimitSettings",
    "CORSSettings",
]
