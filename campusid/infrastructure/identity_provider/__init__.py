# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Identity provider contract and adapters."""

from campusid.infrastructure.identity_provider.base import (
    IdentityProvider,
    IdentityProviderError,
    ProviderAuthResult,
    ProviderErrorKind,
)
from campusid.infrastructure.identity_provider.gotrue import GoTrueIdentityProvider

__all__ = [
    "GoTrueIdentityProvider",
    "IdentityProvider",
    "IdentityProviderError",
    "ProviderAuthResult",
    "ProviderErrorKind",
]
