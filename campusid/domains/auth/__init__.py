# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Session credentials and password hashing."""

from campusid.domains.auth.jwt import SessionClaims, SessionToken, TokenCodec
from campusid.domains.auth.password import PasswordHasher

__all__ = ["PasswordHasher", "SessionClaims", "SessionToken", "TokenCodec"]
