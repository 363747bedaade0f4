# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Stores over the relational database."""

from campusid.infrastructure.database.repositories.credentials import (
    CredentialStore,
    normalize_email,
)
from campusid.infrastructure.database.repositories.relationships import RelationshipStore

__all__ = ["CredentialStore", "RelationshipStore", "normalize_email"]
