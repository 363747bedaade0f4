# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Outward projection of an account.

AccountView is the only shape in which an account leaves the identity
services; it has no password hash field.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class AccountView(BaseModel):
    """Public account fields.

    Attributes:
        id: Account id (the identity provider subject id).
        email: Lower-cased email address.
        first_name: Given name.
        last_name: Family name.
        role: Platform role.
        is_active: Whether the account may sign in.
        is_verified: Whether the email address has been confirmed.
        last_login_at: Last successful login.
        created_at: Registration time.
    """

    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    first_name: str
    last_name: str
    role: str
    is_active: bool
    is_verified: bool
    last_login_at: datetime | None = None
    created_at: datetime | None = None
