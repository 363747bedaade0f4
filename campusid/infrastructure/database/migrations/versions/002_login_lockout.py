# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Login lockout columns.

Revision ID: 002_login_lockout
Revises: 001_identity_schema
Create Date: 2025-03-04

Adds the failed-login counter and lock expiry to accounts.
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "002_login_lockout"
down_revision: Union[str, None] = "001_identity_schema"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Add lockout columns to accounts."""
    op.add_column(
        "accounts",
        sa.Column("failed_login_attempts", sa.Integer, nullable=False, server_default="0"),
    )
    op.add_column(
        "accounts",
        sa.Column("locked_until", sa.DateTime(timezone=True), nullable=True),
    )


def downgrade() -> None:
    """Drop lockout columns from accounts."""
    op.drop_column("accounts", "locked_until")
    op.drop_column("accounts", "failed_login_attempts")
