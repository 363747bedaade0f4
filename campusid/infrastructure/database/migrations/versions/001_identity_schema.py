# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Identity and relationship schema.

Revision ID: 001_identity_schema
Revises: None
Create Date: 2025-01-15

Creates accounts, parent_invitations and parent_student_relationships
based on the SQLAlchemy models in campusid/infrastructure/database/models/.
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001_identity_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create identity tables."""
    # ==========================================================================
    # 1. accounts table
    # ==========================================================================
    op.create_table(
        "accounts",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("role", sa.String(20), nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("is_verified", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reset_token", sa.String(128), nullable=True),
        sa.Column("reset_token_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.CheckConstraint(
            "role IN ('administrator', 'teacher', 'student', 'parent')",
            name="valid_account_role",
        ),
    )
    op.create_index("ix_accounts_email", "accounts", ["email"], unique=True)

    # ==========================================================================
    # 2. parent_invitations table
    # ==========================================================================
    op.create_table(
        "parent_invitations",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("parent_email", sa.String(255), nullable=False),
        sa.Column(
            "student_id",
            sa.String(64),
            sa.ForeignKey("accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "status IN ('pending', 'verified', 'expired')",
            name="valid_invitation_status",
        ),
    )
    op.create_index("ix_parent_invitations_student_id", "parent_invitations", ["student_id"])
    op.create_index(
        "uq_parent_invitations_pending_pair",
        "parent_invitations",
        ["parent_email", "student_id"],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
    )

    # ==========================================================================
    # 3. parent_student_relationships table
    # ==========================================================================
    op.create_table(
        "parent_student_relationships",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "parent_id",
            sa.String(64),
            sa.ForeignKey("accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "student_id",
            sa.String(64),
            sa.ForeignKey("accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("relationship_type", sa.String(20), nullable=False, server_default="parent"),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "status IN ('pending', 'verified')",
            name="valid_relationship_status",
        ),
    )
    op.create_index(
        "ix_parent_student_relationships_parent_id",
        "parent_student_relationships",
        ["parent_id"],
    )
    op.create_index(
        "ix_parent_student_relationships_student_id",
        "parent_student_relationships",
        ["student_id"],
    )
    op.create_index(
        "uq_parent_student_relationships_pending_pair",
        "parent_student_relationships",
        ["parent_id", "student_id"],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
    )


def downgrade() -> None:
    """Drop identity tables."""
    op.drop_table("parent_student_relationships")
    op.drop_table("parent_invitations")
    op.drop_table("accounts")
