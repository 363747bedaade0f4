# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Credential store: persistence for local accounts.

Emails are stored lower-cased so lookups are case-insensitive. A unique
violation on insert is surfaced as ConflictError; every other database
failure propagates as SQLAlchemyError for the caller to classify.
"""

import logging
from datetime import datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from campusid.core.errors import ConflictError
from campusid.infrastructure.database.models import Account
from campusid.utils.datetime import utc_now

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    """Normalize an email address for storage and lookup."""
    return email.strip().lower()


class CredentialStore:
    """Create, read and update accounts in the relational store.

    Each write commits its own unit of work.

    Attributes:
        db: Async database session.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def create(
        self,
        *,
        account_id: str,
        email: str,
        password_hash: str,
        first_name: str,
        last_name: str,
        role: str,
        is_verified: bool = False,
    ) -> Account:
        """Insert a new account.

        Args:
            account_id: Subject id assigned by the identity provider.
            email: Email address, normalized before storage.
            password_hash: bcrypt hash of the password.
            first_name: Given name.
            last_name: Family name.
            role: Platform role value.
            is_verified: Initial verification flag.

        Returns:
            The persisted account.

        Raises:
            ConflictError: If the email or id is already taken.
        """
        account = Account(
            id=account_id,
            email=normalize_email(email),
            password_hash=password_hash,
            first_name=first_name,
            last_name=last_name,
            role=role,
            is_active=True,
            is_verified=is_verified,
        )
        self.db.add(account)
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            logger.info("Account insert rejected by unique constraint: %s", account.email)
            raise ConflictError("An account with these details already exists.") from e

        await self.db.refresh(account)
        logger.debug("Created account %s (%s)", account.id, account.role)
        return account

    async def get_by_id(self, account_id: str) -> Account | None:
        """Get an account by id."""
        result = await self.db.execute(
            select(Account)
            .where(Account.id == account_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_email(self, email: str) -> Account | None:
        """Get an account by email, case-insensitively."""
        result = await self.db.execute(
            select(Account)
            .where(Account.email == normalize_email(email))
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def mark_verified(self, account_id: str, at: datetime | None = None) -> bool:
        """Flip the verified flag from false to true.

        The update is conditional on the flag still being false, so the
        transition happens at most once. Re-read the account afterwards to
        observe the new value.

        Returns:
            True if this call performed the transition.
        """
        result = await self.db.execute(
            update(Account)
            .where(Account.id == account_id, Account.is_verified.is_(False))
            .values(is_verified=True, updated_at=at or utc_now())
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount > 0

    async def touch_last_login(self, account: Account, at: datetime) -> Account:
        """Record a successful login and clear the failed-login counter."""
        account.last_login_at = at
        account.failed_login_attempts = 0
        account.locked_until = None
        await self.db.commit()
        return account

    async def record_failed_login(
        self, account: Account, at: datetime, max_attempts: int, lock_for: timedelta
    ) -> bool:
        """Count a failed login, locking the account once the limit is reached.

        The counter starts over after a lock is set.

        Returns:
            True if this failure locked the account.
        """
        attempts = (account.failed_login_attempts or 0) + 1
        locked = attempts >= max_attempts
        if locked:
            account.locked_until = at + lock_for
            attempts = 0
        account.failed_login_attempts = attempts
        account.updated_at = utc_now()
        await self.db.commit()
        return locked

    async def set_reset_marker(self, account: Account, token: str, expires_at: datetime) -> Account:
        """Record a pending password reset request."""
        account.reset_token = token
        account.reset_token_expires_at = expires_at
        account.updated_at = utc_now()
        await self.db.commit()
        return account

    async def update_password_hash(self, account: Account, password_hash: str) -> Account:
        """Replace the stored hash and clear the reset marker."""
        account.password_hash = password_hash
        account.reset_token = None
        account.reset_token_expires_at = None
        account.updated_at = utc_now()
        await self.db.commit()
        return account
