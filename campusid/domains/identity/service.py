# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Identity service: registration, login, email verification, password reset.

Every account exists twice: at the identity provider, which is the source
of truth for passwords and email confirmation, and in the local credential
store. The two are written by separate operations:

- register writes the provider first and the local store second; a local
  failure after a provider success is logged as drift and not rolled back
- login reconciles: a provider-confirmed email flips the local verified
  flag, and a missing local row is re-created from provider metadata

Errors leaving this module are always campusid.core.errors.ServiceError
subclasses.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from campusid.core.errors import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    InternalError,
    NotFoundError,
    UnauthorizedError,
)
from campusid.domains.auth.jwt import TokenCodec
from campusid.domains.auth.password import PasswordHasher
from campusid.infrastructure.database.models import Account, AccountRole
from campusid.infrastructure.database.repositories import CredentialStore, normalize_email
from campusid.infrastructure.identity_provider import (
    IdentityProvider,
    IdentityProviderError,
    ProviderAuthResult,
    ProviderErrorKind,
)
from campusid.models.account import AccountView
from campusid.models.auth import LoginResult, RegistrationResult
from campusid.models.relationship import LinkResult
from campusid.utils.datetime import is_expired, utc_now

logger = logging.getLogger(__name__)

INVALID_LOGIN_MESSAGE = "Invalid email or password."
REGISTRATION_CONFLICT_MESSAGE = "Registration could not be completed with the provided details."
RESET_TOKEN_TTL = timedelta(hours=1)
MAX_FAILED_LOGIN_ATTEMPTS = 5
LOGIN_LOCKOUT = timedelta(minutes=15)


class ParentLinker(Protocol):
    """Links a parent email to a newly registered student."""

    async def link_parent(
        self, student_id: str, parent_email: str, student_display_name: str
    ) -> LinkResult: ...


class IdentityService:
    """Service for account lifecycle operations.

    Attributes:
        db: Async database session.
        credentials: Credential store bound to ``db``.
    """

    def __init__(
        self,
        db: AsyncSession,
        provider: IdentityProvider,
        token_codec: TokenCodec,
        password_hasher: PasswordHasher | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize identity service.

        Args:
            db: Async database session.
            provider: Identity provider client shared by the process.
            token_codec: Session credential codec.
            password_hasher: bcrypt hasher for the local hash.
            clock: Source of the current time.
        """
        self.db = db
        self.credentials = CredentialStore(db)
        self._provider = provider
        self._tokens = token_codec
        self._hasher = password_hasher or PasswordHasher()
        self._clock = clock
        self._parent_linker: ParentLinker | None = None

    def attach_parent_linker(self, linker: ParentLinker) -> None:
        """Set the collaborator used to link parents of new students."""
        self._parent_linker = linker

    # =========================================================================
    # Registration
    # =========================================================================

    async def register(
        self,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        role: str,
        parent_email: str | None = None,
    ) -> RegistrationResult:
        """Register a new account.

        Args:
            email: Email address.
            password: Plain text password.
            first_name: Given name.
            last_name: Family name.
            role: Platform role.
            parent_email: Parent or guardian email, students only.

        Returns:
            The new account and its first session.

        Raises:
            BadRequestError: If the role is unknown.
            ConflictError: If the email is already registered.
            InternalError: If the provider fails or the local write fails.
        """
        try:
            account_role = AccountRole(role)
        except ValueError as e:
            raise BadRequestError(f"Unknown role: {role}") from e

        email = normalize_email(email)
        if await self.credentials.get_by_email(email) is not None:
            raise ConflictError(REGISTRATION_CONFLICT_MESSAGE)

        try:
            provider_id = await self._provider.create_account(
                email,
                password,
                {"first_name": first_name, "last_name": last_name, "role": account_role.value},
            )
        except IdentityProviderError as e:
            if e.kind == ProviderErrorKind.ALREADY_EXISTS:
                raise ConflictError(REGISTRATION_CONFLICT_MESSAGE) from e
            logger.error("Identity provider rejected registration (%s): %s", e.kind.value, e.message)
            raise InternalError("Registration is temporarily unavailable.") from e

        password_hash = await self._hasher.hash_async(password)

        try:
            account = await self.credentials.create(
                account_id=provider_id,
                email=email,
                password_hash=password_hash,
                first_name=first_name,
                last_name=last_name,
                role=account_role.value,
                is_verified=False,
            )
        except ConflictError:
            logger.warning(
                "Local account insert conflicted after provider created %s; "
                "provider account left for login reconciliation",
                provider_id,
            )
            raise ConflictError(REGISTRATION_CONFLICT_MESSAGE)
        except SQLAlchemyError as e:
            logger.error(
                "Dual-write drift: provider account %s created but local write failed: %s",
                provider_id,
                str(e),
            )
            raise InternalError("Registration could not be completed.") from e

        view = AccountView.model_validate(account)
        logger.info("Registered account %s (%s)", view.id, view.role)

        if account_role == AccountRole.STUDENT and parent_email:
            await self._link_parent_best_effort(view, parent_email)

        return RegistrationResult(
            account=view,
            session=self._tokens.issue_session(view.id, view.role),
        )

    async def _link_parent_best_effort(self, student: AccountView, parent_email: str) -> None:
        """Link the parent of a new student; failures never fail registration."""
        if self._parent_linker is None:
            logger.warning("No parent linker attached; skipping parent link for %s", student.id)
            return
        if normalize_email(parent_email) == student.email:
            logger.info("Student %s listed their own email as parent email", student.id)
            return
        try:
            await self._parent_linker.link_parent(
                student.id,
                parent_email,
                f"{student.first_name} {student.last_name}".strip(),
            )
        except Exception:
            logger.exception("Parent linking failed for student %s", student.id)
            await self.db.rollback()

    # =========================================================================
    # Login
    # =========================================================================

    async def login(self, email: str, password: str) -> LoginResult:
        """Authenticate and issue a session.

        The provider checks the password. The local row decides whether the
        account may sign in, after being reconciled with the provider's
        confirmation state. Five consecutive bad passwords against a known
        account lock it for fifteen minutes; a locked account is refused
        with the same message as a bad password, before the provider is
        asked.

        Raises:
            UnauthorizedError: Bad credentials, locked or inactive account.
            ForbiddenError: Email not verified.
            InternalError: Provider unavailable or identity mismatch.
        """
        email = normalize_email(email)
        now = self._clock()

        known = await self.credentials.get_by_email(email)
        if known is not None and known.locked_until is not None and not is_expired(
            known.locked_until, now
        ):
            logger.warning("Login attempt for locked account %s", known.id)
            raise UnauthorizedError(INVALID_LOGIN_MESSAGE)

        try:
            auth = await self._provider.authenticate(email, password)
        except IdentityProviderError as e:
            if e.kind == ProviderErrorKind.INVALID_CREDENTIALS:
                if known is not None:
                    await self._record_failed_login(known, now)
                raise UnauthorizedError(INVALID_LOGIN_MESSAGE) from e
            logger.error("Identity provider login failed (%s): %s", e.kind.value, e.message)
            raise InternalError("Login is temporarily unavailable.") from e

        account = await self.credentials.get_by_email(email)
        if account is None:
            account = await self._recreate_local_account(email, password, auth)
            if account is None:
                raise UnauthorizedError(INVALID_LOGIN_MESSAGE)

        if auth.provider_id is not None and auth.provider_id != account.id:
            logger.error(
                "Identity mismatch for %s: local id %s, provider id %s",
                email,
                account.id,
                auth.provider_id,
            )
            raise InternalError("Login could not be completed.")

        if not account.is_active:
            raise UnauthorizedError("This account is disabled.")

        if not account.is_verified:
            if not auth.confirmed:
                raise ForbiddenError(
                    "Please verify your email address before signing in.",
                    code="EMAIL_NOT_VERIFIED",
                )
            if await self.credentials.mark_verified(account.id, self._clock()):
                logger.info("Reconciled verified flag for %s from provider", account.id)
            account = await self._require_account(account.id)

        account = await self.credentials.touch_last_login(account, self._clock())
        view = AccountView.model_validate(account)
        return LoginResult(account=view, session=self._tokens.issue_session(view.id, view.role))

    async def _record_failed_login(self, account: Account, now: datetime) -> None:
        """Count a bad password against a known account, locking it at the limit."""
        try:
            locked = await self.credentials.record_failed_login(
                account, now, MAX_FAILED_LOGIN_ATTEMPTS, LOGIN_LOCKOUT
            )
        except SQLAlchemyError as e:
            logger.warning("Could not record failed login for %s: %s", account.id, str(e))
            await self.db.rollback()
            return
        if locked:
            logger.warning(
                "Account %s locked for %s after %d failed logins",
                account.id,
                LOGIN_LOCKOUT,
                MAX_FAILED_LOGIN_ATTEMPTS,
            )

    async def _recreate_local_account(
        self, email: str, password: str, auth: ProviderAuthResult
    ) -> Account | None:
        """Re-create a local row lost to dual-write drift.

        Only possible when the provider disclosed the subject id and the
        profile metadata written at registration.
        """
        metadata = auth.metadata or {}
        role = metadata.get("role")
        if auth.provider_id is None or role not in {r.value for r in AccountRole}:
            logger.warning("Provider accepted login for %s but no local account exists", email)
            return None

        password_hash = await self._hasher.hash_async(password)
        try:
            account = await self.credentials.create(
                account_id=auth.provider_id,
                email=email,
                password_hash=password_hash,
                first_name=str(metadata.get("first_name") or ""),
                last_name=str(metadata.get("last_name") or ""),
                role=role,
                is_verified=auth.confirmed,
            )
        except ConflictError:
            return await self.credentials.get_by_email(email)
        except SQLAlchemyError:
            logger.exception("Could not re-create local account %s", auth.provider_id)
            return None

        logger.warning("Re-created missing local account %s from provider metadata", account.id)
        return account

    # =========================================================================
    # Email verification
    # =========================================================================

    async def verify_email(self, token: str) -> AccountView:
        """Redeem an email confirmation token.

        Raises:
            BadRequestError: If the token is invalid, expired or used.
            InternalError: If the confirmed identity has no local account.
        """
        try:
            provider_id = await self._provider.redeem_verification(token)
        except IdentityProviderError as e:
            if e.kind == ProviderErrorKind.INVALID_TOKEN:
                raise BadRequestError("Invalid or expired verification token.") from e
            logger.error("Identity provider verification failed (%s): %s", e.kind.value, e.message)
            raise InternalError("Email verification is temporarily unavailable.") from e

        account = await self.credentials.get_by_id(provider_id)
        if account is None:
            logger.error(
                "Dual-write drift: provider confirmed %s but no local account exists",
                provider_id,
            )
            raise InternalError("Email verification could not be completed.")

        if await self.credentials.mark_verified(provider_id, self._clock()):
            logger.info("Email verified for %s", provider_id)
        return AccountView.model_validate(await self._require_account(provider_id))

    async def resend_verification(self, email: str) -> None:
        """Re-send the confirmation email to a known, unverified account.

        Always returns normally so callers cannot probe which emails exist.
        """
        account = await self.credentials.get_by_email(email)
        if account is None or account.is_verified:
            return

        try:
            await self._provider.send_verification(account.email)
        except IdentityProviderError as e:
            logger.warning(
                "Verification resend for %s failed (%s): %s",
                account.id,
                e.kind.value,
                e.message,
            )

    # =========================================================================
    # Password reset
    # =========================================================================

    async def request_password_reset(self, email: str) -> None:
        """Start a password reset.

        Returns normally whether or not the email exists and whether or not
        the provider call succeeds.
        """
        account = await self.credentials.get_by_email(email)
        if account is None:
            logger.info("Password reset requested for unknown email")
            return

        try:
            await self._provider.request_password_reset(account.email)
        except IdentityProviderError as e:
            logger.warning(
                "Password reset request for %s swallowed after provider failure (%s): %s",
                account.id,
                e.kind.value,
                e.message,
            )
            return

        try:
            await self.credentials.set_reset_marker(
                account,
                self._tokens.generate_identifier(),
                self._clock() + RESET_TOKEN_TTL,
            )
        except SQLAlchemyError as e:
            logger.warning("Could not record reset marker for %s: %s", account.id, str(e))
            await self.db.rollback()

    async def reset_password(self, token: str, new_password: str) -> None:
        """Replace the password using a reset token.

        Raises:
            BadRequestError: If the token is invalid or expired.
            InternalError: If the provider is unavailable.
        """
        try:
            provider_id = await self._provider.apply_password_reset(token, new_password)
        except IdentityProviderError as e:
            if e.kind == ProviderErrorKind.INVALID_TOKEN:
                raise BadRequestError("Invalid or expired reset token.") from e
            logger.error("Identity provider reset failed (%s): %s", e.kind.value, e.message)
            raise InternalError("Password reset is temporarily unavailable.") from e

        account = await self.credentials.get_by_id(provider_id)
        if account is None:
            logger.error(
                "Dual-write drift: provider reset password of %s but no local account exists",
                provider_id,
            )
            return

        if account.reset_token_expires_at is not None and is_expired(
            account.reset_token_expires_at, self._clock()
        ):
            logger.info("Clearing expired reset marker for %s", account.id)

        password_hash = await self._hasher.hash_async(new_password)
        await self.credentials.update_password_hash(account, password_hash)
        logger.info("Password reset for %s", account.id)

    # =========================================================================
    # Lookups
    # =========================================================================

    async def get_account(self, account_id: str) -> AccountView:
        """Get an account.

        Raises:
            NotFoundError: If no such account exists.
        """
        account = await self.credentials.get_by_id(account_id)
        if account is None:
            raise NotFoundError("Account not found.")
        return AccountView.model_validate(account)

    async def find_account_by_email(self, email: str) -> AccountView | None:
        """Look up an account by email."""
        account = await self.credentials.get_by_email(email)
        return AccountView.model_validate(account) if account else None

    async def _require_account(self, account_id: str) -> Account:
        account = await self.credentials.get_by_id(account_id)
        if account is None:
            raise InternalError("Account disappeared during the request.")
        return account
