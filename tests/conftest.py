# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Pytest configuration and shared fixtures.

This module provides fixtures used across all test types:
- An in-memory identity provider and a recording notifier
- A controllable clock
- Services wired to a fresh in-memory SQLite database
- Settings for building the FastAPI application
"""

from collections.abc import AsyncGenerator
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

import pytest
import pytest_asyncio
from pydantic import SecretStr
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from campusid.core.config import (
    DatabaseSettings,
    InvitationSettings,
    JWTSettings,
    RateLimitSettings,
    Settings,
)
from campusid.domains.auth.jwt import TokenCodec
from campusid.domains.auth.password import PasswordHasher
from campusid.domains.identity import IdentityService
from campusid.domains.relationship import RelationshipService
from campusid.infrastructure.database.connection import (
    build_engine,
    build_sessionmaker,
    create_schema,
)
from campusid.infrastructure.identity_provider import (
    IdentityProvider,
    IdentityProviderError,
    ProviderAuthResult,
    ProviderErrorKind,
)
from campusid.infrastructure.notifications import InvitationNotifier, TemplateKind

TEST_JWT_SECRET = "test-secret-key-for-jwt-testing"
START_TIME = datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc)


# =============================================================================
# Collaborator Fakes
# =============================================================================


class MutableClock:
    """Clock whose current time is set by the test."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


@dataclass
class FakeProviderAccount:
    """Provider-side record kept by InMemoryIdentityProvider."""

    id: str
    email: str
    password: str
    metadata: dict[str, Any]
    confirmed: bool = False


class InMemoryIdentityProvider(IdentityProvider):
    """IdentityProvider keeping accounts and one-time tokens in dicts.

    Verification tokens are ``verify-<id>``. Reset tokens are handed out
    by request_password_reset and recorded in ``reset_tokens``.
    Set ``failures[operation]`` to make the next calls of that
    operation raise the given kind.
    """

    def __init__(self) -> None:
        self.accounts: dict[str, FakeProviderAccount] = {}
        self.verification_tokens: dict[str, str] = {}
        self.reset_tokens: dict[str, str] = {}
        self.verification_emails: list[str] = []
        self.failures: dict[str, ProviderErrorKind] = {}
        self.closed = False

    def _maybe_fail(self, operation: str) -> None:
        kind = self.failures.get(operation)
        if kind is not None:
            raise IdentityProviderError(kind, f"{operation} failed")

    def add_account(
        self,
        email: str,
        password: str,
        role: str = "student",
        confirmed: bool = False,
        first_name: str = "Test",
        last_name: str = "User",
    ) -> FakeProviderAccount:
        """Create a provider-side account without a local row."""
        account = FakeProviderAccount(
            id=str(uuid4()),
            email=email.lower(),
            password=password,
            metadata={"first_name": first_name, "last_name": last_name, "role": role},
            confirmed=confirmed,
        )
        self.accounts[account.email] = account
        self.verification_tokens[f"verify-{account.id}"] = account.email
        return account

    def confirm(self, email: str) -> None:
        """Confirm an email out of band, as if the user clicked the link."""
        self.accounts[email.lower()].confirmed = True

    async def create_account(self, email: str, password: str, metadata: dict[str, Any]) -> str:
        self._maybe_fail("create_account")
        if email.lower() in self.accounts:
            raise IdentityProviderError(ProviderErrorKind.ALREADY_EXISTS, "User already registered")
        account = self.add_account(
            email,
            password,
            role=metadata["role"],
            first_name=metadata["first_name"],
            last_name=metadata["last_name"],
        )
        self.verification_emails.append(account.email)
        return account.id

    async def authenticate(self, email: str, password: str) -> ProviderAuthResult:
        self._maybe_fail("authenticate")
        account = self.accounts.get(email.lower())
        if account is None or account.password != password:
            raise IdentityProviderError(ProviderErrorKind.INVALID_CREDENTIALS, "Invalid login credentials")
        if not account.confirmed:
            return ProviderAuthResult(provider_id=None, confirmed=False)
        return ProviderAuthResult(
            provider_id=account.id,
            confirmed=True,
            metadata=dict(account.metadata),
        )

    async def send_verification(self, email: str) -> None:
        self._maybe_fail("send_verification")
        self.verification_emails.append(email.lower())

    async def redeem_verification(self, token: str) -> str:
        self._maybe_fail("redeem_verification")
        email = self.verification_tokens.pop(token, None)
        if email is None:
            raise IdentityProviderError(ProviderErrorKind.INVALID_TOKEN, "Token has expired or is invalid")
        account = self.accounts[email]
        account.confirmed = True
        return account.id

    async def request_password_reset(self, email: str) -> None:
        self._maybe_fail("request_password_reset")
        token = f"reset-{uuid4()}"
        self.reset_tokens[token] = email.lower()

    async def apply_password_reset(self, token: str, new_password: str) -> str:
        self._maybe_fail("apply_password_reset")
        email = self.reset_tokens.pop(token, None)
        if email is None:
            raise IdentityProviderError(ProviderErrorKind.INVALID_TOKEN, "Token has expired or is invalid")
        account = self.accounts[email]
        account.password = new_password
        return account.id

    def reset_token_for(self, email: str) -> str:
        """Get the outstanding reset token for an email."""
        return next(token for token, owner in self.reset_tokens.items() if owner == email.lower())

    async def aclose(self) -> None:
        self.closed = True


@dataclass
class SentNotice:
    to_email: str
    template_kind: TemplateKind
    context: dict[str, Any]


class RecordingNotifier(InvitationNotifier):
    """Notifier that records every notice instead of sending it."""

    def __init__(self, deliver: bool = True) -> None:
        super().__init__()
        self.sent: list[SentNotice] = []
        self.deliver = deliver

    async def send(self, to_email: str, template_kind: TemplateKind, context: dict[str, Any]) -> bool:
        self.sent.append(SentNotice(to_email, template_kind, dict(context)))
        return self.deliver


# =============================================================================
# Core Fixtures
# =============================================================================


@pytest.fixture
def clock() -> MutableClock:
    """Provide a clock fixed at a known instant."""
    return MutableClock(START_TIME)


@pytest.fixture
def provider() -> InMemoryIdentityProvider:
    """Provide an empty in-memory identity provider."""
    return InMemoryIdentityProvider()


@pytest.fixture
def notifier() -> RecordingNotifier:
    """Provide a recording notifier."""
    return RecordingNotifier()


@pytest.fixture
def jwt_settings() -> JWTSettings:
    """Provide JWT settings with a test secret."""
    return JWTSettings(secret_key=SecretStr(TEST_JWT_SECRET), access_token_expire_minutes=60)


@pytest.fixture
def invitation_settings() -> InvitationSettings:
    """Provide invitation settings."""
    return InvitationSettings(expire_days=7, frontend_url="https://campus.example.com")


@pytest.fixture
def token_codec(jwt_settings: JWTSettings, clock: MutableClock) -> TokenCodec:
    """Provide a token codec on the test clock."""
    return TokenCodec(jwt_settings, clock=clock)


@pytest.fixture
def password_hasher() -> PasswordHasher:
    """Provide a fast bcrypt hasher."""
    return PasswordHasher(rounds=4)


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Provide an in-memory SQLite engine with the schema created."""
    engine = build_engine("sqlite+aiosqlite://")
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """Provide a session on the in-memory database."""
    async with build_sessionmaker(engine)() as session:
        yield session


@pytest.fixture
def identity_service(
    db_session: AsyncSession,
    provider: InMemoryIdentityProvider,
    token_codec: TokenCodec,
    password_hasher: PasswordHasher,
    clock: MutableClock,
) -> IdentityService:
    """Provide an identity service on the in-memory database."""
    return IdentityService(
        db=db_session,
        provider=provider,
        token_codec=token_codec,
        password_hasher=password_hasher,
        clock=clock,
    )


@pytest.fixture
def relationship_service(
    db_session: AsyncSession,
    identity_service: IdentityService,
    notifier: RecordingNotifier,
    token_codec: TokenCodec,
    invitation_settings: InvitationSettings,
    clock: MutableClock,
) -> RelationshipService:
    """Provide a relationship service, attached to the identity service."""
    service = RelationshipService(
        db=db_session,
        identity=identity_service,
        notifier=notifier,
        token_codec=token_codec,
        settings=invitation_settings,
        clock=clock,
    )
    identity_service.attach_parent_linker(service)
    return service


# =============================================================================
# Application Fixtures
# =============================================================================


@pytest.fixture
def app_settings(jwt_settings: JWTSettings, invitation_settings: InvitationSettings) -> Settings:
    """Provide application settings backed by in-memory SQLite."""
    return Settings(
        environment="test",
        debug=False,
        log_level="WARNING",
        database=DatabaseSettings(dsn="sqlite+aiosqlite://", auto_create_schema=True),
        jwt=jwt_settings,
        invitation=invitation_settings,
        rate_limit=RateLimitSettings(enabled=False),
    )
