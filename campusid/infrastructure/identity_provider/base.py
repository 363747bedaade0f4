# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Identity provider contract.

The identity provider is the service of record for credential correctness
and email confirmation state. Every failure crossing this boundary is an
IdentityProviderError tagged with one ProviderErrorKind, so callers branch
on the kind and never on provider-specific messages.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ProviderErrorKind(str, Enum):
    """Closed set of provider failure kinds."""

    ALREADY_EXISTS = "already_exists"
    INVALID_CREDENTIALS = "invalid_credentials"
    INVALID_TOKEN = "invalid_token"
    UNAVAILABLE = "unavailable"
    UNEXPECTED = "unexpected"


class IdentityProviderError(Exception):
    """Tagged failure raised by every IdentityProvider operation.

    Attributes:
        kind: Failure kind.
        message: Diagnostic description, for logs only.
        status_code: HTTP status returned by the provider, if any.
    """

    def __init__(
        self,
        kind: ProviderErrorKind,
        message: str = "",
        status_code: int | None = None,
    ) -> None:
        self.kind = kind
        self.message = message or kind.value
        self.status_code = status_code
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"IdentityProviderError(kind={self.kind.value}, status_code={self.status_code})"


@dataclass
class ProviderAuthResult:
    """Outcome of a successful password check at the provider.

    Attributes:
        provider_id: Subject id at the provider. None when the provider
            withholds the identity because the email is unconfirmed.
        confirmed: Whether the provider considers the email confirmed.
        metadata: Profile metadata stored with the provider-side account.
    """

    provider_id: str | None
    confirmed: bool
    metadata: dict[str, Any] = field(default_factory=dict)


class IdentityProvider(ABC):
    """Abstract identity provider.

    Implementations own their transport resources and release them in
    ``aclose``. They are constructed once at process start and shared by
    every request.
    """

    @abstractmethod
    async def create_account(self, email: str, password: str, metadata: dict[str, Any]) -> str:
        """Create a provider-side account and trigger its confirmation email.

        Returns:
            The provider-assigned subject id.

        Raises:
            IdentityProviderError: ALREADY_EXISTS if the email is taken.
        """
        ...

    @abstractmethod
    async def authenticate(self, email: str, password: str) -> ProviderAuthResult:
        """Check a password.

        Raises:
            IdentityProviderError: INVALID_CREDENTIALS on a bad email/password.
        """
        ...

    @abstractmethod
    async def send_verification(self, email: str) -> None:
        """Send (or re-send) the confirmation email."""
        ...

    @abstractmethod
    async def redeem_verification(self, token: str) -> str:
        """Redeem an email confirmation token.

        Returns:
            The subject id whose email was confirmed.

        Raises:
            IdentityProviderError: INVALID_TOKEN if unknown, used or expired.
        """
        ...

    @abstractmethod
    async def request_password_reset(self, email: str) -> None:
        """Start the out-of-band password reset flow."""
        ...

    @abstractmethod
    async def apply_password_reset(self, token: str, new_password: str) -> str:
        """Replace the password using a reset token.

        Returns:
            The subject id whose password was replaced.

        Raises:
            IdentityProviderError: INVALID_TOKEN if unknown, used or expired.
        """
        ...

    async def aclose(self) -> None:
        """Release transport resources."""
        return None
