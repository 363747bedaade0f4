# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Session credential codec.

Issues and verifies signed, time-boxed session tokens (JWT via python-jose)
and produces opaque identifiers for invitations and reset markers.

Example:
    >>> from campusid.core.config import get_settings
    >>> codec = TokenCodec(get_settings().jwt)
    >>> session = codec.issue_session("user-123", "student")
    >>> claims = codec.verify_session(session.access_token)
"""

import logging
import secrets
from datetime import datetime, timedelta
from typing import Callable

from jose import JWTError, jwt
from pydantic import BaseModel

from campusid.core.config.settings import JWTSettings
from campusid.core.errors import UnauthorizedError
from campusid.utils.datetime import utc_now

logger = logging.getLogger(__name__)

BEARER_PREFIX = "bearer"


class SessionClaims(BaseModel):
    """Verified session claims.

    Attributes:
        sub: Subject (account id).
        role: Account role at issue time.
        iat: Issued at timestamp.
        exp: Expiration timestamp.
        jti: Unique token id.
    """

    sub: str
    role: str
    iat: int
    exp: int
    jti: str


class SessionToken(BaseModel):
    """Issued session credential.

    Attributes:
        access_token: Signed token string, opaque to clients.
        token_type: Always "Bearer".
        expires_in: Lifetime in seconds.
    """

    access_token: str
    token_type: str = "Bearer"
    expires_in: int


class TokenCodec:
    """Session token creation and validation.

    Expiry is checked against the injected clock rather than inside the
    JWT library so that the whole service shares one notion of "now".

    Attributes:
        _settings: JWT configuration settings.
    """

    def __init__(
        self,
        settings: JWTSettings,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._settings = settings
        self._clock = clock

    @property
    def ttl(self) -> timedelta:
        """Session lifetime."""
        return timedelta(minutes=self._settings.access_token_expire_minutes)

    def issue_session(self, subject_id: str, role: str) -> SessionToken:
        """Issue a session credential.

        Args:
            subject_id: Account id.
            role: Account role.

        Returns:
            SessionToken with the signed token and its lifetime.
        """
        now = self._clock()
        payload = {
            "sub": str(subject_id),
            "role": role,
            "iss": self._settings.issuer,
            "iat": int(now.timestamp()),
            "exp": int((now + self.ttl).timestamp()),
            "jti": secrets.token_urlsafe(16),
        }
        token = jwt.encode(
            payload,
            self._settings.secret_key.get_secret_value(),
            algorithm=self._settings.algorithm,
        )
        return SessionToken(
            access_token=token,
            token_type="Bearer",
            expires_in=int(self.ttl.total_seconds()),
        )

    def verify_session(self, token: str) -> SessionClaims:
        """Verify a session credential.

        Args:
            token: Signed token string.

        Returns:
            SessionClaims with the decoded claims.

        Raises:
            UnauthorizedError: "expired" if past expiry, "invalid" for any
                signature or structure failure.
        """
        try:
            payload = jwt.decode(
                token,
                self._settings.secret_key.get_secret_value(),
                algorithms=[self._settings.algorithm],
                issuer=self._settings.issuer,
                options={"verify_exp": False},
            )
            claims = SessionClaims(
                sub=payload["sub"],
                role=payload["role"],
                iat=payload["iat"],
                exp=payload["exp"],
                jti=payload["jti"],
            )
        except (JWTError, KeyError, TypeError, ValueError) as e:
            logger.debug("Session token rejected: %s", str(e))
            raise UnauthorizedError("invalid") from e

        if int(self._clock().timestamp()) > claims.exp:
            raise UnauthorizedError("expired")
        return claims

    @staticmethod
    def extract_bearer(header_value: str | None) -> str:
        """Extract the token from an Authorization header value.

        Raises:
            UnauthorizedError: If the header is absent or not "Bearer <token>".
        """
        if not header_value:
            raise UnauthorizedError("missing")
        parts = header_value.split()
        if len(parts) != 2 or parts[0].lower() != BEARER_PREFIX:
            raise UnauthorizedError("malformed")
        return parts[1]

    @staticmethod
    def generate_identifier(nbytes: int = 32) -> str:
        """Generate an opaque, url-safe identifier."""
        return secrets.token_urlsafe(nbytes)
