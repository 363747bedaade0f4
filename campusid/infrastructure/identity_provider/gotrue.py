# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""GoTrue-compatible identity provider client.

Talks to the auth REST API exposed by GoTrue (the engine behind Supabase
Auth) with a single shared httpx.AsyncClient.

Retry policy:
- authenticate: retried once on any transport error (read-only)
- redeem_verification: retried once only when the connection could not
  be established, so the request was never delivered
- account creation and password resets: never retried
"""

import logging
from typing import Any

import httpx

from campusid.core.config.settings import IdentityProviderSettings
from campusid.infrastructure.identity_provider.base import (
    IdentityProvider,
    IdentityProviderError,
    ProviderAuthResult,
    ProviderErrorKind,
)

logger = logging.getLogger(__name__)

_ALREADY_EXISTS_CODES = frozenset({"user_already_exists", "email_exists"})
_INVALID_CREDENTIALS_CODES = frozenset({"invalid_grant", "invalid_credentials"})
_UNCONFIRMED_CODES = frozenset({"email_not_confirmed"})
_TOKEN_REJECTED_STATUSES = frozenset({400, 401, 403, 404, 410, 422})

_CONNECT_ERRORS: tuple[type[Exception], ...] = (httpx.ConnectError, httpx.ConnectTimeout)
_TRANSPORT_ERRORS: tuple[type[Exception], ...] = (httpx.TransportError,)


class GoTrueIdentityProvider(IdentityProvider):
    """IdentityProvider backed by a GoTrue auth API.

    Attributes:
        base_url: Root of the auth API, e.g. https://<project>.supabase.co/auth/v1
    """

    def __init__(
        self,
        settings: IdentityProviderSettings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            settings: Provider URL, keys and timeout.
            transport: Optional httpx transport, used to stub the network.
        """
        self._settings = settings
        self.base_url = settings.url.rstrip("/")

        headers = {"Content-Type": "application/json"}
        anon_key = settings.anon_key.get_secret_value()
        if anon_key:
            headers["apikey"] = anon_key
            headers["Authorization"] = f"Bearer {anon_key}"

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=settings.timeout,
            headers=headers,
            transport=transport,
        )

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    # =========================================================================
    # Transport helpers
    # =========================================================================

    async def _send(
        self,
        method: str,
        path: str,
        operation: str,
        retry_on: tuple[type[Exception], ...] = (),
        **kwargs: Any,
    ) -> httpx.Response:
        """Send one request, retrying at most once on ``retry_on`` errors."""
        attempts = 2 if retry_on else 1
        for attempt in range(1, attempts + 1):
            try:
                return await self._client.request(method, path, **kwargs)
            except httpx.TransportError as e:
                if attempt < attempts and isinstance(e, retry_on):
                    logger.warning("Identity provider %s failed (%s), retrying once", operation, e)
                    continue
                logger.error("Identity provider %s unavailable: %s", operation, e)
                raise IdentityProviderError(
                    ProviderErrorKind.UNAVAILABLE, f"{operation}: {e}"
                ) from e
        raise IdentityProviderError(ProviderErrorKind.UNEXPECTED, f"{operation}: no attempt made")

    @staticmethod
    def _error_details(response: httpx.Response) -> tuple[str, str]:
        """Extract (error_code, message) from an error response."""
        try:
            body = response.json()
        except ValueError:
            return "", response.text
        if not isinstance(body, dict):
            return "", str(body)
        code = body.get("error_code") or body.get("error") or ""
        message = body.get("msg") or body.get("error_description") or body.get("message") or ""
        return str(code), str(message)

    @staticmethod
    def _default_error(response: httpx.Response, operation: str, message: str) -> IdentityProviderError:
        if response.status_code >= 500 or response.status_code == 429:
            kind = ProviderErrorKind.UNAVAILABLE
        else:
            kind = ProviderErrorKind.UNEXPECTED
        return IdentityProviderError(
            kind,
            f"{operation} returned {response.status_code}: {message}",
            status_code=response.status_code,
        )

    @staticmethod
    def _json(response: httpx.Response, operation: str) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError as e:
            raise IdentityProviderError(
                ProviderErrorKind.UNEXPECTED, f"{operation}: response is not JSON"
            ) from e
        if not isinstance(body, dict):
            raise IdentityProviderError(
                ProviderErrorKind.UNEXPECTED, f"{operation}: unexpected response shape"
            )
        return body

    @staticmethod
    def _user_of(body: dict[str, Any]) -> dict[str, Any]:
        user = body.get("user")
        return user if isinstance(user, dict) else body

    def _subject_id(self, body: dict[str, Any], operation: str) -> str:
        subject_id = self._user_of(body).get("id")
        if not subject_id:
            raise IdentityProviderError(
                ProviderErrorKind.UNEXPECTED, f"{operation}: response carries no user id"
            )
        return str(subject_id)

    def _raise_token_error(self, response: httpx.Response, operation: str) -> None:
        code, message = self._error_details(response)
        if response.status_code in _TOKEN_REJECTED_STATUSES:
            raise IdentityProviderError(
                ProviderErrorKind.INVALID_TOKEN,
                f"{operation}: {code or message}",
                status_code=response.status_code,
            )
        raise self._default_error(response, operation, message)

    # =========================================================================
    # IdentityProvider
    # =========================================================================

    async def create_account(self, email: str, password: str, metadata: dict[str, Any]) -> str:
        """Sign up through POST /signup; GoTrue sends the confirmation email."""
        response = await self._send(
            "POST",
            "/signup",
            "create_account",
            json={"email": email, "password": password, "data": metadata},
            params={"redirect_to": self._settings.redirect_url},
        )
        if response.is_success:
            return self._subject_id(self._json(response, "create_account"), "create_account")

        code, message = self._error_details(response)
        if code in _ALREADY_EXISTS_CODES or "already registered" in message.lower():
            raise IdentityProviderError(
                ProviderErrorKind.ALREADY_EXISTS,
                "create_account: email already registered",
                status_code=response.status_code,
            )
        raise self._default_error(response, "create_account", message)

    async def authenticate(self, email: str, password: str) -> ProviderAuthResult:
        """Check a password through the password grant of POST /token."""
        response = await self._send(
            "POST",
            "/token",
            "authenticate",
            retry_on=_TRANSPORT_ERRORS,
            json={"email": email, "password": password},
            params={"grant_type": "password"},
        )
        if response.is_success:
            body = self._json(response, "authenticate")
            user = self._user_of(body)
            metadata = user.get("user_metadata")
            return ProviderAuthResult(
                provider_id=self._subject_id(body, "authenticate"),
                confirmed=bool(user.get("email_confirmed_at") or user.get("confirmed_at")),
                metadata=metadata if isinstance(metadata, dict) else {},
            )

        code, message = self._error_details(response)
        if code in _UNCONFIRMED_CODES or "not confirmed" in message.lower():
            return ProviderAuthResult(provider_id=None, confirmed=False)
        if response.status_code == 400 and (
            code in _INVALID_CREDENTIALS_CODES or not code
        ):
            raise IdentityProviderError(
                ProviderErrorKind.INVALID_CREDENTIALS,
                "authenticate: invalid login credentials",
                status_code=response.status_code,
            )
        raise self._default_error(response, "authenticate", message)

    async def send_verification(self, email: str) -> None:
        """Re-send the signup confirmation email through POST /resend."""
        response = await self._send(
            "POST",
            "/resend",
            "send_verification",
            json={"type": "signup", "email": email},
        )
        if not response.is_success:
            _, message = self._error_details(response)
            raise self._default_error(response, "send_verification", message)

    async def redeem_verification(self, token: str) -> str:
        """Redeem a signup confirmation token hash through POST /verify."""
        response = await self._send(
            "POST",
            "/verify",
            "redeem_verification",
            retry_on=_CONNECT_ERRORS,
            json={"type": "signup", "token_hash": token},
        )
        if not response.is_success:
            self._raise_token_error(response, "redeem_verification")
        return self._subject_id(self._json(response, "redeem_verification"), "redeem_verification")

    async def request_password_reset(self, email: str) -> None:
        """Start the recovery flow through POST /recover."""
        response = await self._send(
            "POST",
            "/recover",
            "request_password_reset",
            json={"email": email},
            params={"redirect_to": self._settings.redirect_url},
        )
        if not response.is_success:
            _, message = self._error_details(response)
            raise self._default_error(response, "request_password_reset", message)

    async def apply_password_reset(self, token: str, new_password: str) -> str:
        """Exchange the recovery token for a session, then set the password.

        POST /verify (type=recovery) yields a short-lived access token which
        authorizes PUT /user.
        """
        response = await self._send(
            "POST",
            "/verify",
            "apply_password_reset",
            json={"type": "recovery", "token_hash": token},
        )
        if not response.is_success:
            self._raise_token_error(response, "apply_password_reset")

        body = self._json(response, "apply_password_reset")
        access_token = body.get("access_token")
        if not access_token:
            raise IdentityProviderError(
                ProviderErrorKind.UNEXPECTED, "apply_password_reset: no recovery session issued"
            )

        update = await self._send(
            "PUT",
            "/user",
            "apply_password_reset",
            json={"password": new_password},
            headers={"Authorization": f"Bearer {access_token}"},
        )
        if update.status_code in (401, 403):
            self._raise_token_error(update, "apply_password_reset")
        if not update.is_success:
            _, message = self._error_details(update)
            raise self._default_error(update, "apply_password_reset", message)

        return self._subject_id(self._json(update, "apply_password_reset"), "apply_password_reset")
