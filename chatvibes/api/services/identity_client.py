"""Twitch identity provider client.

Covers the three OAuth grants the backend needs:
- authorization_code: onboarding a broadcaster (or a viewer login)
- refresh_token: keeping a broadcaster's user token alive
- client_credentials: app access token for public Helix lookups

Each call is a single attempt with a bounded timeout. Provider rejections and
malformed replies are raised as typed errors; nothing is retried here.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlencode

import httpx

from chatvibes.api.core.logging import redact_sensitive
from chatvibes.shared.errors import (
    ChatVibesError,
    ExchangeFailed,
    ProviderConfigError,
    RefreshFailed,
    ValidationFailed,
)

logger = logging.getLogger(__name__)

OAUTH_BASE = "https://id.twitch.tv/oauth2"

# Refresh the cached app token this many seconds before Twitch expires it
APP_TOKEN_EARLY_EXPIRY = 300


@dataclass
class TokenGrant:
    """Tokens returned by a code exchange or refresh."""

    access_token: str
    refresh_token: str
    expires_in: int
    granted_scopes: set[str] = field(default_factory=set)


@dataclass
class TokenValidation:
    """Result of ``GET /oauth2/validate``."""

    provider_user_id: str
    login: str
    scopes: set[str]
    expires_in: int


def _parse_scopes(raw: Any) -> set[str]:
    # Twitch returns a list; some proxies flatten it to a space-separated string
    if isinstance(raw, str):
        return set(raw.split())
    return set(raw or [])


class IdentityProviderClient:
    """Stateless wrapper around ``id.twitch.tv/oauth2``.

    The only state held is the shared ``httpx.AsyncClient`` and the cached
    app access token.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        *,
        http: httpx.AsyncClient | None = None,
        timeout: float = 15.0,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        if not client_id or not client_secret:
            logger.warning("Twitch client credentials are not configured")

        self._http = http or httpx.AsyncClient(timeout=timeout)

        self._app_token: str | None = None
        self._app_token_expires_at: float = 0.0
        self._app_token_lock = asyncio.Lock()

    async def close(self) -> None:
        await self._http.aclose()

    def _require_credentials(self) -> None:
        if not self.client_id or not self.client_secret:
            raise ProviderConfigError("Twitch client ID or secret not configured")

    # ------------------------------------------------------------------
    # Authorization code
    # ------------------------------------------------------------------

    def authorize_url(self, redirect_uri: str, scopes: list[str], state: str) -> str:
        """Build the consent-screen URL. ``force_verify`` always re-prompts."""
        self._require_credentials()
        query = urlencode(
            {
                "client_id": self.client_id,
                "redirect_uri": redirect_uri,
                "response_type": "code",
                "scope": " ".join(scopes),
                "state": state,
                "force_verify": "true",
            }
        )
        return f"{OAUTH_BASE}/authorize?{query}"

    async def exchange_authorization_code(self, code: str, redirect_uri: str) -> TokenGrant:
        self._require_credentials()
        return await self._token_grant(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
            },
            ExchangeFailed,
        )

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh(self, refresh_token: str) -> TokenGrant:
        """Exchange a refresh token. Twitch rotates the refresh token too."""
        self._require_credentials()
        logger.info("Refreshing Twitch user token")
        return await self._token_grant(
            {"grant_type": "refresh_token", "refresh_token": refresh_token},
            RefreshFailed,
        )

    async def _token_grant(
        self, params: dict[str, str], error_cls: type[ChatVibesError]
    ) -> TokenGrant:
        data = {"client_id": self.client_id, "client_secret": self.client_secret, **params}
        grant_type = params["grant_type"]
        try:
            response = await self._http.post(f"{OAUTH_BASE}/token", data=data)
        except httpx.HTTPError as e:
            logger.error(f"Token request ({grant_type}) failed: {type(e).__name__}: {e}")
            raise error_cls(f"Token request failed: {type(e).__name__}") from e

        body = self._json_or_empty(response)
        if response.status_code != 200:
            logger.error(
                f"Token request ({grant_type}) rejected: {response.status_code} "
                f"{redact_sensitive(body)}"
            )
            message = body.get("message") or f"HTTP {response.status_code}"
            raise error_cls(f"Twitch rejected {grant_type}: {message}")

        access_token = body.get("access_token")
        refresh_token = body.get("refresh_token")
        if not access_token or not refresh_token:
            logger.error(
                f"Token response ({grant_type}) missing tokens: {redact_sensitive(body)}"
            )
            raise error_cls("Twitch did not return the expected tokens")

        # A zero expiry would be stored as "now" and force a refresh on every call
        try:
            expires_in = int(body.get("expires_in"))
        except (TypeError, ValueError):
            expires_in = 0
        if expires_in <= 0:
            logger.error(
                f"Token response ({grant_type}) has no usable expires_in: {redact_sensitive(body)}"
            )
            raise error_cls("Twitch did not return a token lifetime")

        return TokenGrant(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=expires_in,
            granted_scopes=_parse_scopes(body.get("scope")),
        )

    # ------------------------------------------------------------------
    # Validate
    # ------------------------------------------------------------------

    async def validate(self, access_token: str) -> TokenValidation:
        try:
            response = await self._http.get(
                f"{OAUTH_BASE}/validate",
                headers={"Authorization": f"OAuth {access_token}"},
            )
        except httpx.HTTPError as e:
            logger.error(f"Token validation request failed: {type(e).__name__}: {e}")
            raise ValidationFailed("Token validation request failed") from e

        body = self._json_or_empty(response)
        if response.status_code != 200:
            logger.warning(f"Token validation rejected: {response.status_code}")
            raise ValidationFailed(f"Token validation failed: HTTP {response.status_code}")

        user_id = body.get("user_id")
        login = body.get("login")
        if not user_id or not login:
            raise ValidationFailed("Token validation response missing user_id or login")

        return TokenValidation(
            provider_user_id=str(user_id),
            login=str(login).lower(),
            scopes=_parse_scopes(body.get("scopes")),
            expires_in=int(body.get("expires_in") or 0),
        )

    # ------------------------------------------------------------------
    # App access token
    # ------------------------------------------------------------------

    async def get_app_access_token(self) -> str:
        """Return a cached client-credentials token, fetching when expired."""
        now = time.monotonic()
        if self._app_token and now < self._app_token_expires_at:
            return self._app_token

        async with self._app_token_lock:
            now = time.monotonic()
            if self._app_token and now < self._app_token_expires_at:
                return self._app_token

            self._require_credentials()
            try:
                response = await self._http.post(
                    f"{OAUTH_BASE}/token",
                    data={
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                        "grant_type": "client_credentials",
                    },
                )
            except httpx.HTTPError as e:
                logger.error(f"App token request failed: {type(e).__name__}: {e}")
                raise ExchangeFailed("Failed to get app access token") from e

            body = self._json_or_empty(response)
            token = body.get("access_token")
            if response.status_code != 200 or not token:
                logger.error(
                    f"App token request rejected: {response.status_code} "
                    f"{redact_sensitive(body)}"
                )
                raise ExchangeFailed("Failed to get app access token")

            expires_in = int(body.get("expires_in") or 0)
            self._app_token = token
            self._app_token_expires_at = now + max(expires_in - APP_TOKEN_EARLY_EXPIRY, 0)
            return token

    @staticmethod
    def _json_or_empty(response: httpx.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}
