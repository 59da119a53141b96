"""Broadcaster OAuth token lifecycle.

``TokenLifecycleManager`` is the only writer of a channel's token state
(``access_token_expires_at``, ``needs_reauth`` and the last error fields).

Rules:
- ``needs_reauth`` is checked before any stored token is looked at; once set,
  only a fresh authorization-code exchange clears it.
- Refresh is single-attempt. Any failure between reading the refresh token and
  persisting the new tokens flips ``needs_reauth``.
- At most one refresh per channel is in flight. The lock is held until the
  refresh settles, even when the requesting caller is cancelled. Waiters
  re-read the record after the lock is released and usually take the fast path.
- Secrets are written before the record, so an advanced expiry always points
  at a token that exists.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from chatvibes.api.services.identity_client import (
    IdentityProviderClient,
    TokenGrant,
)
from chatvibes.shared.cache import KeyedLock
from chatvibes.shared.errors import (
    ChannelNotFound,
    MissingIdentity,
    ReAuthRequired,
)
from chatvibes.shared.models.channel import ChannelRecord, OAuthTier
from chatvibes.shared.repositories.channel import ChannelRepository
from chatvibes.shared.repositories.secrets import (
    SecretStore,
    access_token_secret,
    refresh_token_secret,
)

logger = logging.getLogger(__name__)

REFRESH_BUFFER = timedelta(minutes=5)

# /api/auth/status values
STATUS_VALID = "valid"
STATUS_EXPIRED = "expired"
STATUS_NEEDS_REAUTH = "needs_reauth"
STATUS_NOT_FOUND = "not_found"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class TokenLifecycleManager:
    """Hands out currently-valid broadcaster access tokens."""

    def __init__(
        self,
        channels: ChannelRepository,
        secrets: SecretStore,
        identity: IdentityProviderClient,
        *,
        clock: Callable[[], datetime] | None = None,
    ):
        self.channels = channels
        self.secrets = secrets
        self.identity = identity
        self._clock = clock or _utcnow
        self._locks = KeyedLock()

    # ============================================
    # Access token
    # ============================================

    async def get_valid_access_token(self, channel_login: str) -> str:
        """Return an access token valid for at least ``REFRESH_BUFFER``.

        Raises:
            ChannelNotFound: no record for the login
            ReAuthRequired: the channel is (or has just been) flagged
            MissingIdentity: the record has no provider user id
        """
        login = channel_login.lower()

        record, user_id = await self._load(login)
        token = await self._read_if_fresh(record, user_id)
        if token is not None:
            return token

        async with self._locks.acquire(login):
            # Another caller may have refreshed while we waited
            record, user_id = await self._load(login)
            token = await self._read_if_fresh(record, user_id)
            if token is not None:
                return token
            return await self._refresh(login, user_id)

    async def _load(self, login: str) -> tuple[ChannelRecord, str]:
        record = await self.channels.get_channel(login)
        if record is None:
            raise ChannelNotFound(f"Channel {login} is not onboarded", channel_login=login)
        if record.needs_reauth:
            raise ReAuthRequired(
                f"Channel {login} needs to re-authenticate with Twitch", channel_login=login
            )
        if not record.provider_user_id:
            raise MissingIdentity(f"Channel {login} has no Twitch user id", channel_login=login)
        return record, record.provider_user_id

    def _is_fresh(self, record: ChannelRecord) -> bool:
        expires_at = record.access_token_expires_at
        return expires_at is not None and (expires_at - self._clock()) > REFRESH_BUFFER

    async def _read_if_fresh(self, record: ChannelRecord, user_id: str) -> str | None:
        if not self._is_fresh(record):
            return None
        try:
            data = await self.secrets.read_latest(access_token_secret(user_id))
        except Exception as e:
            logger.warning(
                f"Failed to read access token for {record.channel_login}, refreshing: "
                f"{type(e).__name__}: {e}"
            )
            return None
        return data.decode().strip()

    async def _refresh(self, login: str, user_id: str) -> str:
        """Run the refresh as its own task so a cancelled caller cannot abandon it.

        The caller holds the channel lock. When cancelled it keeps holding it
        until the task settles, so no waiter reads a superseded refresh token.
        """
        task = asyncio.ensure_future(self._run_refresh(login, user_id))
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            logger.warning(f"Request cancelled during token refresh for {login}, finishing it")
            await asyncio.wait([task])
            if not task.cancelled() and task.exception() is not None:
                logger.debug(f"Refresh for cancelled request ended with {task.exception()!r}")
            raise

    async def _run_refresh(self, login: str, user_id: str) -> str:
        logger.info(f"Token expired or missing for {login}, refreshing")

        try:
            refresh_token = (await self.secrets.read_latest(refresh_token_secret(user_id))).decode()
            grant = await self.identity.refresh(refresh_token.strip())
            await self._persist_refresh(login, user_id, grant)
        except Exception as e:
            logger.error(f"Token refresh failed for {login}: {type(e).__name__}: {e}")
            await self.channels.mark_needs_reauth(login, str(e), self._clock())
            raise ReAuthRequired(
                "Token refresh failed, user needs to re-authenticate", channel_login=login
            ) from e

        logger.info(f"Refreshed token for {login}")
        return grant.access_token

    async def _persist_refresh(self, login: str, user_id: str, grant: TokenGrant) -> None:
        # Always append both versions, even if Twitch returned an unchanged token
        await self.secrets.write(refresh_token_secret(user_id), grant.refresh_token.encode())
        await self.secrets.write(access_token_secret(user_id), grant.access_token.encode())
        expires_at = self._clock() + timedelta(seconds=grant.expires_in)
        await self.channels.record_refresh_success(login, expires_at)

    # ============================================
    # Onboarding
    # ============================================

    async def complete_authorization(self, code: str, redirect_uri: str) -> ChannelRecord:
        """Exchange an authorization code and (re)onboard the broadcaster.

        This is the only path that clears ``needs_reauth``.
        """
        grant = await self.identity.exchange_authorization_code(code, redirect_uri)
        validation = await self.identity.validate(grant.access_token)

        scopes = grant.granted_scopes or validation.scopes
        tier = OAuthTier.from_scopes(scopes)
        login = validation.login
        user_id = validation.provider_user_id
        logger.info(f"Authorization for {login} granted {tier.value} tier")

        async with self._locks.acquire(login):
            for name, payload in (
                (refresh_token_secret(user_id), grant.refresh_token),
                (access_token_secret(user_id), grant.access_token),
            ):
                await self.secrets.create(name)
                await self.secrets.write(name, payload.encode())

            expires_in = validation.expires_in or grant.expires_in
            return await self.channels.save_authorization(
                login,
                provider_user_id=user_id,
                display_name=validation.login,
                access_token_expires_at=self._clock() + timedelta(seconds=expires_in),
                oauth_tier=tier,
                granted_scopes=scopes,
            )

    # ============================================
    # Status
    # ============================================

    async def token_status(self, channel_login: str) -> tuple[str, ChannelRecord | None]:
        """Classify the stored token without touching the network."""
        record = await self.channels.get_channel(channel_login)
        if record is None:
            return STATUS_NOT_FOUND, None
        if record.needs_reauth:
            return STATUS_NEEDS_REAUTH, record
        expires_at = record.access_token_expires_at
        if expires_at is not None and expires_at <= self._clock():
            return STATUS_EXPIRED, record
        return STATUS_VALID, record
