"""Repository for channel records.

Only the token lifecycle manager, the resource reconcilers and the bot
activation routes write through this class. Writes are last-writer-wins per
field: every method touches just the columns it names.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

import asyncpg

from chatvibes.shared.models.channel import ChannelRecord, OAuthTier, ResourceRefs

logger = logging.getLogger(__name__)

_COLUMNS = (
    "channel_login, provider_user_id, display_name, access_token_expires_at, "
    "needs_reauth, last_token_error, last_token_error_at, oauth_tier, granted_scopes, "
    "reward_id, overlay_secret_ref, is_active, added_at, removed_at, "
    "overlay_generated_at, created_at, updated_at"
)


def _row_to_record(row: asyncpg.Record) -> ChannelRecord:
    data: dict[str, Any] = dict(row)
    refs = ResourceRefs(
        reward_id=data.pop("reward_id"),
        overlay_secret_ref=data.pop("overlay_secret_ref"),
    )
    data["oauth_tier"] = OAuthTier(data["oauth_tier"])
    data["granted_scopes"] = set(data["granted_scopes"] or [])
    return ChannelRecord(**data, resource_refs=refs)


class ChannelRepository:
    """Pure SQL operations for the ``channels`` table."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def get_channel(self, channel_login: str) -> ChannelRecord | None:
        """Point read by login. Never cached: the row carries ``needs_reauth``."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_COLUMNS} FROM channels WHERE channel_login = $1",
                channel_login.lower(),
            )
            return _row_to_record(row) if row else None

    async def save_authorization(
        self,
        channel_login: str,
        *,
        provider_user_id: str,
        display_name: str | None,
        access_token_expires_at: datetime,
        oauth_tier: OAuthTier,
        granted_scopes: set[str],
    ) -> ChannelRecord:
        """Record a fresh authorization-code exchange; clears ``needs_reauth``."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO channels (
                    channel_login, provider_user_id, display_name,
                    access_token_expires_at, needs_reauth, last_token_error,
                    last_token_error_at, oauth_tier, granted_scopes
                )
                VALUES ($1, $2, $3, $4, FALSE, NULL, NULL, $5, $6)
                ON CONFLICT (channel_login) DO UPDATE SET
                    provider_user_id        = EXCLUDED.provider_user_id,
                    display_name            = EXCLUDED.display_name,
                    access_token_expires_at = EXCLUDED.access_token_expires_at,
                    needs_reauth            = FALSE,
                    last_token_error        = NULL,
                    last_token_error_at     = NULL,
                    oauth_tier              = EXCLUDED.oauth_tier,
                    granted_scopes          = EXCLUDED.granted_scopes,
                    updated_at              = NOW()
                RETURNING {_COLUMNS}
                """,
                channel_login.lower(),
                provider_user_id,
                display_name,
                access_token_expires_at,
                oauth_tier.value,
                sorted(granted_scopes),
            )
        return _row_to_record(row)

    async def record_refresh_success(
        self, channel_login: str, access_token_expires_at: datetime
    ) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE channels SET
                    access_token_expires_at = $2,
                    last_token_error        = NULL,
                    last_token_error_at     = NULL,
                    updated_at              = NOW()
                WHERE channel_login = $1
                """,
                channel_login.lower(),
                access_token_expires_at,
            )

    async def mark_needs_reauth(self, channel_login: str, error: str, at: datetime) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE channels SET
                    needs_reauth        = TRUE,
                    last_token_error    = $2,
                    last_token_error_at = $3,
                    updated_at          = NOW()
                WHERE channel_login = $1
                """,
                channel_login.lower(),
                error,
                at,
            )

    async def set_reward_ref(self, channel_login: str, reward_id: str | None) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                "UPDATE channels SET reward_id = $2, updated_at = NOW() WHERE channel_login = $1",
                channel_login.lower(),
                reward_id,
            )

    async def set_overlay_ref(
        self, channel_login: str, secret_ref: str, generated_at: datetime
    ) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE channels SET
                    overlay_secret_ref   = $2,
                    overlay_generated_at = $3,
                    updated_at           = NOW()
                WHERE channel_login = $1
                """,
                channel_login.lower(),
                secret_ref,
                generated_at,
            )

    async def set_active(self, channel_login: str, active: bool, at: datetime) -> None:
        """Toggle bot activation, stamping ``added_at`` or ``removed_at``."""
        column = "added_at" if active else "removed_at"
        async with self.pool.acquire() as conn:
            await conn.execute(
                f"""
                UPDATE channels SET
                    is_active  = $2,
                    {column}   = $3,
                    updated_at = NOW()
                WHERE channel_login = $1
                """,
                channel_login.lower(),
                active,
                at,
            )
