"""Repository for tts_channel_configs table."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, fields
from typing import Any

import asyncpg

from chatvibes.shared.models.preferences import ChannelTtsConfig, VoiceSettings
from chatvibes.shared.models.rewards import (
    ChannelPointsConfig,
    ContentPolicy,
    RewardDescriptor,
)

logger = logging.getLogger(__name__)

_VOICE_COLS = "voice_id, pitch, speed, emotion, language_boost, english_normalization"


def _known(cls: type, data: dict[str, Any]) -> dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}


def channel_points_from_dict(data: dict[str, Any] | None) -> ChannelPointsConfig:
    """Build a ChannelPointsConfig from its stored JSON, ignoring unknown keys."""
    if not data:
        return ChannelPointsConfig()
    return ChannelPointsConfig(
        enabled=bool(data.get("enabled", False)),
        reward=RewardDescriptor(**_known(RewardDescriptor, data.get("reward") or {})),
        content_policy=ContentPolicy(**_known(ContentPolicy, data.get("content_policy") or {})),
        last_synced_at=data.get("last_synced_at"),
    )


def _voice_from_row(row: asyncpg.Record) -> VoiceSettings:
    return VoiceSettings(**{f.name: row[f.name] for f in fields(VoiceSettings)})


class TtsConfigRepository:
    """Pure SQL operations for per-channel TTS configuration."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def get_channel_points(self, channel_login: str) -> ChannelPointsConfig:
        async with self.pool.acquire() as conn:
            raw = await conn.fetchval(
                "SELECT channel_points FROM tts_channel_configs WHERE channel_login = $1",
                channel_login.lower(),
            )
        if isinstance(raw, str):
            raw = json.loads(raw)
        return channel_points_from_dict(raw)

    async def save_channel_points(self, channel_login: str, config: ChannelPointsConfig) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO tts_channel_configs (channel_login, channel_points)
                VALUES ($1, $2::jsonb)
                ON CONFLICT (channel_login) DO UPDATE SET
                    channel_points = EXCLUDED.channel_points,
                    updated_at     = NOW()
                """,
                channel_login.lower(),
                json.dumps(asdict(config)),
            )

    async def get_config(self, channel_login: str) -> ChannelTtsConfig | None:
        """Channel defaults and ignore list; None when TTS was never set up."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_VOICE_COLS}, ignored_users, bot_mode "
                "FROM tts_channel_configs WHERE channel_login = $1",
                channel_login.lower(),
            )
        if not row:
            return None
        return ChannelTtsConfig(
            channel_login=channel_login.lower(),
            defaults=_voice_from_row(row),
            ignored_users=list(row["ignored_users"] or []),
            bot_mode=row["bot_mode"],
        )

    async def set_bot_mode(self, channel_login: str, bot_mode: str) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO tts_channel_configs (channel_login, bot_mode)
                VALUES ($1, $2)
                ON CONFLICT (channel_login) DO UPDATE SET
                    bot_mode   = EXCLUDED.bot_mode,
                    updated_at = NOW()
                """,
                channel_login.lower(),
                bot_mode,
            )

    async def toggle_ignored(self, channel_login: str, username: str) -> bool | None:
        """Flip a viewer's membership in the channel's TTS ignore list.

        Returns the new state, or None when the channel has no TTS config.
        """
        async with self.pool.acquire() as conn:
            ignored = await conn.fetchval(
                """
                UPDATE tts_channel_configs SET
                    ignored_users = CASE
                        WHEN $2 = ANY(ignored_users) THEN array_remove(ignored_users, $2)
                        ELSE array_append(ignored_users, $2)
                    END,
                    updated_at = NOW()
                WHERE channel_login = $1
                RETURNING $2 = ANY(ignored_users)
                """,
                channel_login.lower(),
                username.lower(),
            )
        if ignored is not None:
            action = "added to" if ignored else "removed from"
            logger.info(f"{username} {action} TTS ignore list of {channel_login}")
        return ignored
