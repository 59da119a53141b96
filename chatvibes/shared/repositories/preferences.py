"""Repository for viewer_preferences table."""

from __future__ import annotations

import logging
from dataclasses import fields

import asyncpg

from chatvibes.shared.models.preferences import VoiceSettings

logger = logging.getLogger(__name__)

_VOICE_FIELDS = [f.name for f in fields(VoiceSettings)]


class ViewerPreferencesRepository:
    """Global per-viewer voice preferences."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def get(self, username: str) -> VoiceSettings:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {', '.join(_VOICE_FIELDS)} FROM viewer_preferences WHERE username = $1",
                username.lower(),
            )
        if not row:
            return VoiceSettings()
        return VoiceSettings(**{name: row[name] for name in _VOICE_FIELDS})

    async def update(self, username: str, changes: dict[str, object]) -> VoiceSettings:
        """Apply a partial update. A ``None`` value clears the field."""
        columns = [name for name in _VOICE_FIELDS if name in changes]
        if not columns:
            return await self.get(username)

        values = [changes[name] for name in columns]
        placeholders = ", ".join(f"${i}" for i in range(2, len(columns) + 2))
        assignments = ", ".join(f"{c} = EXCLUDED.{c}" for c in columns)
        async with self.pool.acquire() as conn:
            await conn.execute(
                f"""
                INSERT INTO viewer_preferences (username, {", ".join(columns)})
                VALUES ($1, {placeholders})
                ON CONFLICT (username) DO UPDATE SET
                    {assignments},
                    updated_at = NOW()
                """,
                username.lower(),
                *values,
            )
        logger.debug(f"Updated preferences for {username}: {', '.join(columns)}")
        return await self.get(username)
