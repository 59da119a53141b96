"""Repository for shortlinks table."""

from __future__ import annotations

import logging
import secrets

import asyncpg

logger = logging.getLogger(__name__)


class ShortlinkRepository:
    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def create(self, url: str) -> str:
        """Store *url* under a fresh random slug and return the slug."""
        slug = secrets.token_hex(6)
        async with self.pool.acquire() as conn:
            await conn.execute(
                "INSERT INTO shortlinks (slug, url) VALUES ($1, $2)",
                slug,
                url,
            )
        logger.info(f"Created short link {slug}")
        return slug

    async def resolve(self, slug: str) -> str | None:
        """Return the target URL and count the click; None for unknown slugs."""
        async with self.pool.acquire() as conn:
            return await conn.fetchval(
                """
                UPDATE shortlinks SET
                    clicks          = clicks + 1,
                    last_clicked_at = NOW()
                WHERE slug = $1
                RETURNING url
                """,
                slug,
            )
