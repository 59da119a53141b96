"""PostgreSQL connection pool management.

Pooler modes are detected from the DSN port:
  - Session Pooler / direct (5432) : prepared statements allowed
  - Transaction Pooler (6543)      : no prepared statements, no session state
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

import asyncpg

logger = logging.getLogger(__name__)


@dataclass
class PoolConfig:
    """Database pool configuration."""

    min_size: int = 0
    max_size: int = 10
    timeout: float = 5.0
    command_timeout: float = 15.0
    max_inactive_connection_lifetime: float = 30.0
    max_retries: int = 3
    retry_delay: float = 3.0
    ssl: str | None = "require"


class DatabaseManager:
    """Manages the asyncpg pool lifecycle for the API process."""

    def __init__(self, database_url: str, config: PoolConfig | None = None):
        self.database_url = database_url
        self.config = config or PoolConfig()
        self._pool: asyncpg.Pool | None = None
        self._pooler_mode: str = "transaction" if ":6543" in database_url else "session"

    async def _init_session_connection(self, conn: asyncpg.Connection) -> None:
        """Session-level statement timeout; only meaningful outside PgBouncer."""
        timeout_ms = int(self.config.command_timeout * 1000)
        await conn.execute(f"SET statement_timeout = {timeout_ms}")

    def _pool_kwargs(self) -> dict[str, Any]:
        cfg = self.config
        kwargs: dict[str, Any] = {
            "dsn": self.database_url,
            "min_size": cfg.min_size,
            "max_size": cfg.max_size,
            "timeout": cfg.timeout,
            "command_timeout": cfg.command_timeout,
            "ssl": cfg.ssl,
        }
        if self._pooler_mode == "transaction":
            # PgBouncer transaction mode drops idle connections and session state
            kwargs.update(
                min_size=0,
                statement_cache_size=0,
                max_inactive_connection_lifetime=0,
            )
        else:
            kwargs.update(
                statement_cache_size=100,
                max_inactive_connection_lifetime=cfg.max_inactive_connection_lifetime,
                init=self._init_session_connection,
            )
        return kwargs

    async def connect(self) -> None:
        """Create the pool, retrying with exponential backoff."""
        if self._pool is not None:
            logger.warning("Database pool already initialized")
            return

        pool_kwargs = self._pool_kwargs()
        logger.info(f"Connecting with {self._pooler_mode} pooler mode")

        cfg = self.config
        for attempt in range(1, cfg.max_retries + 1):
            try:
                self._pool = await asyncpg.create_pool(**pool_kwargs)
                async with self._pool.acquire() as conn:
                    await conn.fetchval("SELECT 1")
                logger.info(
                    f"Database pool created and verified "
                    f"(mode={self._pooler_mode}, size={pool_kwargs['min_size']}-{cfg.max_size})"
                )
                return
            except Exception as e:
                if self._pool is not None:
                    await self._pool.close()
                    self._pool = None
                if attempt >= cfg.max_retries:
                    logger.exception(
                        f"Database connection failed after {cfg.max_retries} attempts: "
                        f"{type(e).__name__}: {e or repr(e)}"
                    )
                    raise
                delay = cfg.retry_delay * (2 ** (attempt - 1))
                logger.warning(
                    f"Database connection attempt {attempt}/{cfg.max_retries} failed: "
                    f"{type(e).__name__}: {e or repr(e)}, retrying in {delay}s..."
                )
                await asyncio.sleep(delay)

    async def disconnect(self) -> None:
        if self._pool is None:
            return
        await self._pool.close()
        self._pool = None
        logger.info("Database pool closed")

    async def check_health(self) -> bool:
        """Return True when the pool can execute a query."""
        if self._pool is None:
            return False
        try:
            async with self._pool.acquire(timeout=2.0) as conn:
                await conn.fetchval("SELECT 1")
            return True
        except Exception as e:
            logger.warning(f"Database health check failed: {type(e).__name__}: {e}")
            return False

    @property
    def is_connected(self) -> bool:
        return self._pool is not None

    @property
    def pool(self) -> asyncpg.Pool:
        """Get the pool. Raises if not initialized."""
        if self._pool is None:
            raise RuntimeError("Database pool not initialized. Call connect() first.")
        return self._pool


_db_manager: DatabaseManager | None = None


def get_database_manager() -> DatabaseManager:
    if _db_manager is None:
        raise RuntimeError("Database manager not initialized")
    return _db_manager


def init_database_manager(database_url: str, config: PoolConfig | None = None) -> DatabaseManager:
    global _db_manager
    _db_manager = DatabaseManager(database_url, config)
    return _db_manager
