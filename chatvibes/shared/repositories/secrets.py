"""Append-only, versioned secret store on PostgreSQL.

Payloads are encrypted with Fernet (AES-128-CBC + HMAC-SHA256) before they
reach the database. Versions are never updated or deleted here; "latest" is
the highest ``version_id`` for a name.

References use the ``{name}/versions/{id|latest}`` form so a stored pointer
can pin a version or follow the newest one.
"""

from __future__ import annotations

import logging

import asyncpg
from cryptography.fernet import Fernet, InvalidToken

from chatvibes.shared.errors import SecretNotFound

logger = logging.getLogger(__name__)

LATEST = "latest"


def access_token_secret(provider_user_id: str) -> str:
    return f"twitch-access-token-{provider_user_id}"


def refresh_token_secret(provider_user_id: str) -> str:
    return f"twitch-refresh-token-{provider_user_id}"


def overlay_token_secret(channel_login: str) -> str:
    return f"obs-token-{channel_login.lower()}"


def secret_ref(secret_name: str, version: str = LATEST) -> str:
    return f"{secret_name}/versions/{version}"


def parse_secret_ref(ref: str) -> tuple[str, str]:
    """Split a reference into ``(name, version)``; bare names mean latest."""
    if "/versions/" in ref:
        name, _, version = ref.partition("/versions/")
        return name, version or LATEST
    return ref, LATEST


class SecretStore:
    """Versioned key to bytes store."""

    def __init__(self, pool: asyncpg.Pool, encryption_key: str) -> None:
        self.pool = pool
        self._fernet = Fernet(encryption_key.encode())

    async def create(self, secret_name: str) -> None:
        """Create the secret container. Already existing is not an error."""
        async with self.pool.acquire() as conn:
            await conn.execute(
                "INSERT INTO secrets (name) VALUES ($1) ON CONFLICT (name) DO NOTHING",
                secret_name,
            )

    async def write(self, secret_name: str, data: bytes) -> int:
        """Append a new version and return its id."""
        token = self._fernet.encrypt(data)
        try:
            async with self.pool.acquire() as conn:
                version_id = await conn.fetchval(
                    "INSERT INTO secret_versions (secret_name, payload) VALUES ($1, $2) "
                    "RETURNING version_id",
                    secret_name,
                    token,
                )
        except asyncpg.ForeignKeyViolationError as e:
            raise SecretNotFound(f"Secret {secret_name} does not exist") from e
        logger.debug(f"Added version {version_id} to secret {secret_name}")
        return int(version_id)

    async def read_latest(self, secret_name: str) -> bytes:
        return await self.read(secret_ref(secret_name))

    async def read(self, ref: str) -> bytes:
        """Read the version a reference points at."""
        name, version = parse_secret_ref(ref)
        async with self.pool.acquire() as conn:
            if version == LATEST:
                payload = await conn.fetchval(
                    "SELECT payload FROM secret_versions WHERE secret_name = $1 "
                    "ORDER BY version_id DESC LIMIT 1",
                    name,
                )
            else:
                payload = await conn.fetchval(
                    "SELECT payload FROM secret_versions WHERE secret_name = $1 AND version_id = $2",
                    name,
                    int(version),
                )
        if payload is None:
            raise SecretNotFound(f"No version {version} for secret {name}")
        try:
            return self._fernet.decrypt(bytes(payload))
        except InvalidToken as e:
            raise SecretNotFound(f"Secret {name} could not be decrypted") from e
