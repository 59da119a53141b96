"""OBS overlay token management.

The overlay token authenticates the browser source. It lives in the secret
store under ``obs-token-{login}``; the channel record keeps only a reference
to it.
"""

import logging
import secrets as pysecrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from urllib.parse import quote

from chatvibes.api.services.reconciler import ReconcileStatus
from chatvibes.shared.errors import ChannelNotFound
from chatvibes.shared.repositories.channel import ChannelRepository
from chatvibes.shared.repositories.secrets import (
    SecretStore,
    overlay_token_secret,
    secret_ref,
)

logger = logging.getLogger(__name__)


@dataclass
class OverlayToken:
    status: ReconcileStatus
    token: str
    browser_source_url: str


class OverlayTokenService:
    def __init__(
        self,
        channels: ChannelRepository,
        secrets: SecretStore,
        browser_base_url: str,
        *,
        clock: Callable[[], datetime] | None = None,
    ):
        self.channels = channels
        self.secrets = secrets
        self.browser_base_url = browser_base_url.rstrip("/")
        self._clock = clock or (lambda: datetime.now(UTC))

    def browser_source_url(self, channel_login: str, token: str) -> str:
        return f"{self.browser_base_url}/?channel={quote(channel_login, safe='')}&token={token}"

    async def reconcile(self, channel_login: str) -> OverlayToken:
        """Return the stored overlay token, creating one if it cannot be read."""
        record = await self.channels.get_channel(channel_login)
        if record is None:
            raise ChannelNotFound(channel_login=channel_login)

        ref = record.resource_refs.overlay_secret_ref
        if ref:
            try:
                token = (await self.secrets.read(ref)).decode().strip()
                return OverlayToken(
                    ReconcileStatus.REUSED, token, self.browser_source_url(record.channel_login, token)
                )
            except Exception as e:
                logger.warning(
                    f"Failed to read overlay token for {record.channel_login}, generating new: {e}"
                )

        return await self._create(record.channel_login)

    async def rotate(self, channel_login: str) -> OverlayToken:
        """Always write a new token version; the previous one stops being served."""
        record = await self.channels.get_channel(channel_login)
        if record is None:
            raise ChannelNotFound(channel_login=channel_login)
        return await self._create(record.channel_login)

    async def _create(self, login: str) -> OverlayToken:
        token = pysecrets.token_hex(32)
        name = overlay_token_secret(login)
        await self.secrets.create(name)
        await self.secrets.write(name, token.encode())
        await self.channels.set_overlay_ref(login, secret_ref(name), self._clock())
        logger.info(f"Generated new OBS token for {login}")
        return OverlayToken(ReconcileStatus.CREATED, token, self.browser_source_url(login, token))
