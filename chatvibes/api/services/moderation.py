"""Adds the bot account as a moderator in a broadcaster's channel."""

import logging
from dataclasses import dataclass

from chatvibes.api.services.helix_client import HelixClient, HelixError, HelixErrorKind
from chatvibes.api.services.identity_client import IdentityProviderClient
from chatvibes.api.services.token_manager import TokenLifecycleManager
from chatvibes.shared.cache import AsyncTTLCache, cached
from chatvibes.shared.errors import AuthorizationInsufficient, ChannelNotFound, MissingIdentity
from chatvibes.shared.repositories.channel import ChannelRepository

logger = logging.getLogger(__name__)

# Bot user ids are public and effectively immutable
_bot_id_cache = AsyncTTLCache(maxsize=16, ttl=3600)


@dataclass
class ModeratorResult:
    success: bool
    error: str | None = None


class ModerationService:
    def __init__(
        self,
        channels: ChannelRepository,
        token_manager: TokenLifecycleManager,
        identity: IdentityProviderClient,
        helix: HelixClient,
    ):
        self.channels = channels
        self.token_manager = token_manager
        self.identity = identity
        self.helix = helix

    @cached(cache=_bot_id_cache, key_func=lambda self, login: f"bot_user_id:{login.lower()}")
    async def get_user_id(self, login: str) -> str | None:
        """Public lookup with the app token. None when the user does not exist."""
        app_token = await self.identity.get_app_access_token()
        user = await self.helix.get_user_by_login(login, app_token)
        return str(user["id"]) if user else None

    async def ensure_bot_moderator(self, channel_login: str, bot_login: str) -> ModeratorResult:
        """Make *bot_login* a moderator of *channel_login*.

        A 403 means the bot is already a moderator and counts as success.
        A 401 raises ``AuthorizationInsufficient``: the broadcaster granted
        a token without ``channel:manage:moderators``.
        """
        token = await self.token_manager.get_valid_access_token(channel_login)
        record = await self.channels.get_channel(channel_login)
        if record is None:
            raise ChannelNotFound(channel_login=channel_login)
        if not record.provider_user_id:
            raise MissingIdentity(channel_login=channel_login)

        try:
            bot_user_id = await self.get_user_id(bot_login)
        except HelixError as e:
            logger.warning(f"Bot user lookup for {bot_login} failed: {e}")
            return ModeratorResult(False, "Bot user lookup failed")
        if not bot_user_id:
            logger.warning(f"Could not find user id for bot {bot_login}")
            return ModeratorResult(False, "Bot user not found")

        try:
            await self.helix.add_moderator(record.provider_user_id, bot_user_id, token)
        except HelixError as e:
            if e.kind is HelixErrorKind.FORBIDDEN:
                logger.info(f"{bot_login} is already a moderator in {channel_login}")
                return ModeratorResult(True)
            if e.kind is HelixErrorKind.UNAUTHORIZED:
                raise AuthorizationInsufficient(
                    "Missing channel:manage:moderators scope or invalid token",
                    channel_login=channel_login,
                ) from e
            if e.kind is HelixErrorKind.BAD_REQUEST:
                return ModeratorResult(
                    False,
                    e.message
                    or "User cannot be added as moderator (may be banned, VIP, or invalid parameters)",
                )
            return ModeratorResult(False, e.message or str(e))

        logger.info(f"Added {bot_login} as moderator in {channel_login}")
        return ModeratorResult(True)
