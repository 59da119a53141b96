"""Channel-points reward reconciliation.

Converges the Twitch custom reward for a channel onto a ``RewardDescriptor``:

    1. hinted update    stored reward id -> PATCH       -> updated
    2. search and adopt list manageable, match title    -> reused
    3. create           POST                            -> created

Steps 1 and 2 swallow their failures and fall through; only a failed create
is surfaced. A 401 at any step means the token lacks the scope and is raised
as ``AuthorizationInsufficient`` without refreshing anything.
"""

import logging
from dataclasses import dataclass
from enum import Enum

from chatvibes.api.services.helix_client import HelixClient, HelixError, HelixErrorKind
from chatvibes.api.services.token_manager import TokenLifecycleManager
from chatvibes.shared.errors import (
    AuthorizationInsufficient,
    ChannelNotFound,
    MissingIdentity,
    ReconciliationFailed,
)
from chatvibes.shared.models.channel import ChannelRecord
from chatvibes.shared.models.rewards import RewardDescriptor
from chatvibes.shared.repositories.channel import ChannelRepository

logger = logging.getLogger(__name__)


class ReconcileStatus(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    REUSED = "reused"


@dataclass
class ReconcileResult:
    status: ReconcileStatus
    resource_id: str


def _raise_if_unauthorized(error: HelixError, login: str) -> None:
    if error.kind is HelixErrorKind.UNAUTHORIZED:
        raise AuthorizationInsufficient(
            f"Twitch rejected the token for {login}: {error.message or 'missing scope'}",
            channel_login=login,
        ) from error


class RewardReconciler:
    """Keeps the TTS channel-points reward in sync with local settings."""

    def __init__(
        self,
        channels: ChannelRepository,
        token_manager: TokenLifecycleManager,
        helix: HelixClient,
    ):
        self.channels = channels
        self.token_manager = token_manager
        self.helix = helix

    async def _context(self, channel_login: str) -> tuple[ChannelRecord, str, str]:
        token = await self.token_manager.get_valid_access_token(channel_login)
        record = await self.channels.get_channel(channel_login)
        if record is None:
            raise ChannelNotFound(channel_login=channel_login)
        if not record.provider_user_id:
            raise MissingIdentity(channel_login=channel_login)
        return record, record.provider_user_id, token

    async def reconcile(self, channel_login: str, desired: RewardDescriptor) -> ReconcileResult:
        record, broadcaster_id, token = await self._context(channel_login)
        login = record.channel_login
        body = desired.to_helix()

        stored_id = record.resource_refs.reward_id
        if stored_id:
            try:
                await self.helix.update_custom_reward(broadcaster_id, stored_id, body, token)
                return await self._adopt(login, ReconcileStatus.UPDATED, stored_id)
            except HelixError as e:
                _raise_if_unauthorized(e, login)
                logger.warning(f"Update of stored reward {stored_id} for {login} failed: {e}")

        try:
            rewards = await self.helix.list_custom_rewards(broadcaster_id, token)
        except HelixError as e:
            _raise_if_unauthorized(e, login)
            logger.warning(f"Listing rewards for {login} failed: {e}")
            rewards = []

        existing = next((r for r in rewards if r.get("title") == desired.identity), None)
        if existing:
            try:
                await self.helix.update_custom_reward(broadcaster_id, existing["id"], body, token)
            except HelixError as e:
                _raise_if_unauthorized(e, login)
                logger.warning(f"Failed to update adopted reward {existing['id']} for {login}: {e}")
            return await self._adopt(login, ReconcileStatus.REUSED, existing["id"])

        try:
            created = await self.helix.create_custom_reward(broadcaster_id, body, token)
        except HelixError as e:
            _raise_if_unauthorized(e, login)
            logger.error(f"Create reward failed for {login}: {e}")
            raise ReconciliationFailed(
                "Failed to create TTS channel point reward", channel_login=login
            ) from e
        return await self._adopt(login, ReconcileStatus.CREATED, created["id"])

    async def _adopt(self, login: str, status: ReconcileStatus, reward_id: str) -> ReconcileResult:
        await self.channels.set_reward_ref(login, reward_id)
        logger.info(f"Reward for {login} {status.value}: {reward_id}")
        return ReconcileResult(status=status, resource_id=reward_id)

    async def delete(self, channel_login: str) -> bool:
        """Delete the remote reward. Returns whether Twitch confirmed it.

        The stored id is cleared only on confirmed deletion, so a failed
        delete can be retried later against the same reward.
        """
        record = await self.channels.get_channel(channel_login)
        if record is None:
            raise ChannelNotFound(channel_login=channel_login)
        reward_id = record.resource_refs.reward_id
        if not reward_id:
            return False

        try:
            _, broadcaster_id, token = await self._context(channel_login)
            await self.helix.delete_custom_reward(broadcaster_id, reward_id, token)
        except Exception as e:
            logger.warning(f"Twitch delete of reward {reward_id} for {record.channel_login} failed: {e}")
            return False

        await self.channels.set_reward_ref(record.channel_login, None)
        logger.info(f"Deleted reward {reward_id} for {record.channel_login}")
        return True

    async def fetch_remote(self, channel_login: str) -> dict | None:
        """Current Twitch view of the stored reward, or None when unavailable."""
        record = await self.channels.get_channel(channel_login)
        if record is None or not record.resource_refs.reward_id:
            return None
        try:
            _, broadcaster_id, token = await self._context(channel_login)
            return await self.helix.get_custom_reward(
                broadcaster_id, record.resource_refs.reward_id, token
            )
        except Exception as e:
            logger.warning(f"Twitch lookup of reward for {record.channel_login} failed: {e}")
            return None
