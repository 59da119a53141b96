"""Channel-points TTS reward API routes"""

import logging
import time
from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from chatvibes.api.core.dependencies import (
    get_channel_repository,
    get_current_broadcaster,
    get_reward_reconciler,
    get_tts_config_repository,
)
from chatvibes.api.services import RewardReconciler, SessionUser, check_message
from chatvibes.shared.models.rewards import (
    DEFAULT_REWARD_COST,
    DEFAULT_REWARD_PROMPT,
    DEFAULT_REWARD_TITLE,
    ChannelPointsConfig,
    ContentPolicy,
    RewardDescriptor,
)
from chatvibes.shared.repositories import ChannelRepository, TtsConfigRepository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/rewards", tags=["rewards"])

MAX_TITLE = 45
MAX_PROMPT = 100
MAX_COST = 999_999
MAX_COOLDOWN = 3600
MAX_LIMIT = 1000
MAX_POLICY_CHARS = 500
MAX_BANNED_WORDS = 100


# ============================================
# Request / Response Models
# ============================================


class ContentPolicyRequest(BaseModel):
    min_chars: int | None = None
    max_chars: int | None = None
    block_links: bool = True
    banned_words: list[str] = Field(default_factory=list)


class RewardConfigRequest(BaseModel):
    """Raw dashboard input; every value is clamped server-side."""

    enabled: bool = False
    title: str | None = None
    cost: int | None = None
    prompt: str | None = None
    skip_queue: bool = True
    limits_enabled: bool = False
    cooldown_seconds: int | None = None
    per_stream_limit: int | None = None
    per_user_per_stream_limit: int | None = None
    content_policy: ContentPolicyRequest = Field(default_factory=ContentPolicyRequest)


class TestMessageRequest(BaseModel):
    text: str = ""


class RewardConfigResponse(BaseModel):
    success: bool = True
    channel_points: dict
    reward_id: str | None = None
    twitch_status: dict | None = None
    reconcile_status: str | None = None
    message: str | None = None


class RewardDeleteResponse(BaseModel):
    success: bool = True
    twitch_deleted: bool
    message: str


class TestMessageResponse(BaseModel):
    success: bool = True
    message: str


# ============================================
# Helpers
# ============================================


def _clamp(value: int | None, low: int, high: int, default: int) -> int:
    if value is None:
        return default
    return max(low, min(high, value))


def normalize_reward_config(body: RewardConfigRequest) -> ChannelPointsConfig:
    """Clamp dashboard input into a storable config."""
    limits = body.limits_enabled
    # Twitch requires a cooldown of at least 1s once the cooldown flag is on
    min_cooldown = 1 if limits else 0
    reward = RewardDescriptor(
        title=(body.title or DEFAULT_REWARD_TITLE)[:MAX_TITLE],
        cost=_clamp(body.cost, 1, MAX_COST, DEFAULT_REWARD_COST),
        prompt=(body.prompt or DEFAULT_REWARD_PROMPT)[:MAX_PROMPT],
        is_enabled=body.enabled,
        skip_queue=body.skip_queue,
        limits_enabled=limits,
        cooldown_seconds=_clamp(body.cooldown_seconds, min_cooldown, MAX_COOLDOWN, min_cooldown),
        per_stream_limit=_clamp(body.per_stream_limit, 0, MAX_LIMIT, 0),
        per_user_per_stream_limit=_clamp(body.per_user_per_stream_limit, 0, MAX_LIMIT, 0),
    )
    policy = ContentPolicy(
        min_chars=_clamp(body.content_policy.min_chars, 0, MAX_POLICY_CHARS, 1),
        max_chars=_clamp(body.content_policy.max_chars, 1, MAX_POLICY_CHARS, 200),
        block_links=body.content_policy.block_links,
        banned_words=body.content_policy.banned_words[:MAX_BANNED_WORDS],
    )
    return ChannelPointsConfig(enabled=body.enabled, reward=reward, content_policy=policy)


# ============================================
# Endpoints
# ============================================


@router.get("/tts", response_model=RewardConfigResponse)
async def get_tts_reward(
    user: SessionUser = Depends(get_current_broadcaster),
    configs: TtsConfigRepository = Depends(get_tts_config_repository),
    channels: ChannelRepository = Depends(get_channel_repository),
    reconciler: RewardReconciler = Depends(get_reward_reconciler),
) -> RewardConfigResponse:
    """Stored settings plus Twitch's current view of the reward"""
    config = await configs.get_channel_points(user.user_login)
    record = await channels.get_channel(user.user_login)
    reward_id = record.resource_refs.reward_id if record else None
    twitch_status = await reconciler.fetch_remote(user.user_login) if reward_id else None
    return RewardConfigResponse(
        channel_points=asdict(config), reward_id=reward_id, twitch_status=twitch_status
    )


@router.post("/tts", response_model=RewardConfigResponse)
async def configure_tts_reward(
    body: RewardConfigRequest,
    user: SessionUser = Depends(get_current_broadcaster),
    configs: TtsConfigRepository = Depends(get_tts_config_repository),
    channels: ChannelRepository = Depends(get_channel_repository),
    reconciler: RewardReconciler = Depends(get_reward_reconciler),
) -> RewardConfigResponse:
    """Save settings and converge the Twitch reward onto them"""
    login = user.user_login
    config = normalize_reward_config(body)

    record = await channels.get_channel(login)
    reward_id = record.resource_refs.reward_id if record else None

    status = None
    if config.enabled or reward_id:
        result = await reconciler.reconcile(login, config.reward)
        reward_id, status = result.resource_id, result.status.value

    config.last_synced_at = time.time()
    await configs.save_channel_points(login, config)
    logger.info(f"Updated reward config for {login}: enabled={config.enabled}, reward={reward_id}")

    return RewardConfigResponse(
        channel_points=asdict(config),
        reward_id=reward_id,
        reconcile_status=status,
        message=(
            "Channel point reward configured successfully"
            if config.enabled
            else "Channel point reward disabled"
        ),
    )


@router.delete("/tts", response_model=RewardDeleteResponse)
async def delete_tts_reward(
    user: SessionUser = Depends(get_current_broadcaster),
    configs: TtsConfigRepository = Depends(get_tts_config_repository),
    reconciler: RewardReconciler = Depends(get_reward_reconciler),
) -> RewardDeleteResponse:
    """Delete the reward on Twitch and disable it locally either way"""
    twitch_deleted = await reconciler.delete(user.user_login)

    config = await configs.get_channel_points(user.user_login)
    config.enabled = False
    config.reward.is_enabled = False
    config.last_synced_at = time.time()
    await configs.save_channel_points(user.user_login, config)

    return RewardDeleteResponse(
        twitch_deleted=twitch_deleted,
        message=(
            "Disabled & deleted reward"
            if twitch_deleted
            else "Disabled locally; delete may require re-auth or manual removal"
        ),
    )


@router.post("/tts/test", response_model=TestMessageResponse)
async def test_tts_message(
    body: TestMessageRequest,
    user: SessionUser = Depends(get_current_broadcaster),
    configs: TtsConfigRepository = Depends(get_tts_config_repository),
) -> TestMessageResponse:
    """Check a sample message against the channel's content policy"""
    config = await configs.get_channel_points(user.user_login)
    result = check_message(config.content_policy, body.text)
    if not result.ok:
        raise HTTPException(status_code=400, detail=result.reason)
    return TestMessageResponse(message="TTS test validated")
