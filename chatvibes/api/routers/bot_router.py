"""Bot activation API routes"""

import logging
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from chatvibes.api.core.config import Settings, get_settings
from chatvibes.api.core.dependencies import (
    get_channel_repository,
    get_current_broadcaster,
    get_moderation_service,
    get_token_manager,
)
from chatvibes.api.services import ModerationService, SessionUser, TokenLifecycleManager
from chatvibes.shared.errors import AuthorizationInsufficient, ChannelNotFound
from chatvibes.shared.models.channel import OAuthTier
from chatvibes.shared.repositories import ChannelRepository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/bot", tags=["bot"])


# ============================================
# Response Models
# ============================================


class BotStatusResponse(BaseModel):
    success: bool = True
    is_active: bool
    channel_name: str
    needs_reauth: bool
    oauth_tier: str


class BotAddResponse(BaseModel):
    success: bool = True
    message: str
    channel_name: str
    moderator_status: str  # "added", "failed" or "skipped"
    moderator_error: str | None = None
    oauth_tier: str


class BotRemoveResponse(BaseModel):
    success: bool = True
    message: str
    channel_name: str


# ============================================
# Endpoints
# ============================================


@router.get("/status", response_model=BotStatusResponse)
async def bot_status(
    user: SessionUser = Depends(get_current_broadcaster),
    channels: ChannelRepository = Depends(get_channel_repository),
) -> BotStatusResponse:
    """Activation state straight from the channel record"""
    record = await channels.get_channel(user.user_login)
    if record is None:
        return BotStatusResponse(
            is_active=False,
            channel_name=user.user_login,
            needs_reauth=False,
            oauth_tier=OAuthTier.FULL.value,
        )
    return BotStatusResponse(
        is_active=record.is_active,
        channel_name=record.channel_login,
        needs_reauth=record.needs_reauth,
        oauth_tier=record.oauth_tier.value,
    )


@router.post("/add", response_model=BotAddResponse)
async def add_bot(
    user: SessionUser = Depends(get_current_broadcaster),
    channels: ChannelRepository = Depends(get_channel_repository),
    token_manager: TokenLifecycleManager = Depends(get_token_manager),
    moderation: ModerationService = Depends(get_moderation_service),
    settings: Settings = Depends(get_settings),
) -> BotAddResponse:
    """Activate the bot; the full tier also adds it as a moderator"""
    login = user.user_login

    # Allow-list first, before any token work, so the error is accurate
    allowed = settings.allowed_channel_list
    if allowed and login not in allowed:
        logger.warning(f"Channel {login} not in allow-list")
        raise HTTPException(
            status_code=403,
            detail="Your channel is not authorized to use this bot.",
        )

    await token_manager.get_valid_access_token(login)

    record = await channels.get_channel(login)
    if record is None:
        raise ChannelNotFound(f"Channel {login} is not onboarded", channel_login=login)
    await channels.set_active(login, True, datetime.now(UTC))
    logger.info(f"Bot activated for {login}")

    if record.oauth_tier is OAuthTier.ANONYMOUS:
        return BotAddResponse(
            message="TTS Service activated in Bot-Free Mode! The bot will not appear in your chat.",
            channel_name=login,
            moderator_status="skipped",
            oauth_tier=record.oauth_tier.value,
        )

    moderator_status, moderator_error = "failed", "Bot username not configured"
    if settings.bot_username:
        try:
            result = await moderation.ensure_bot_moderator(login, settings.bot_username)
            moderator_status = "added" if result.success else "failed"
            moderator_error = result.error
        except AuthorizationInsufficient as e:
            logger.warning(f"Cannot add moderator in {login}: {e}")
            moderator_error = (
                "Missing required scope or invalid token. Please re-authenticate."
            )

    return BotAddResponse(
        message="Bot added to your channel successfully!",
        channel_name=login,
        moderator_status=moderator_status,
        moderator_error=moderator_error,
        oauth_tier=record.oauth_tier.value,
    )


@router.post("/remove", response_model=BotRemoveResponse)
async def remove_bot(
    user: SessionUser = Depends(get_current_broadcaster),
    channels: ChannelRepository = Depends(get_channel_repository),
) -> BotRemoveResponse:
    await channels.set_active(user.user_login, False, datetime.now(UTC))
    logger.info(f"Bot removed from {user.user_login}")
    return BotRemoveResponse(
        message="Bot removed from your channel successfully!",
        channel_name=user.user_login,
    )
