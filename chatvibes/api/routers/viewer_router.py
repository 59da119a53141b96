"""Viewer TTS preference API routes"""

import logging
from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from chatvibes.api.core.dependencies import (
    get_current_user,
    get_preferences_repository,
    get_tts_config_repository,
)
from chatvibes.api.services import SessionUser
from chatvibes.api.services.preferences import (
    PreferenceValidationError,
    normalize_emotion,
    resolve_effective,
    validate_changes,
)
from chatvibes.shared.models.preferences import VoiceSettings
from chatvibes.shared.repositories import TtsConfigRepository, ViewerPreferencesRepository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/viewer", tags=["viewer"])


# ============================================
# Request / Response Models
# ============================================


class VoicePreferences(BaseModel):
    voice_id: str | None = None
    pitch: float | None = None
    speed: float | None = None
    emotion: str | None = None
    language_boost: str | None = None
    english_normalization: bool | None = None


class ChannelPreferencesResponse(BaseModel):
    preferences: VoicePreferences
    channel_defaults: VoicePreferences
    effective: VoicePreferences
    tts_ignored: bool
    channel_exists: bool = True


class UpdateResponse(BaseModel):
    success: bool = True
    message: str
    preferences: VoicePreferences


class IgnoreToggleResponse(BaseModel):
    success: bool = True
    ignored: bool
    message: str


# ============================================
# Helpers
# ============================================


def _to_model(settings: VoiceSettings) -> VoicePreferences:
    return VoicePreferences(**asdict(settings))


async def _apply_update(
    username: str, body: VoicePreferences, repo: ViewerPreferencesRepository
) -> VoiceSettings:
    try:
        changes = validate_changes(body.model_dump(exclude_unset=True))
    except PreferenceValidationError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return await repo.update(username, changes)


async def _require_channel(channel: str, configs: TtsConfigRepository):
    config = await configs.get_config(channel)
    if config is None:
        raise HTTPException(status_code=404, detail="Channel not found or TTS not enabled")
    return config


# ============================================
# Global Preferences
# ============================================


@router.get("/preferences", response_model=VoicePreferences)
async def get_global_preferences(
    user: SessionUser = Depends(get_current_user),
    repo: ViewerPreferencesRepository = Depends(get_preferences_repository),
) -> VoicePreferences:
    return _to_model(await repo.get(user.user_login))


@router.put("/preferences", response_model=UpdateResponse)
async def update_global_preferences(
    body: VoicePreferences,
    user: SessionUser = Depends(get_current_user),
    repo: ViewerPreferencesRepository = Depends(get_preferences_repository),
) -> UpdateResponse:
    """Partial update; fields sent as null are cleared"""
    updated = await _apply_update(user.user_login, body, repo)
    logger.info(f"Global preferences updated for {user.user_login}")
    return UpdateResponse(
        message="Global preferences updated successfully", preferences=_to_model(updated)
    )


# ============================================
# Per-channel View
# ============================================


@router.get("/preferences/{channel}", response_model=ChannelPreferencesResponse)
async def get_channel_preferences(
    channel: str,
    voice_id: str | None = None,
    pitch: float | None = None,
    speed: float | None = None,
    emotion: str | None = None,
    language_boost: str | None = None,
    user: SessionUser = Depends(get_current_user),
    repo: ViewerPreferencesRepository = Depends(get_preferences_repository),
    configs: TtsConfigRepository = Depends(get_tts_config_repository),
) -> ChannelPreferencesResponse:
    """Viewer preferences with the channel's defaults and the resolved values.

    Query parameters act as request overrides for previewing a voice.
    """
    config = await _require_channel(channel, configs)
    prefs = await repo.get(user.user_login)
    override = VoiceSettings(
        voice_id=voice_id,
        pitch=pitch,
        speed=speed,
        emotion=normalize_emotion(emotion),
        language_boost=language_boost,
    )
    effective = resolve_effective(override, prefs, config.defaults)
    return ChannelPreferencesResponse(
        preferences=_to_model(prefs),
        channel_defaults=_to_model(config.defaults),
        effective=_to_model(effective),
        tts_ignored=user.user_login in {u.lower() for u in config.ignored_users},
    )


@router.put("/preferences/{channel}", response_model=UpdateResponse)
async def update_channel_preferences(
    channel: str,
    body: VoicePreferences,
    user: SessionUser = Depends(get_current_user),
    repo: ViewerPreferencesRepository = Depends(get_preferences_repository),
    configs: TtsConfigRepository = Depends(get_tts_config_repository),
) -> UpdateResponse:
    """Updates the viewer's global preferences from a channel page"""
    await _require_channel(channel, configs)
    updated = await _apply_update(user.user_login, body, repo)
    logger.info(f"Preferences updated for {user.user_login} in {channel}")
    return UpdateResponse(message="Preferences updated successfully", preferences=_to_model(updated))


# ============================================
# Ignore List
# ============================================


@router.post("/ignore/tts/{channel}", response_model=IgnoreToggleResponse)
async def toggle_tts_ignore(
    channel: str,
    user: SessionUser = Depends(get_current_user),
    configs: TtsConfigRepository = Depends(get_tts_config_repository),
) -> IgnoreToggleResponse:
    """Opt the viewer in or out of TTS in a channel"""
    ignored = await configs.toggle_ignored(channel, user.user_login)
    if ignored is None:
        raise HTTPException(status_code=404, detail="Channel not found")
    message = "Added to TTS ignore list" if ignored else "Removed from TTS ignore list"
    return IgnoreToggleResponse(ignored=ignored, message=message)
