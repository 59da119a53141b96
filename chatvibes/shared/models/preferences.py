"""Viewer and channel TTS voice preferences."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class VoiceSettings:
    """A partial set of TTS voice parameters; ``None`` means unset."""

    voice_id: str | None = None
    pitch: float | None = None
    speed: float | None = None
    emotion: str | None = None
    language_boost: str | None = None
    english_normalization: bool | None = None


@dataclass
class ChannelTtsConfig:
    """Per-channel TTS configuration document."""

    channel_login: str
    defaults: VoiceSettings = field(default_factory=VoiceSettings)
    ignored_users: list[str] = field(default_factory=list)
    bot_mode: str = "authenticated"
