"""Viewer voice preferences: validation and effective-value resolution.

Effective values come from the first source that has one:
request override -> viewer preference -> channel default -> system default.
"""

import logging
from dataclasses import fields
from typing import Any, TypeVar

from chatvibes.shared.models.preferences import VoiceSettings

logger = logging.getLogger(__name__)

T = TypeVar("T")

SPEED_RANGE = (0.5, 2.0)
PITCH_RANGE = (-12.0, 12.0)

VALID_EMOTIONS = frozenset(
    {"neutral", "happy", "sad", "angry", "fearful", "disgusted", "surprised"}
)
EMOTION_SYNONYMS = {
    "auto": "neutral",
    "fear": "fearful",
    "surprise": "surprised",
    "disgust": "disgusted",
}

VALID_LANGUAGE_BOOSTS = (
    "auto", "English", "Chinese", "Chinese,Yue", "Spanish", "Hindi",
    "Portuguese", "Russian", "Japanese", "Korean", "Vietnamese", "Arabic",
    "French", "German", "Turkish", "Dutch", "Ukrainian", "Indonesian",
    "Italian", "Thai", "Polish", "Romanian", "Greek", "Czech", "Finnish",
)  # fmt: skip

SYSTEM_DEFAULTS = VoiceSettings(
    voice_id="Friendly_Person",
    pitch=0.0,
    speed=1.0,
    emotion="neutral",
    language_boost="auto",
    english_normalization=False,
)


class PreferenceValidationError(ValueError):
    """A submitted preference value is out of range or unknown."""

    def __init__(self, field_name: str, message: str):
        super().__init__(message)
        self.field_name = field_name


def first_present(*sources: T | None) -> T | None:
    """Return the first source that is not None."""
    for value in sources:
        if value is not None:
            return value
    return None


def normalize_emotion(emotion: str | None) -> str | None:
    """Lowercase and map synonyms to canonical emotion tokens."""
    if emotion is None or emotion == "":
        return None
    raw = str(emotion).strip().lower()
    return EMOTION_SYNONYMS.get(raw, raw)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_changes(changes: dict[str, Any]) -> dict[str, Any]:
    """Validate a partial update, returning the normalized values to store.

    ``None`` clears a field and is always accepted.
    """
    clean: dict[str, Any] = {}

    if "voice_id" in changes:
        clean["voice_id"] = changes["voice_id"] or None

    if "pitch" in changes:
        pitch = changes["pitch"]
        if pitch is not None and not (_is_number(pitch) and PITCH_RANGE[0] <= pitch <= PITCH_RANGE[1]):
            raise PreferenceValidationError("pitch", "Invalid pitch value")
        clean["pitch"] = pitch

    if "speed" in changes:
        speed = changes["speed"]
        if speed is not None and not (_is_number(speed) and SPEED_RANGE[0] <= speed <= SPEED_RANGE[1]):
            raise PreferenceValidationError("speed", "Invalid speed value")
        clean["speed"] = speed

    if "emotion" in changes:
        emotion = normalize_emotion(changes["emotion"])
        if emotion is not None and emotion not in VALID_EMOTIONS:
            raise PreferenceValidationError("emotion", "Invalid emotion value")
        clean["emotion"] = emotion

    if "language_boost" in changes:
        language = changes["language_boost"]
        if language is not None and language not in VALID_LANGUAGE_BOOSTS:
            raise PreferenceValidationError("language_boost", "Invalid language value")
        clean["language_boost"] = language

    if "english_normalization" in changes:
        value = changes["english_normalization"]
        clean["english_normalization"] = None if value is None else bool(value)

    return clean


def resolve_effective(
    override: VoiceSettings | None,
    viewer: VoiceSettings | None,
    channel_default: VoiceSettings | None,
    system_default: VoiceSettings = SYSTEM_DEFAULTS,
) -> VoiceSettings:
    """Field-by-field prioritized lookup across the four sources."""
    sources = [s for s in (override, viewer, channel_default, system_default) if s is not None]
    resolved = {
        f.name: first_present(*(getattr(s, f.name) for s in sources))
        for f in fields(VoiceSettings)
    }
    return VoiceSettings(**resolved)
