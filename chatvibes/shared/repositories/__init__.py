"""Shared repository layer for the ChatVibes backend."""

from .channel import ChannelRepository
from .preferences import ViewerPreferencesRepository
from .secrets import SecretStore
from .shortlinks import ShortlinkRepository
from .tts_config import TtsConfigRepository

__all__ = [
    "ChannelRepository",
    "SecretStore",
    "ShortlinkRepository",
    "TtsConfigRepository",
    "ViewerPreferencesRepository",
]
