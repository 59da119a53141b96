"""Shared data models for the ChatVibes backend."""

from .channel import ChannelRecord, OAuthTier, ResourceRefs
from .preferences import ChannelTtsConfig, VoiceSettings
from .rewards import ChannelPointsConfig, ContentPolicy, RewardDescriptor

__all__ = [
    "ChannelPointsConfig",
    "ChannelRecord",
    "ChannelTtsConfig",
    "ContentPolicy",
    "OAuthTier",
    "ResourceRefs",
    "RewardDescriptor",
    "VoiceSettings",
]
