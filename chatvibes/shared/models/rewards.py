"""Desired-state descriptors for channel-points rewards."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

DEFAULT_REWARD_TITLE = "Text-to-Speech Message"
DEFAULT_REWARD_COST = 500
DEFAULT_REWARD_PROMPT = "Enter a message to be read aloud by the TTS bot"


@dataclass
class ContentPolicy:
    """Rules a redemption message must satisfy before it is spoken."""

    min_chars: int = 1
    max_chars: int = 200
    block_links: bool = True
    banned_words: list[str] = field(default_factory=list)


@dataclass
class RewardDescriptor:
    """Desired state of the TTS channel-points reward.

    Carries no identity; the reconciler resolves it against Helix by title.
    """

    title: str = DEFAULT_REWARD_TITLE
    cost: int = DEFAULT_REWARD_COST
    prompt: str = DEFAULT_REWARD_PROMPT
    is_enabled: bool = True
    is_user_input_required: bool = True
    skip_queue: bool = True
    limits_enabled: bool = False
    cooldown_seconds: int = 0
    per_stream_limit: int = 0
    per_user_per_stream_limit: int = 0

    @property
    def identity(self) -> str:
        return self.title

    def to_helix(self) -> dict[str, Any]:
        """Render the Helix create/update body.

        Helix requires each limit value to be sent together with its enable
        flag, so both are always present.
        """
        return {
            "title": self.title,
            "cost": self.cost,
            "prompt": self.prompt,
            "is_enabled": self.is_enabled,
            "is_user_input_required": self.is_user_input_required,
            "should_redemptions_skip_request_queue": self.skip_queue,
            "is_global_cooldown_enabled": self.limits_enabled and self.cooldown_seconds > 0,
            "global_cooldown_seconds": self.cooldown_seconds if self.cooldown_seconds > 0 else 1,
            "is_max_per_stream_enabled": self.limits_enabled and self.per_stream_limit > 0,
            "max_per_stream": self.per_stream_limit,
            "is_max_per_user_per_stream_enabled": (
                self.limits_enabled and self.per_user_per_stream_limit > 0
            ),
            "max_per_user_per_stream": self.per_user_per_stream_limit,
        }


@dataclass
class ChannelPointsConfig:
    """Locally stored channel-points settings for a channel."""

    enabled: bool = False
    reward: RewardDescriptor = field(default_factory=RewardDescriptor)
    content_policy: ContentPolicy = field(default_factory=ContentPolicy)
    last_synced_at: float | None = None
