"""Data models for channel records and OAuth tiers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

MODERATOR_SCOPE = "channel:manage:moderators"


class OAuthTier(str, Enum):
    """Granted-scope class of a channel."""

    ANONYMOUS = "anonymous"
    FULL = "full"

    @classmethod
    def from_scopes(cls, scopes: set[str] | list[str]) -> OAuthTier:
        """Derive the tier from the scopes the provider actually granted."""
        return cls.FULL if MODERATOR_SCOPE in set(scopes) else cls.ANONYMOUS

    @property
    def scopes(self) -> list[str]:
        """Scopes requested on the consent screen for this tier."""
        return list(TIER_SCOPES[self])


TIER_SCOPES: dict[OAuthTier, tuple[str, ...]] = {
    OAuthTier.ANONYMOUS: (
        "user:read:email",
        "channel:read:redemptions",
        "channel:manage:redemptions",
    ),
    OAuthTier.FULL: (
        "user:read:email",
        "chat:read",
        "chat:edit",
        "channel:read:subscriptions",
        "bits:read",
        "moderator:read:followers",
        "channel:manage:redemptions",
        "channel:read:redemptions",
        MODERATOR_SCOPE,
    ),
}


@dataclass
class ResourceRefs:
    """Cached identities of externally-hosted resources."""

    reward_id: str | None = None
    overlay_secret_ref: str | None = None


@dataclass
class ChannelRecord:
    """Per-channel OAuth and resource state, keyed by lowercase login."""

    channel_login: str
    provider_user_id: str | None = None
    display_name: str | None = None
    access_token_expires_at: datetime | None = None
    needs_reauth: bool = False
    last_token_error: str | None = None
    last_token_error_at: datetime | None = None
    oauth_tier: OAuthTier = OAuthTier.FULL
    granted_scopes: set[str] = field(default_factory=set)
    resource_refs: ResourceRefs = field(default_factory=ResourceRefs)
    is_active: bool = False
    added_at: datetime | None = None
    removed_at: datetime | None = None
    overlay_generated_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        self.channel_login = self.channel_login.lower()
