"""Dependency injection utilities for FastAPI"""

import logging

import asyncpg
from fastapi import Depends, Header, HTTPException

from chatvibes.api.core.config import get_settings
from chatvibes.api.services import (
    AuthService,
    HelixClient,
    IdentityProviderClient,
    ModerationService,
    OverlayTokenService,
    RewardReconciler,
    SessionUser,
    TokenLifecycleManager,
)
from chatvibes.shared.database import get_database_manager
from chatvibes.shared.repositories import (
    ChannelRepository,
    SecretStore,
    ShortlinkRepository,
    TtsConfigRepository,
    ViewerPreferencesRepository,
)

logger = logging.getLogger(__name__)


# ============================================
# Shared clients
# ============================================

_identity_client: IdentityProviderClient | None = None
_helix_client: HelixClient | None = None
_token_manager: TokenLifecycleManager | None = None


def get_identity_client() -> IdentityProviderClient:
    """Shared identity client (connection reuse + app token cache)."""
    global _identity_client
    if _identity_client is None:
        settings = get_settings()
        _identity_client = IdentityProviderClient(settings.client_id, settings.client_secret)
    return _identity_client


def get_helix_client() -> HelixClient:
    global _helix_client
    if _helix_client is None:
        _helix_client = HelixClient(get_settings().client_id)
    return _helix_client


async def close_clients() -> None:
    """Close shared HTTP clients. Call on app shutdown."""
    global _identity_client, _helix_client, _token_manager
    if _identity_client is not None:
        await _identity_client.close()
        _identity_client = None
    if _helix_client is not None:
        await _helix_client.close()
        _helix_client = None
    _token_manager = None


# ============================================
# Repositories
# ============================================


def get_db_pool() -> asyncpg.Pool:
    db_manager = get_database_manager()
    if not db_manager.is_connected:
        raise HTTPException(status_code=503, detail="Database not ready")
    return db_manager.pool


def get_channel_repository(pool: asyncpg.Pool = Depends(get_db_pool)) -> ChannelRepository:
    return ChannelRepository(pool)


def get_secret_store(pool: asyncpg.Pool = Depends(get_db_pool)) -> SecretStore:
    return SecretStore(pool, get_settings().secret_encryption_key)


def get_tts_config_repository(pool: asyncpg.Pool = Depends(get_db_pool)) -> TtsConfigRepository:
    return TtsConfigRepository(pool)


def get_preferences_repository(
    pool: asyncpg.Pool = Depends(get_db_pool),
) -> ViewerPreferencesRepository:
    return ViewerPreferencesRepository(pool)


def get_shortlink_repository(pool: asyncpg.Pool = Depends(get_db_pool)) -> ShortlinkRepository:
    return ShortlinkRepository(pool)


# ============================================
# Service Dependencies
# ============================================


def get_token_manager(pool: asyncpg.Pool = Depends(get_db_pool)) -> TokenLifecycleManager:
    """Process-wide singleton: its keyed lock is what makes refresh single-flight."""
    global _token_manager
    if _token_manager is None:
        _token_manager = TokenLifecycleManager(
            ChannelRepository(pool),
            SecretStore(pool, get_settings().secret_encryption_key),
            get_identity_client(),
        )
    return _token_manager


def get_reward_reconciler(
    channels: ChannelRepository = Depends(get_channel_repository),
    token_manager: TokenLifecycleManager = Depends(get_token_manager),
) -> RewardReconciler:
    return RewardReconciler(channels, token_manager, get_helix_client())


def get_overlay_service(
    channels: ChannelRepository = Depends(get_channel_repository),
    secrets: SecretStore = Depends(get_secret_store),
) -> OverlayTokenService:
    return OverlayTokenService(channels, secrets, get_settings().obs_browser_base_url)


def get_moderation_service(
    channels: ChannelRepository = Depends(get_channel_repository),
    token_manager: TokenLifecycleManager = Depends(get_token_manager),
) -> ModerationService:
    return ModerationService(channels, token_manager, get_identity_client(), get_helix_client())


def get_auth_service() -> AuthService:
    settings = get_settings()
    return AuthService(
        secret_key=settings.jwt_secret_key,
        algorithm=settings.jwt_algorithm,
        expire_days=settings.jwt_expire_days,
        issuer=settings.jwt_issuer,
        audience=settings.jwt_audience,
    )


# ============================================
# Authentication Dependencies
# ============================================


def get_current_user(
    authorization: str | None = Header(None),
    auth_service: AuthService = Depends(get_auth_service),
) -> SessionUser:
    """Verify the ``Authorization: Bearer`` session token."""
    if not authorization or not authorization.startswith("Bearer "):
        logger.warning("Missing or malformed Authorization header")
        raise HTTPException(status_code=401, detail="Unauthorized: Missing or malformed token")

    token = authorization.removeprefix("Bearer ").strip()
    user = auth_service.verify_token(token)
    if user is None:
        raise HTTPException(status_code=401, detail="Unauthorized: Invalid or expired token")
    return user


def get_current_broadcaster(user: SessionUser = Depends(get_current_user)) -> SessionUser:
    """Reject viewer sessions on broadcaster-only routes."""
    if user.is_viewer:
        raise HTTPException(status_code=403, detail="Broadcaster session required")
    return user


# ============================================
# OAuth callback (must redirect, never 503)
# ============================================


def get_optional_token_manager() -> TokenLifecycleManager | None:
    db_manager = get_database_manager()
    if not db_manager.is_connected:
        return None
    return get_token_manager(db_manager.pool)


def get_optional_tts_config_repository() -> TtsConfigRepository | None:
    db_manager = get_database_manager()
    if not db_manager.is_connected:
        return None
    return TtsConfigRepository(db_manager.pool)
