"""Authentication API routes"""

import base64
import binascii
import json
import logging
import secrets
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import RedirectResponse
from pydantic import BaseModel

from chatvibes.api.core.config import Settings, get_settings
from chatvibes.api.core.dependencies import (
    get_auth_service,
    get_current_broadcaster,
    get_identity_client,
    get_optional_token_manager,
    get_optional_tts_config_repository,
    get_token_manager,
)
from chatvibes.api.services import AuthService, IdentityProviderClient, SessionUser
from chatvibes.api.services.auth_service import VIEWER_SCOPE
from chatvibes.api.services.token_manager import TokenLifecycleManager
from chatvibes.shared.errors import ChatVibesError
from chatvibes.shared.models.channel import OAuthTier
from chatvibes.shared.repositories import TtsConfigRepository

logger = logging.getLogger(__name__)

router = APIRouter(tags=["authentication"])


# ============================================
# Response Models
# ============================================


class AuthUrlResponse(BaseModel):
    success: bool = True
    twitch_auth_url: str
    state: str
    tier: str | None = None


class AuthStatusResponse(BaseModel):
    success: bool = True
    user_login: str
    twitch_token_status: str
    needs_twitch_reauth: bool


class MessageResponse(BaseModel):
    success: bool = True
    message: str


# ============================================
# Helpers
# ============================================


def _encode_viewer_state(channel: str | None) -> str:
    payload: dict = {"t": "viewer", "r": secrets.token_hex(8)}
    if channel:
        payload["c"] = channel
    return base64.b64encode(json.dumps(payload).encode()).decode()


def _decode_viewer_state(state: str | None) -> dict | None:
    """Return the viewer state payload, or None for a regular broadcaster state."""
    if not state:
        return None
    try:
        data = json.loads(base64.b64decode(state.encode(), validate=True).decode())
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return None
    if isinstance(data, dict) and data.get("t") == "viewer":
        return data
    return None


def _frontend_redirect(settings: Settings, path: str, params: dict[str, str]) -> RedirectResponse:
    base = settings.frontend_url.rstrip("/")
    return RedirectResponse(url=f"{base}{path}?{urlencode(params)}")


def _error_redirect(
    settings: Settings, error: str, description: str, state: str | None
) -> RedirectResponse:
    logger.info(f"Redirecting to frontend error page: {error}")
    params = {"error": error, "error_description": description}
    if state:
        params["state"] = state
    return _frontend_redirect(settings, "/auth-error.html", params)


# ============================================
# OAuth Endpoints
# ============================================


@router.get("/auth/twitch/initiate", response_model=AuthUrlResponse)
async def initiate_twitch_auth(
    tier: OAuthTier = OAuthTier.FULL,
    identity: IdentityProviderClient = Depends(get_identity_client),
    settings: Settings = Depends(get_settings),
) -> AuthUrlResponse:
    """Build the broadcaster consent URL for the requested tier"""
    state = secrets.token_hex(16)
    url = identity.authorize_url(settings.callback_url, tier.scopes, state)
    logger.info(f"Generated OAuth state for {tier.value} tier")
    return AuthUrlResponse(twitch_auth_url=url, state=state, tier=tier.value)


@router.get("/auth/twitch/viewer", response_model=AuthUrlResponse)
async def initiate_viewer_auth(
    channel: str | None = None,
    identity: IdentityProviderClient = Depends(get_identity_client),
    settings: Settings = Depends(get_settings),
) -> AuthUrlResponse:
    """Build a scope-less consent URL that only identifies the viewer"""
    state = _encode_viewer_state(channel)
    url = identity.authorize_url(settings.callback_url, [], state)
    return AuthUrlResponse(twitch_auth_url=url, state=state)


@router.get("/auth/twitch/callback")
async def twitch_oauth_callback(
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    error_description: str | None = None,
    identity: IdentityProviderClient = Depends(get_identity_client),
    auth_service: AuthService = Depends(get_auth_service),
    token_manager: TokenLifecycleManager | None = Depends(get_optional_token_manager),
    tts_configs: TtsConfigRepository | None = Depends(get_optional_tts_config_repository),
    settings: Settings = Depends(get_settings),
):
    """Handle the Twitch redirect for both broadcaster and viewer logins"""
    viewer_state = _decode_viewer_state(state)
    if viewer_state is not None:
        return await _viewer_callback(
            code, error, error_description, viewer_state, identity, auth_service, settings
        )

    if error:
        logger.error(f"OAuth error from Twitch: {error}")
        return _error_redirect(settings, error, error_description or "", state)
    if not code:
        return _error_redirect(settings, "no_code", "No authorization code received", state)

    # Must redirect, not 503, when the DB is not ready
    if token_manager is None or tts_configs is None:
        logger.error("Database not ready during OAuth callback")
        return _error_redirect(settings, "db_not_ready", "Please try again shortly", state)

    try:
        record = await token_manager.complete_authorization(code, settings.callback_url)
    except ChatVibesError as e:
        logger.error(f"Twitch OAuth callback failed: {type(e).__name__}: {e}")
        return _error_redirect(settings, "auth_failed", str(e), state)

    bot_mode = "anonymous" if record.oauth_tier is OAuthTier.ANONYMOUS else "authenticated"
    await tts_configs.set_bot_mode(record.channel_login, bot_mode)
    logger.info(f"Synced bot mode {bot_mode} for {record.channel_login}")

    session_token = auth_service.create_session_token(
        user_id=record.provider_user_id,
        user_login=record.channel_login,
        display_name=record.display_name or record.channel_login,
    )
    return _frontend_redirect(
        settings,
        "/auth-complete.html",
        {
            "user_login": record.channel_login,
            "user_id": record.provider_user_id,
            "state": state or "",
            "session_token": session_token,
        },
    )


async def _viewer_callback(
    code: str | None,
    error: str | None,
    error_description: str | None,
    viewer_state: dict,
    identity: IdentityProviderClient,
    auth_service: AuthService,
    settings: Settings,
):
    """Viewer logins only identify the user; no tokens are stored."""
    if error:
        logger.error(f"Viewer OAuth error: {error}")
        raise HTTPException(status_code=400, detail=error_description or error)
    if not code:
        raise HTTPException(status_code=400, detail="No authorization code received")

    grant = await identity.exchange_authorization_code(code, settings.callback_url)
    validation = await identity.validate(grant.access_token)

    session_token = auth_service.create_session_token(
        user_id=validation.provider_user_id,
        user_login=validation.login,
        display_name=validation.login,
        scope=VIEWER_SCOPE,
    )
    logger.info(f"Generated viewer session token for {validation.login}")

    params = {"session_token": session_token, "validated": "1"}
    channel = viewer_state.get("c") or viewer_state.get("channel")
    if channel:
        params["channel"] = channel
    return _frontend_redirect(settings, "/viewer-settings.html", params)


@router.get("/auth/logout", response_model=MessageResponse)
async def logout() -> MessageResponse:
    """Sessions are stateless; the client discards its token"""
    return MessageResponse(
        message="Logout successful. Please clear your session token on the client side."
    )


# ============================================
# Token Status Endpoints
# ============================================


@router.get("/api/auth/status", response_model=AuthStatusResponse)
async def auth_status(
    user: SessionUser = Depends(get_current_broadcaster),
    token_manager: TokenLifecycleManager = Depends(get_token_manager),
) -> AuthStatusResponse:
    """Report the stored token state without contacting Twitch"""
    status, record = await token_manager.token_status(user.user_login)
    return AuthStatusResponse(
        user_login=user.user_login,
        twitch_token_status=status,
        needs_twitch_reauth=record.needs_reauth if record else True,
    )


@router.post("/api/auth/refresh", response_model=MessageResponse)
async def refresh_token(
    user: SessionUser = Depends(get_current_broadcaster),
    token_manager: TokenLifecycleManager = Depends(get_token_manager),
) -> MessageResponse:
    """Ensure a valid token, refreshing if it is close to expiry"""
    await token_manager.get_valid_access_token(user.user_login)
    return MessageResponse(message="Token refreshed successfully")
