"""OBS browser-source token API routes"""

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from chatvibes.api.core.dependencies import (
    get_current_broadcaster,
    get_overlay_service,
    get_token_manager,
)
from chatvibes.api.services import (
    OverlayToken,
    OverlayTokenService,
    SessionUser,
    TokenLifecycleManager,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/obs", tags=["obs"])


class ObsTokenResponse(BaseModel):
    success: bool = True
    token: str
    browser_source_url: str
    status: str


def _response(result: OverlayToken) -> ObsTokenResponse:
    return ObsTokenResponse(
        token=result.token,
        browser_source_url=result.browser_source_url,
        status=result.status.value,
    )


@router.get("/token", response_model=ObsTokenResponse)
async def get_obs_token(
    user: SessionUser = Depends(get_current_broadcaster),
    token_manager: TokenLifecycleManager = Depends(get_token_manager),
    overlay: OverlayTokenService = Depends(get_overlay_service),
) -> ObsTokenResponse:
    """Return the existing overlay token, creating one if needed"""
    # Overlay access requires a broadcaster whose Twitch grant is still usable
    await token_manager.get_valid_access_token(user.user_login)
    return _response(await overlay.reconcile(user.user_login))


@router.post("/token", response_model=ObsTokenResponse)
async def rotate_obs_token(
    user: SessionUser = Depends(get_current_broadcaster),
    token_manager: TokenLifecycleManager = Depends(get_token_manager),
    overlay: OverlayTokenService = Depends(get_overlay_service),
) -> ObsTokenResponse:
    """Generate a new overlay token"""
    await token_manager.get_valid_access_token(user.user_login)
    result = await overlay.rotate(user.user_login)
    logger.info(f"Rotated OBS token for {user.user_login}")
    return _response(result)
