"""Short link API routes"""

import logging
from urllib.parse import urlparse

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import PlainTextResponse, RedirectResponse
from pydantic import BaseModel

from chatvibes.api.core.config import Settings, get_settings
from chatvibes.api.core.dependencies import get_current_user, get_shortlink_repository
from chatvibes.api.services import SessionUser
from chatvibes.shared.repositories import ShortlinkRepository

logger = logging.getLogger(__name__)

router = APIRouter(tags=["shortlinks"])


class ShortlinkRequest(BaseModel):
    url: str


class ShortlinkResponse(BaseModel):
    success: bool = True
    slug: str
    short_url: str
    absolute_url: str


def _is_http_url(url: str) -> bool:
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


@router.post("/api/shortlink", response_model=ShortlinkResponse)
async def create_shortlink(
    body: ShortlinkRequest,
    user: SessionUser = Depends(get_current_user),
    repo: ShortlinkRepository = Depends(get_shortlink_repository),
    settings: Settings = Depends(get_settings),
) -> ShortlinkResponse:
    if not _is_http_url(body.url):
        raise HTTPException(status_code=400, detail="Invalid URL provided")

    slug = await repo.create(body.url)
    path = f"/s/{slug}"
    frontend = urlparse(settings.frontend_url)
    absolute = f"{frontend.scheme}://{frontend.netloc}{path}" if frontend.netloc else path
    logger.info(f"Short link {slug} created by {user.user_login}")
    return ShortlinkResponse(slug=slug, short_url=path, absolute_url=absolute)


@router.get("/s/{slug}", response_model=None)
async def follow_shortlink(
    slug: str,
    repo: ShortlinkRepository = Depends(get_shortlink_repository),
) -> RedirectResponse | PlainTextResponse:
    url = await repo.resolve(slug)
    if url is None:
        return PlainTextResponse("Short link not found", status_code=404)
    logger.info(f"Redirecting short link {slug}")
    return RedirectResponse(url, status_code=301)
