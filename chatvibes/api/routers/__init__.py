"""API Routers package

Routers are organized by feature domain.
"""

from . import (
    auth_router,
    bot_router,
    obs_router,
    rewards_router,
    shortlink_router,
    viewer_router,
)

__all__ = [
    "auth_router",
    "bot_router",
    "obs_router",
    "rewards_router",
    "shortlink_router",
    "viewer_router",
]
