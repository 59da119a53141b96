"""Twitch Helix client for channel-points rewards and moderation.

Every call takes an explicit user (or app) access token; this client never
fetches or refreshes broadcaster tokens itself. Failures surface as
``HelixError`` carrying the HTTP status and Twitch's message, so callers can
branch on ``kind`` instead of inspecting transport exceptions.
"""

import logging
from enum import Enum
from typing import Any, cast

import httpx

from chatvibes.api.core.logging import redact_sensitive

logger = logging.getLogger(__name__)

HELIX_BASE = "https://api.twitch.tv/helix"
REWARDS_PATH = "channel_points/custom_rewards"


class HelixErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    BAD_REQUEST = "bad_request"
    TRANSPORT = "transport"
    OTHER = "other"


class HelixError(Exception):
    """A failed Helix call. ``status`` is 0 for transport failures."""

    def __init__(self, status: int, message: str = ""):
        super().__init__(f"Helix error {status}: {message}" if status else message)
        self.status = status
        self.message = message

    @property
    def kind(self) -> HelixErrorKind:
        return {
            0: HelixErrorKind.TRANSPORT,
            400: HelixErrorKind.BAD_REQUEST,
            401: HelixErrorKind.UNAUTHORIZED,
            403: HelixErrorKind.FORBIDDEN,
            404: HelixErrorKind.NOT_FOUND,
        }.get(self.status, HelixErrorKind.OTHER)


class HelixClient:
    """Thin typed wrapper over the Helix endpoints the reconcilers use."""

    def __init__(
        self,
        client_id: str,
        *,
        http: httpx.AsyncClient | None = None,
        timeout: float = 15.0,
    ):
        self.client_id = client_id
        self._http = http or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        await self._http.aclose()

    def _headers(self, token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}", "Client-Id": self.client_id}

    async def _request(
        self,
        method: str,
        path: str,
        token: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> httpx.Response:
        try:
            response = await self._http.request(
                method,
                f"{HELIX_BASE}/{path}",
                params=params,
                json=json,
                headers=self._headers(token),
            )
        except httpx.HTTPError as e:
            logger.warning(f"Helix {method} /{path} transport error: {type(e).__name__}: {e}")
            raise HelixError(0, f"{type(e).__name__}: {e}") from e

        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = {}
            message = body.get("message", "") if isinstance(body, dict) else ""
            logger.warning(
                f"Helix {method} /{path} failed: {response.status_code} {redact_sensitive(body)}"
            )
            raise HelixError(response.status_code, message)
        return response

    @staticmethod
    def _data(response: httpx.Response) -> list[dict]:
        return cast(list[dict], response.json().get("data") or [])

    # ------------------------------------------------------------------
    # Custom rewards
    # ------------------------------------------------------------------

    async def list_custom_rewards(
        self, broadcaster_id: str, token: str, *, only_manageable: bool = True
    ) -> list[dict]:
        params: dict[str, Any] = {"broadcaster_id": broadcaster_id}
        if only_manageable:
            params["only_manageable_rewards"] = "true"
        response = await self._request("GET", REWARDS_PATH, token, params=params)
        return self._data(response)

    async def get_custom_reward(self, broadcaster_id: str, reward_id: str, token: str) -> dict:
        response = await self._request(
            "GET", REWARDS_PATH, token, params={"broadcaster_id": broadcaster_id, "id": reward_id}
        )
        rewards = self._data(response)
        if not rewards:
            raise HelixError(404, f"Reward {reward_id} not found")
        return rewards[0]

    async def create_custom_reward(
        self, broadcaster_id: str, body: dict[str, Any], token: str
    ) -> dict:
        response = await self._request(
            "POST", REWARDS_PATH, token, params={"broadcaster_id": broadcaster_id}, json=body
        )
        rewards = self._data(response)
        if not rewards or not rewards[0].get("id"):
            raise HelixError(response.status_code, "No reward data returned from Twitch")
        return rewards[0]

    async def update_custom_reward(
        self, broadcaster_id: str, reward_id: str, body: dict[str, Any], token: str
    ) -> dict:
        response = await self._request(
            "PATCH",
            REWARDS_PATH,
            token,
            params={"broadcaster_id": broadcaster_id, "id": reward_id},
            json=body,
        )
        rewards = self._data(response)
        return rewards[0] if rewards else {"id": reward_id}

    async def delete_custom_reward(self, broadcaster_id: str, reward_id: str, token: str) -> None:
        await self._request(
            "DELETE",
            REWARDS_PATH,
            token,
            params={"broadcaster_id": broadcaster_id, "id": reward_id},
        )

    # ------------------------------------------------------------------
    # Moderation / users
    # ------------------------------------------------------------------

    async def add_moderator(self, broadcaster_id: str, user_id: str, token: str) -> None:
        """POST moderation/moderators. Twitch answers 204 on success."""
        await self._request(
            "POST",
            "moderation/moderators",
            token,
            params={"broadcaster_id": broadcaster_id, "user_id": user_id},
        )

    async def get_user_by_login(self, login: str, token: str) -> dict | None:
        response = await self._request("GET", "users", token, params={"login": login.lower()})
        users = self._data(response)
        return users[0] if users else None
