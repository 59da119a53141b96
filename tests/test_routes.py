# Tests for the HTTP routes (auth, bot, rewards, obs, viewer, shortlinks).
# Created: 2026-10-19

import base64
import json
from urllib.parse import parse_qs, urlparse

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from chatvibes.api.app import register_exception_handlers
from chatvibes.api.core import dependencies as deps
from chatvibes.api.core.config import Settings, get_settings
from chatvibes.api.routers import (
    auth_router,
    bot_router,
    obs_router,
    rewards_router,
    shortlink_router,
    viewer_router,
)
from chatvibes.api.services import (
    AuthService,
    ModerationService,
    OverlayTokenService,
    RewardReconciler,
)
from chatvibes.api.services.auth_service import VIEWER_SCOPE
from chatvibes.api.services.helix_client import HelixError
from chatvibes.api.services.moderation import _bot_id_cache
from chatvibes.shared.errors import ExchangeFailed
from chatvibes.shared.models.channel import OAuthTier
from chatvibes.shared.models.preferences import ChannelTtsConfig, VoiceSettings
from chatvibes.shared.repositories.secrets import access_token_secret, refresh_token_secret

from .conftest import (
    FakePreferencesRepository,
    FakeShortlinkRepository,
    FakeTtsConfigRepository,
    make_record,
)

JWT_SECRET = "route-test-secret-key-with-enough-length"


@pytest.fixture
def settings():
    return Settings(
        jwt_secret_key=JWT_SECRET,
        database_url="postgresql://localhost/chatvibes_test",
        secret_encryption_key="unused-in-route-tests",
        client_id="cid",
        client_secret="csecret",
        frontend_url="https://app.example.com",
        obs_browser_base_url="https://obs.example.com",
    )


@pytest.fixture
def auth_service():
    return AuthService(JWT_SECRET)


@pytest.fixture
def tts_configs():
    return FakeTtsConfigRepository()


@pytest.fixture
def prefs():
    return FakePreferencesRepository()


@pytest.fixture
def shortlinks():
    return FakeShortlinkRepository()


@pytest.fixture
def test_app(
    settings,
    auth_service,
    channels,
    secret_store,
    identity,
    helix,
    token_manager,
    tts_configs,
    prefs,
    shortlinks,
):
    _bot_id_cache.clear()
    app = FastAPI()
    register_exception_handlers(app)
    for module in (auth_router, bot_router, rewards_router, obs_router, viewer_router, shortlink_router):
        app.include_router(module.router)

    overrides = {
        get_settings: lambda: settings,
        deps.get_auth_service: lambda: auth_service,
        deps.get_identity_client: lambda: identity,
        deps.get_channel_repository: lambda: channels,
        deps.get_secret_store: lambda: secret_store,
        deps.get_tts_config_repository: lambda: tts_configs,
        deps.get_preferences_repository: lambda: prefs,
        deps.get_shortlink_repository: lambda: shortlinks,
        deps.get_token_manager: lambda: token_manager,
        deps.get_optional_token_manager: lambda: token_manager,
        deps.get_optional_tts_config_repository: lambda: tts_configs,
        deps.get_reward_reconciler: lambda: RewardReconciler(channels, token_manager, helix),
        deps.get_overlay_service: lambda: OverlayTokenService(
            channels, secret_store, settings.obs_browser_base_url
        ),
        deps.get_moderation_service: lambda: ModerationService(
            channels, token_manager, identity, helix
        ),
    }
    app.dependency_overrides.update(overrides)
    yield app
    _bot_id_cache.clear()


@pytest.fixture
def client(test_app):
    return TestClient(test_app)


@pytest.fixture
def broadcaster_headers(auth_service):
    token = auth_service.create_session_token("1001", "streamer", "Streamer")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def viewer_headers(auth_service):
    token = auth_service.create_session_token("2002", "viewer1", "viewer1", scope=VIEWER_SCOPE)
    return {"Authorization": f"Bearer {token}"}


def _redirect(resp) -> tuple[str, dict[str, str]]:
    assert resp.status_code in (302, 307)
    url = urlparse(resp.headers["location"])
    return url.path, {k: v[0] for k, v in parse_qs(url.query).items()}


# ============================================
# Auth
# ============================================


class TestInitiate:
    def test_full_tier_default(self, client):
        resp = client.get("/auth/twitch/initiate")
        assert resp.status_code == 200
        data = resp.json()
        assert data["tier"] == "full"
        assert "channel:manage:moderators" in data["twitch_auth_url"]

    def test_anonymous_tier_omits_moderator_scope(self, client):
        data = client.get("/auth/twitch/initiate", params={"tier": "anonymous"}).json()
        assert data["tier"] == "anonymous"
        assert "channel:manage:moderators" not in data["twitch_auth_url"]

    def test_unknown_tier_rejected(self, client):
        assert client.get("/auth/twitch/initiate", params={"tier": "admin"}).status_code == 422

    def test_viewer_state_is_tagged(self, client):
        data = client.get("/auth/twitch/viewer", params={"channel": "streamer"}).json()
        state = json.loads(base64.b64decode(data["state"]))
        assert state["t"] == "viewer"
        assert state["c"] == "streamer"


class TestCallback:
    def test_broadcaster_success(self, client, channels, tts_configs, auth_service):
        resp = client.get(
            "/auth/twitch/callback", params={"code": "abc", "state": "s1"}, follow_redirects=False
        )
        path, query = _redirect(resp)

        assert path == "/auth-complete.html"
        assert query["user_login"] == "streamer"
        assert query["state"] == "s1"
        assert auth_service.verify_token(query["session_token"]).user_id == "1001"
        assert channels.records["streamer"].oauth_tier is OAuthTier.FULL
        assert tts_configs.bot_modes["streamer"] == "authenticated"

    def test_anonymous_grant_sets_bot_mode(self, client, identity, tts_configs):
        identity.grant.granted_scopes = {"channel:manage:redemptions"}
        client.get("/auth/twitch/callback", params={"code": "abc"}, follow_redirects=False)
        assert tts_configs.bot_modes["streamer"] == "anonymous"

    def test_twitch_error_redirects(self, client):
        resp = client.get(
            "/auth/twitch/callback",
            params={"error": "access_denied", "error_description": "User denied"},
            follow_redirects=False,
        )
        path, query = _redirect(resp)
        assert path == "/auth-error.html"
        assert query["error"] == "access_denied"

    def test_missing_code(self, client):
        path, query = _redirect(client.get("/auth/twitch/callback", follow_redirects=False))
        assert path == "/auth-error.html"
        assert query["error"] == "no_code"

    def test_exchange_failure(self, client, identity, channels):
        identity.exchange_error = ExchangeFailed("Twitch rejected authorization_code")
        path, query = _redirect(
            client.get("/auth/twitch/callback", params={"code": "bad"}, follow_redirects=False)
        )
        assert path == "/auth-error.html"
        assert query["error"] == "auth_failed"
        assert channels.records == {}

    def test_db_not_ready_redirects(self, client, test_app):
        test_app.dependency_overrides[deps.get_optional_token_manager] = lambda: None
        path, query = _redirect(
            client.get("/auth/twitch/callback", params={"code": "abc"}, follow_redirects=False)
        )
        assert query["error"] == "db_not_ready"

    def test_viewer_login(self, client, channels, auth_service):
        state = base64.b64encode(json.dumps({"t": "viewer", "r": "x", "c": "streamer"}).encode()).decode()
        resp = client.get(
            "/auth/twitch/callback", params={"code": "abc", "state": state}, follow_redirects=False
        )
        path, query = _redirect(resp)

        assert path == "/viewer-settings.html"
        assert query["channel"] == "streamer"
        assert auth_service.verify_token(query["session_token"]).is_viewer
        # Viewer logins store nothing
        assert channels.records == {}


class TestAuthStatus:
    def test_requires_session(self, client):
        assert client.get("/api/auth/status").status_code == 401

    def test_viewer_session_forbidden(self, client, viewer_headers):
        assert client.get("/api/auth/status", headers=viewer_headers).status_code == 403

    def test_valid(self, client, onboarded, broadcaster_headers):
        data = client.get("/api/auth/status", headers=broadcaster_headers).json()
        assert data["twitch_token_status"] == "valid"
        assert data["needs_twitch_reauth"] is False

    def test_needs_reauth(self, client, channels, broadcaster_headers):
        channels.add(make_record(needs_reauth=True))
        data = client.get("/api/auth/status", headers=broadcaster_headers).json()
        assert data["twitch_token_status"] == "needs_reauth"
        assert data["needs_twitch_reauth"] is True

    def test_refresh_failure_returns_reauth_body(
        self, client, channels, secret_store, failing_refresh, broadcaster_headers
    ):
        channels.add(make_record(expires_in=None))
        secret_store.seed(refresh_token_secret("1001"), "refresh-1")

        resp = client.post("/api/auth/refresh", headers=broadcaster_headers)

        assert resp.status_code == 401
        assert resp.json()["needs_reauth"] is True
        assert channels.records["streamer"].needs_reauth is True

    def test_logout(self, client):
        assert client.get("/auth/logout").json()["success"] is True


# ============================================
# Bot
# ============================================


class TestBot:
    def test_add_full_tier_adds_moderator(self, client, onboarded, channels, broadcaster_headers):
        data = client.post("/api/bot/add", headers=broadcaster_headers).json()
        assert data["moderator_status"] == "added"
        assert channels.records["streamer"].is_active is True

    def test_add_anonymous_tier_skips_moderator(
        self, client, channels, secret_store, helix, broadcaster_headers
    ):
        channels.add(make_record(oauth_tier=OAuthTier.ANONYMOUS))
        secret_store.seed(access_token_secret("1001"), "access-1")

        data = client.post("/api/bot/add", headers=broadcaster_headers).json()

        assert data["moderator_status"] == "skipped"
        assert data["oauth_tier"] == "anonymous"
        assert helix.calls == []

    def test_add_missing_scope_reports_failure(
        self, client, onboarded, helix, broadcaster_headers
    ):
        helix.errors["add_moderator"] = HelixError(401, "Missing scope")
        data = client.post("/api/bot/add", headers=broadcaster_headers).json()
        assert data["success"] is True
        assert data["moderator_status"] == "failed"
        assert "re-authenticate" in data["moderator_error"]

    def test_allow_list_checked_before_tokens(
        self, client, settings, channels, identity, broadcaster_headers
    ):
        settings.allowed_channels = "someoneelse"
        channels.add(make_record(expires_in=None))

        resp = client.post("/api/bot/add", headers=broadcaster_headers)

        assert resp.status_code == 403
        assert identity.refresh_calls == 0

    def test_add_needs_reauth(self, client, channels, broadcaster_headers):
        channels.add(make_record(needs_reauth=True))
        resp = client.post("/api/bot/add", headers=broadcaster_headers)
        assert resp.status_code == 401
        assert resp.json()["needs_reauth"] is True

    def test_add_record_gone_after_token_check(self, client, test_app, broadcaster_headers):
        class _Tokens:
            async def get_valid_access_token(self, channel_login):
                return "access-1"

        test_app.dependency_overrides[deps.get_token_manager] = lambda: _Tokens()

        resp = client.post("/api/bot/add", headers=broadcaster_headers)

        assert resp.status_code == 404

    def test_status_and_remove(self, client, onboarded, channels, broadcaster_headers):
        client.post("/api/bot/add", headers=broadcaster_headers)
        assert client.get("/api/bot/status", headers=broadcaster_headers).json()["is_active"] is True

        client.post("/api/bot/remove", headers=broadcaster_headers)
        assert client.get("/api/bot/status", headers=broadcaster_headers).json()["is_active"] is False


# ============================================
# Rewards
# ============================================


class TestRewards:
    def test_enable_creates_reward(self, client, onboarded, helix, tts_configs, broadcaster_headers):
        resp = client.post(
            "/api/rewards/tts", json={"enabled": True, "cost": 250}, headers=broadcaster_headers
        )
        data = resp.json()

        assert resp.status_code == 200
        assert data["reconcile_status"] == "created"
        assert helix.rewards[data["reward_id"]]["cost"] == 250
        assert tts_configs.channel_points["streamer"].enabled is True

    def test_values_are_clamped(self, client, onboarded, helix, broadcaster_headers):
        data = client.post(
            "/api/rewards/tts",
            json={
                "enabled": True,
                "title": "x" * 80,
                "cost": 0,
                "limits_enabled": True,
                "cooldown_seconds": 99999,
                "content_policy": {"max_chars": 5000},
            },
            headers=broadcaster_headers,
        ).json()

        reward = data["channel_points"]["reward"]
        assert len(reward["title"]) == 45
        assert reward["cost"] == 1
        assert reward["cooldown_seconds"] == 3600
        assert data["channel_points"]["content_policy"]["max_chars"] == 500

    def test_disabled_without_reward_skips_twitch(
        self, client, onboarded, helix, broadcaster_headers
    ):
        data = client.post(
            "/api/rewards/tts", json={"enabled": False}, headers=broadcaster_headers
        ).json()
        assert data["reconcile_status"] is None
        assert helix.calls == []

    def test_delete(self, client, onboarded, channels, tts_configs, broadcaster_headers):
        client.post("/api/rewards/tts", json={"enabled": True}, headers=broadcaster_headers)

        data = client.delete("/api/rewards/tts", headers=broadcaster_headers).json()

        assert data["twitch_deleted"] is True
        assert channels.records["streamer"].resource_refs.reward_id is None
        assert tts_configs.channel_points["streamer"].enabled is False

    def test_missing_scope_returns_403(self, client, onboarded, helix, broadcaster_headers):
        helix.errors["list"] = HelixError(401, "Missing scope")
        resp = client.post("/api/rewards/tts", json={"enabled": True}, headers=broadcaster_headers)
        assert resp.status_code == 403
        assert resp.json()["needs_broader_consent"] is True

    def test_create_failure_returns_502(self, client, onboarded, helix, broadcaster_headers):
        helix.errors["create"] = HelixError(500, "Internal Server Error")
        resp = client.post("/api/rewards/tts", json={"enabled": True}, headers=broadcaster_headers)
        assert resp.status_code == 502
        assert resp.json()["success"] is False

    def test_message_check(self, client, onboarded, broadcaster_headers):
        ok = client.post("/api/rewards/tts/test", json={"text": "hello"}, headers=broadcaster_headers)
        assert ok.status_code == 200

        bad = client.post(
            "/api/rewards/tts/test", json={"text": "see example.com"}, headers=broadcaster_headers
        )
        assert bad.status_code == 400
        assert bad.json()["detail"] == "Links are not allowed"


# ============================================
# OBS
# ============================================


class TestObs:
    def test_get_then_rotate(self, client, onboarded, broadcaster_headers):
        first = client.get("/api/obs/token", headers=broadcaster_headers).json()
        again = client.get("/api/obs/token", headers=broadcaster_headers).json()
        rotated = client.post("/api/obs/token", headers=broadcaster_headers).json()

        assert first["status"] == "created"
        assert again["status"] == "reused"
        assert again["token"] == first["token"]
        assert rotated["token"] != first["token"]
        assert rotated["browser_source_url"].startswith("https://obs.example.com/?channel=streamer")

    def test_needs_reauth(self, client, channels, broadcaster_headers):
        channels.add(make_record(needs_reauth=True))
        assert client.get("/api/obs/token", headers=broadcaster_headers).status_code == 401


# ============================================
# Viewer preferences
# ============================================


class TestViewerPreferences:
    def test_global_roundtrip(self, client, viewer_headers):
        resp = client.put(
            "/api/viewer/preferences", json={"speed": 1.3, "emotion": "Happy"}, headers=viewer_headers
        )
        assert resp.status_code == 200
        data = client.get("/api/viewer/preferences", headers=viewer_headers).json()
        assert data["speed"] == 1.3
        assert data["emotion"] == "happy"

    def test_null_clears_field(self, client, viewer_headers, prefs):
        prefs.prefs["viewer1"] = VoiceSettings(speed=1.3, pitch=2.0)
        client.put("/api/viewer/preferences", json={"speed": None}, headers=viewer_headers)
        data = client.get("/api/viewer/preferences", headers=viewer_headers).json()
        assert data["speed"] is None
        assert data["pitch"] == 2.0

    def test_invalid_value(self, client, viewer_headers):
        resp = client.put("/api/viewer/preferences", json={"speed": 9}, headers=viewer_headers)
        assert resp.status_code == 400

    def test_unknown_channel(self, client, viewer_headers):
        assert client.get("/api/viewer/preferences/nochannel", headers=viewer_headers).status_code == 404

    def test_channel_view(self, client, viewer_headers, tts_configs, prefs):
        tts_configs.configs["streamer"] = ChannelTtsConfig(
            channel_login="streamer",
            defaults=VoiceSettings(voice_id="Deep_Voice_Man", speed=0.9),
            ignored_users=["viewer1"],
        )
        prefs.prefs["viewer1"] = VoiceSettings(speed=1.2)

        data = client.get(
            "/api/viewer/preferences/streamer", params={"pitch": 3}, headers=viewer_headers
        ).json()

        assert data["effective"]["voice_id"] == "Deep_Voice_Man"
        assert data["effective"]["speed"] == 1.2
        assert data["effective"]["pitch"] == 3
        assert data["tts_ignored"] is True


class TestTtsIgnore:
    def test_toggle_on_and_off(self, client, viewer_headers, tts_configs):
        tts_configs.configs["streamer"] = ChannelTtsConfig(channel_login="streamer")

        first = client.post("/api/viewer/ignore/tts/streamer", headers=viewer_headers).json()
        assert first["ignored"] is True
        assert tts_configs.configs["streamer"].ignored_users == ["viewer1"]
        view = client.get("/api/viewer/preferences/streamer", headers=viewer_headers).json()
        assert view["tts_ignored"] is True

        second = client.post("/api/viewer/ignore/tts/streamer", headers=viewer_headers).json()
        assert second["ignored"] is False
        assert tts_configs.configs["streamer"].ignored_users == []

    def test_unknown_channel(self, client, viewer_headers):
        assert client.post("/api/viewer/ignore/tts/nochannel", headers=viewer_headers).status_code == 404

    def test_requires_session(self, client):
        assert client.post("/api/viewer/ignore/tts/streamer").status_code == 401


# ============================================
# Shortlinks
# ============================================


class TestShortlinks:
    def test_create_and_follow(self, client, viewer_headers, shortlinks):
        resp = client.post(
            "/api/shortlink",
            json={"url": "https://chatvibes.example.com/preferences?channel=streamer"},
            headers=viewer_headers,
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["short_url"] == f"/s/{data['slug']}"
        assert data["absolute_url"] == f"https://app.example.com/s/{data['slug']}"

        follow = client.get(data["short_url"], follow_redirects=False)
        assert follow.status_code == 301
        assert follow.headers["location"] == "https://chatvibes.example.com/preferences?channel=streamer"
        assert shortlinks.clicks[data["slug"]] == 1

    @pytest.mark.parametrize("url", ["", "not a url", "javascript:alert(1)", "ftp://files.example.com"])
    def test_invalid_url_rejected(self, client, viewer_headers, url):
        resp = client.post("/api/shortlink", json={"url": url}, headers=viewer_headers)
        assert resp.status_code == 400

    def test_create_requires_session(self, client):
        assert client.post("/api/shortlink", json={"url": "https://example.com"}).status_code == 401

    def test_unknown_slug(self, client):
        resp = client.get("/s/doesnotexist", follow_redirects=False)
        assert resp.status_code == 404
        assert resp.text == "Short link not found"
