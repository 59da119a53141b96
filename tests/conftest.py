# Shared fixtures and in-memory fakes for the ChatVibes API tests.
# Created: 2026-10-19

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import UTC, datetime, timedelta

import asyncpg
import pytest

from chatvibes.api.services.helix_client import HelixError
from chatvibes.api.services.identity_client import TokenGrant, TokenValidation
from chatvibes.api.services.token_manager import TokenLifecycleManager
from chatvibes.shared.errors import RefreshFailed, SecretNotFound
from chatvibes.shared.models.channel import TIER_SCOPES, ChannelRecord, OAuthTier
from chatvibes.shared.models.preferences import ChannelTtsConfig, VoiceSettings
from chatvibes.shared.models.rewards import ChannelPointsConfig
from chatvibes.shared.repositories.secrets import (
    LATEST,
    access_token_secret,
    parse_secret_ref,
    refresh_token_secret,
)

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)


class FakeClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeChannelRepository:
    """Dict-backed stand-in for ChannelRepository."""

    def __init__(self):
        self.records: dict[str, ChannelRecord] = {}
        self.calls: list[str] = []

    def add(self, record: ChannelRecord) -> ChannelRecord:
        self.records[record.channel_login] = record
        return record

    async def get_channel(self, channel_login):
        record = self.records.get(channel_login.lower())
        # Hand out copies so callers cannot mutate stored state by accident
        return replace(record, resource_refs=replace(record.resource_refs)) if record else None

    async def save_authorization(
        self,
        channel_login,
        *,
        provider_user_id,
        display_name,
        access_token_expires_at,
        oauth_tier,
        granted_scopes,
    ):
        self.calls.append("save_authorization")
        login = channel_login.lower()
        existing = self.records.get(login) or ChannelRecord(channel_login=login)
        record = replace(
            existing,
            provider_user_id=provider_user_id,
            display_name=display_name,
            access_token_expires_at=access_token_expires_at,
            needs_reauth=False,
            last_token_error=None,
            last_token_error_at=None,
            oauth_tier=oauth_tier,
            granted_scopes=set(granted_scopes),
        )
        self.records[login] = record
        return replace(record)

    async def record_refresh_success(self, channel_login, access_token_expires_at):
        self.calls.append("record_refresh_success")
        record = self.records[channel_login.lower()]
        record.access_token_expires_at = access_token_expires_at
        record.last_token_error = None
        record.last_token_error_at = None

    async def mark_needs_reauth(self, channel_login, error, at):
        self.calls.append("mark_needs_reauth")
        record = self.records[channel_login.lower()]
        record.needs_reauth = True
        record.last_token_error = error
        record.last_token_error_at = at

    async def set_reward_ref(self, channel_login, reward_id):
        self.calls.append("set_reward_ref")
        self.records[channel_login.lower()].resource_refs.reward_id = reward_id

    async def set_overlay_ref(self, channel_login, secret_ref, generated_at):
        record = self.records[channel_login.lower()]
        record.resource_refs.overlay_secret_ref = secret_ref
        record.overlay_generated_at = generated_at

    async def set_active(self, channel_login, active, at):
        record = self.records.get(channel_login.lower())
        if record is None:
            return
        record.is_active = active
        if active:
            record.added_at = at
        else:
            record.removed_at = at


class FakeSecretStore:
    """Append-only versioned secrets held in memory."""

    def __init__(self):
        self.versions: dict[str, list[bytes]] = {}
        self.writes: list[str] = []
        self.fail_reads: set[str] = set()
        self.write_delay = 0.0

    def seed(self, name: str, *payloads: str) -> None:
        self.versions.setdefault(name, []).extend(p.encode() for p in payloads)

    async def create(self, secret_name):
        self.versions.setdefault(secret_name, [])

    async def write(self, secret_name, data):
        if secret_name not in self.versions:
            raise SecretNotFound(f"Secret {secret_name} does not exist")
        if self.write_delay:
            await asyncio.sleep(self.write_delay)
        self.versions[secret_name].append(data)
        self.writes.append(secret_name)
        return len(self.versions[secret_name])

    async def read_latest(self, secret_name):
        return await self.read(f"{secret_name}/versions/{LATEST}")

    async def read(self, ref):
        name, version = parse_secret_ref(ref)
        if name in self.fail_reads:
            raise SecretNotFound(f"Read of {name} failed")
        versions = self.versions.get(name)
        if not versions:
            raise SecretNotFound(f"No version {version} for secret {name}")
        if version == LATEST:
            return versions[-1]
        return versions[int(version) - 1]

    def latest(self, name: str) -> str:
        return self.versions[name][-1].decode()


class FakeIdentity:
    """Scriptable identity provider."""

    def __init__(self):
        self.refresh_calls = 0
        self.refresh_tokens_used: list[str] = []
        self.refresh_error: Exception | None = None
        self.refresh_delay = 0.0
        self.next_refresh = TokenGrant("access-2", "refresh-2", 14400)
        self.grant = TokenGrant("access-new", "refresh-new", 14400, set(TIER_SCOPES[OAuthTier.FULL]))
        self.validation = TokenValidation("1001", "streamer", set(TIER_SCOPES[OAuthTier.FULL]), 14000)
        self.exchange_error: Exception | None = None
        self.app_token = "app-token"

    async def refresh(self, refresh_token):
        self.refresh_calls += 1
        reused = refresh_token in self.refresh_tokens_used
        self.refresh_tokens_used.append(refresh_token)
        if self.refresh_delay:
            await asyncio.sleep(self.refresh_delay)
        if self.refresh_error:
            raise self.refresh_error
        # Twitch rotates refresh tokens; a second use of the same one fails
        if reused:
            raise RefreshFailed("Twitch rejected refresh_token: Invalid refresh token")
        return self.next_refresh

    async def exchange_authorization_code(self, code, redirect_uri):
        if self.exchange_error:
            raise self.exchange_error
        return self.grant

    async def validate(self, access_token):
        return self.validation

    async def get_app_access_token(self):
        return self.app_token

    def authorize_url(self, redirect_uri, scopes, state):
        return f"https://id.twitch.tv/oauth2/authorize?scope={'+'.join(scopes)}&state={state}"


class FakeHelix:
    """Records calls; per-method errors are raised when set."""

    def __init__(self):
        self.rewards: dict[str, dict] = {}
        self.errors: dict[str, HelixError] = {}
        self.calls: list[tuple[str, str | None]] = []
        self.users = {"chatvibestts": {"id": "9999", "login": "chatvibestts"}}
        self._next_id = 1

    def _maybe_fail(self, method: str) -> None:
        if method in self.errors:
            raise self.errors[method]

    async def list_custom_rewards(self, broadcaster_id, token, *, only_manageable=True):
        self.calls.append(("list", None))
        self._maybe_fail("list")
        return list(self.rewards.values())

    async def get_custom_reward(self, broadcaster_id, reward_id, token):
        self.calls.append(("get", reward_id))
        self._maybe_fail("get")
        if reward_id not in self.rewards:
            raise HelixError(404, "not found")
        return self.rewards[reward_id]

    async def create_custom_reward(self, broadcaster_id, body, token):
        self.calls.append(("create", None))
        self._maybe_fail("create")
        reward_id = f"reward-{self._next_id}"
        self._next_id += 1
        self.rewards[reward_id] = {"id": reward_id, **body}
        return self.rewards[reward_id]

    async def update_custom_reward(self, broadcaster_id, reward_id, body, token):
        self.calls.append(("update", reward_id))
        self._maybe_fail("update")
        if reward_id not in self.rewards:
            raise HelixError(404, "not found")
        self.rewards[reward_id].update(body)
        return self.rewards[reward_id]

    async def delete_custom_reward(self, broadcaster_id, reward_id, token):
        self.calls.append(("delete", reward_id))
        self._maybe_fail("delete")
        self.rewards.pop(reward_id, None)

    async def add_moderator(self, broadcaster_id, user_id, token):
        self.calls.append(("add_moderator", user_id))
        self._maybe_fail("add_moderator")

    async def get_user_by_login(self, login, token):
        self.calls.append(("user", login))
        return self.users.get(login.lower())


class FakeTtsConfigRepository:
    def __init__(self):
        self.channel_points: dict[str, ChannelPointsConfig] = {}
        self.configs: dict[str, ChannelTtsConfig] = {}
        self.bot_modes: dict[str, str] = {}

    async def get_channel_points(self, channel_login):
        return self.channel_points.get(channel_login, ChannelPointsConfig())

    async def save_channel_points(self, channel_login, config):
        self.channel_points[channel_login] = config

    async def get_config(self, channel_login):
        return self.configs.get(channel_login)

    async def set_bot_mode(self, channel_login, bot_mode):
        self.bot_modes[channel_login] = bot_mode

    async def toggle_ignored(self, channel_login, username):
        config = self.configs.get(channel_login.lower())
        if config is None:
            return None
        name = username.lower()
        if name in config.ignored_users:
            config.ignored_users.remove(name)
            return False
        config.ignored_users.append(name)
        return True


class FakePreferencesRepository:
    def __init__(self):
        self.prefs: dict[str, VoiceSettings] = {}

    async def get(self, username):
        return replace(self.prefs.get(username.lower(), VoiceSettings()))

    async def update(self, username, changes):
        current = self.prefs.get(username.lower(), VoiceSettings())
        self.prefs[username.lower()] = replace(current, **changes)
        return await self.get(username)


class FakeShortlinkRepository:
    def __init__(self):
        self.links: dict[str, str] = {}
        self.clicks: dict[str, int] = {}

    async def create(self, url):
        slug = f"slug{len(self.links) + 1}"
        self.links[slug] = url
        self.clicks[slug] = 0
        return slug

    async def resolve(self, slug):
        if slug not in self.links:
            return None
        self.clicks[slug] += 1
        return self.links[slug]


class FakeConnection:
    """Minimal asyncpg connection for SecretStore tests."""

    def __init__(self):
        self.secrets: set[str] = set()
        self.versions: list[tuple[str, bytes]] = []

    async def execute(self, query, *args):
        self.secrets.add(args[0])

    async def fetchval(self, query, *args):
        if query.startswith("INSERT"):
            name, payload = args
            if name not in self.secrets:
                raise asyncpg.ForeignKeyViolationError("missing parent")
            self.versions.append((name, payload))
            return len(self.versions)
        name = args[0]
        rows = [(i + 1, p) for i, (n, p) in enumerate(self.versions) if n == name]
        if len(args) == 2:
            rows = [r for r in rows if r[0] == args[1]]
        return rows[-1][1] if rows else None


class FakePool:
    def __init__(self):
        self.conn = FakeConnection()

    @asynccontextmanager
    async def acquire(self, timeout=None):
        yield self.conn


def make_record(
    login: str = "streamer",
    *,
    user_id: str | None = "1001",
    expires_in: timedelta | None = timedelta(hours=2),
    **kwargs,
) -> ChannelRecord:
    return ChannelRecord(
        channel_login=login,
        provider_user_id=user_id,
        display_name=login,
        access_token_expires_at=(NOW + expires_in) if expires_in is not None else None,
        **kwargs,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def channels():
    return FakeChannelRepository()


@pytest.fixture
def secret_store():
    return FakeSecretStore()


@pytest.fixture
def identity():
    return FakeIdentity()


@pytest.fixture
def helix():
    return FakeHelix()


@pytest.fixture
def onboarded(channels, secret_store):
    """A full-tier channel with a fresh access token and a refresh token."""
    record = channels.add(make_record())
    secret_store.seed(access_token_secret("1001"), "access-1")
    secret_store.seed(refresh_token_secret("1001"), "refresh-1")
    return record


@pytest.fixture
def token_manager(channels, secret_store, identity, clock):
    return TokenLifecycleManager(channels, secret_store, identity, clock=clock)


@pytest.fixture
def failing_refresh(identity):
    identity.refresh_error = RefreshFailed("Twitch rejected refresh_token: Invalid refresh token")
    return identity
