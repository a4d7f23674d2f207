"""
Pytest configuration and shared fixtures for all tests
"""

import copy
from datetime import UTC, datetime

import httpx
import pytest
from fastapi.testclient import TestClient
from starlette.requests import Request

from app import create_app
from core.config import Settings
from services import AuthGate, MemeLabAPIClient
from shared.cache import MemoryTTLStore, ProfileCache
from shared.models.streamer import Streamer, StreamPlatform
from shared.repositories.streamer import MemoryStreamerStore

TEST_WEBHOOK_SECRET = "test-webhook-secret"
TEST_SESSION_SECRET = "test-session-secret"
TEST_ENCRYPTION_KEY = "00112233445566778899aabbccddeeff" * 2
TEST_MEMELAB_URL = "https://memelab.test/api"

PROFILE = {
    "id": "user-1",
    "displayName": "MyChannel",
    "profileImageUrl": "https://cdn.memelab.test/avatar.png",
    "role": "streamer",
    "channelId": "chan-1",
    "channel": {"id": "chan-1", "slug": "mychannel", "name": "My Channel"},
    "externalAccounts": [
        {
            "provider": "twitch",
            "providerAccountId": "42",
            "displayName": "MyChannel",
            "login": "mychannel",
            "avatarUrl": None,
        }
    ],
}


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeMemeLab:
    """MockTransport handler for ``GET /v1/viewer/me`` that records calls."""

    def __init__(self, profile: dict | None = None, status_code: int = 200):
        self.profile = copy.deepcopy(PROFILE) if profile is None else profile
        self.status_code = status_code
        self.error: Exception | None = None
        self.calls: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        if self.error is not None:
            raise self.error
        return httpx.Response(self.status_code, json=self.profile)

    @property
    def call_count(self) -> int:
        return len(self.calls)


def make_request(headers: dict[str, str] | None = None) -> Request:
    """Bare Starlette request carrying only *headers*."""
    raw = [(k.lower().encode("latin-1"), v.encode("latin-1")) for k, v in (headers or {}).items()]
    return Request({"type": "http", "method": "GET", "path": "/", "headers": raw})


def make_streamer(**overrides) -> Streamer:
    now = datetime(2026, 2, 19, 12, 0, tzinfo=UTC)
    fields = {
        "id": "streamer-1",
        "memelab_user_id": "user-1",
        "memelab_channel_id": "chan-1",
        "channel_slug": "mychannel",
        "display_name": "MyChannel",
        "twitch_login": "mychannel",
        "stream_platforms": [
            StreamPlatform("twitch", "mychannel", "https://twitch.tv/mychannel"),
        ],
        "chat_ids": ["-1001"],
        "created_at": now,
        "updated_at": now,
    }
    fields.update(overrides)
    return Streamer(**fields)


@pytest.fixture
def settings():
    """Settings isolated from the environment: no database, no worker."""
    return Settings(
        _env_file=None,
        memelab_api_url=TEST_MEMELAB_URL,
        webhook_secret=TEST_WEBHOOK_SECRET,
        session_secret=TEST_SESSION_SECRET,
        database_url="",
        queue_url="",
        run_worker=False,
        telegram_bot_token="111:global-token",
        bot_token_encryption_key=TEST_ENCRYPTION_KEY,
        environment="test",
        log_level="WARNING",
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memelab():
    return FakeMemeLab()


@pytest.fixture
def memelab_api(memelab):
    http = httpx.AsyncClient(transport=httpx.MockTransport(memelab))
    return MemeLabAPIClient(TEST_MEMELAB_URL, http=http)


@pytest.fixture
def profile_store(clock):
    return MemoryTTLStore(maxsize=16, timer=clock)


@pytest.fixture
def profile_cache(profile_store):
    return ProfileCache(profile_store, ttl=300, digest_key=TEST_SESSION_SECRET)


@pytest.fixture
def streamer_store():
    return MemoryStreamerStore()


@pytest.fixture
def auth_gate(profile_cache, memelab_api, streamer_store):
    return AuthGate(profile_cache, memelab_api, streamer_store)


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def client(app, auth_gate, streamer_store):
    """TestClient with the lifespan running and fakes swapped into app.state."""
    with TestClient(app) as test_client:
        app.state.auth_gate = auth_gate
        app.state.streamer_store = streamer_store
        yield test_client
