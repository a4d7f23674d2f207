"""Tests for request authentication."""

import copy
from unittest.mock import AsyncMock

import httpx
import pytest
from fastapi.testclient import TestClient

from app import create_app
from core.errors import Forbidden, InternalAuthError, Unauthenticated
from services.auth_gate import AuthGate, extract_credential
from shared.cache import ProfileCache
from tests.conftest import PROFILE, make_request


def _unlinked_profile() -> dict:
    profile = copy.deepcopy(PROFILE)
    profile["channelId"] = None
    profile["channel"] = None
    return profile


class TestExtractCredential:
    """Test credential extraction from cookies and headers."""

    def test_cookie(self):
        assert extract_credential(make_request({"Cookie": "token=abc"})) == "abc"

    def test_cookie_among_others(self):
        request = make_request({"Cookie": "theme=dark; token=abc; lang=ru"})
        assert extract_credential(request) == "abc"

    def test_cookie_is_url_decoded(self):
        assert extract_credential(make_request({"Cookie": "token=a%2Bb%3D"})) == "a+b="

    def test_custom_cookie_name(self):
        request = make_request({"Cookie": "token=wrong; session=right"})
        assert extract_credential(request, "session") == "right"

    def test_bearer_header(self):
        request = make_request({"Authorization": "Bearer xyz"})
        assert extract_credential(request) == "xyz"

    def test_cookie_wins_over_header(self):
        request = make_request({"Cookie": "token=abc", "Authorization": "Bearer xyz"})
        assert extract_credential(request) == "abc"

    @pytest.mark.parametrize(
        "headers",
        [{}, {"Authorization": "Basic xyz"}, {"Authorization": "Bearer "}, {"Cookie": "other=1"}],
    )
    def test_no_credential(self, headers):
        assert extract_credential(make_request(headers)) is None


class TestAuthenticate:
    """Test AuthGate.authenticate."""

    @pytest.mark.asyncio
    async def test_missing_credential_is_401_without_lookup(self, auth_gate, memelab):
        with pytest.raises(Unauthenticated) as exc_info:
            await auth_gate.authenticate(make_request())
        assert exc_info.value.status_code == 401
        assert exc_info.value.message == "Not authenticated"
        assert memelab.call_count == 0

    @pytest.mark.asyncio
    async def test_fresh_login_upserts_streamer(self, auth_gate, memelab, streamer_store):
        streamer = await auth_gate.authenticate(make_request({"Cookie": "token=abc"}))

        assert memelab.call_count == 1
        assert memelab.calls[0].headers["Authorization"] == "Bearer abc"
        assert memelab.calls[0].url.path == "/api/v1/viewer/me"
        assert streamer.memelab_user_id == "user-1"
        assert streamer.memelab_channel_id == "chan-1"
        assert streamer.channel_slug == "mychannel"
        assert streamer.twitch_login == "mychannel"
        assert streamer.avatar_url == "https://cdn.memelab.test/avatar.png"
        assert await streamer_store.get(streamer.id) == streamer

    @pytest.mark.asyncio
    async def test_cached_profile_skips_identity_call(self, auth_gate, memelab):
        request = make_request({"Authorization": "Bearer abc"})
        first = await auth_gate.authenticate(request)
        second = await auth_gate.authenticate(request)
        third = await auth_gate.authenticate(request)

        assert memelab.call_count == 1
        assert first.id == second.id == third.id

    @pytest.mark.asyncio
    async def test_prepopulated_cache_means_no_identity_call(
        self, auth_gate, memelab, profile_cache
    ):
        await profile_cache.remember("abc", PROFILE)
        streamer = await auth_gate.authenticate(make_request({"Cookie": "token=abc"}))

        assert memelab.call_count == 0
        assert streamer.memelab_user_id == "user-1"

    @pytest.mark.asyncio
    async def test_expired_cache_refetches(self, auth_gate, memelab, clock):
        request = make_request({"Cookie": "token=abc"})
        await auth_gate.authenticate(request)
        clock.advance(301)
        await auth_gate.authenticate(request)

        assert memelab.call_count == 2

    @pytest.mark.asyncio
    async def test_distinct_credentials_are_cached_separately(self, auth_gate, memelab):
        await auth_gate.authenticate(make_request({"Cookie": "token=abc"}))
        await auth_gate.authenticate(make_request({"Cookie": "token=def"}))

        assert memelab.call_count == 2

    @pytest.mark.asyncio
    async def test_unlinked_profile_is_403(self, auth_gate, memelab):
        memelab.profile = _unlinked_profile()
        with pytest.raises(Forbidden) as exc_info:
            await auth_gate.authenticate(make_request({"Cookie": "token=abc"}))
        assert exc_info.value.status_code == 403
        assert exc_info.value.message == "No channel linked to your MemeLab account"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [401, 403, 404, 500, 502])
    async def test_upstream_rejection_is_401(self, auth_gate, memelab, profile_cache, status_code):
        memelab.status_code = status_code
        with pytest.raises(Unauthenticated) as exc_info:
            await auth_gate.authenticate(make_request({"Cookie": "token=abc"}))
        assert exc_info.value.message == "Invalid or expired token"
        assert not (await profile_cache.lookup("abc")).hit

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [httpx.ConnectError("refused"), httpx.ReadTimeout("slow")],
    )
    async def test_upstream_failure_is_401(self, auth_gate, memelab, error):
        memelab.error = error
        with pytest.raises(Unauthenticated):
            await auth_gate.authenticate(make_request({"Cookie": "token=abc"}))

    @pytest.mark.asyncio
    async def test_unexpected_profile_shape_is_401(self, auth_gate, memelab):
        memelab.profile = {"unexpected": True}
        with pytest.raises(Unauthenticated):
            await auth_gate.authenticate(make_request({"Cookie": "token=abc"}))

    @pytest.mark.asyncio
    async def test_cache_outage_falls_back_to_identity_call(
        self, memelab_api, memelab, streamer_store
    ):
        broken = AsyncMock()
        broken.get.side_effect = ConnectionError("cache down")
        broken.setex.side_effect = ConnectionError("cache down")
        gate = AuthGate(ProfileCache(broken), memelab_api, streamer_store)

        streamer = await gate.authenticate(make_request({"Cookie": "token=abc"}))
        assert streamer.memelab_user_id == "user-1"
        assert memelab.call_count == 1

    @pytest.mark.asyncio
    async def test_store_failure_is_internal_error(self, profile_cache, memelab_api):
        store = AsyncMock()
        store.upsert.side_effect = RuntimeError("db down")
        gate = AuthGate(profile_cache, memelab_api, store)

        with pytest.raises(InternalAuthError) as exc_info:
            await gate.authenticate(make_request({"Cookie": "token=abc"}))
        assert exc_info.value.status_code == 500
        assert exc_info.value.message == "Authentication error"

    @pytest.mark.asyncio
    async def test_upsert_is_idempotent(self, auth_gate, streamer_store, clock):
        request = make_request({"Cookie": "token=abc"})
        first = await auth_gate.authenticate(request)
        clock.advance(301)
        second = await auth_gate.authenticate(request)

        assert first.id == second.id
        assert await streamer_store.get_by_channel_id("chan-1") == second


class TestAuthEndpoints:
    """Test /api/auth routes over HTTP."""

    def test_me_requires_credential(self, client):
        response = client.get("/api/auth/me")
        assert response.status_code == 401
        assert response.json() == {"error": "Not authenticated"}

    def test_me_unlinked_is_403(self, client, memelab):
        memelab.profile = _unlinked_profile()
        response = client.get("/api/auth/me", headers={"Authorization": "Bearer abc"})
        assert response.status_code == 403
        assert response.json() == {"error": "No channel linked to your MemeLab account"}

    def test_me_returns_streamer(self, client):
        client.cookies.set("token", "abc")
        response = client.get("/api/auth/me")

        assert response.status_code == 200
        body = response.json()
        assert body["memelabChannelId"] == "chan-1"
        assert body["channelSlug"] == "mychannel"
        assert body["hasCustomBot"] is False

    def test_logout_forgets_cached_profile(self, client, memelab):
        headers = {"Authorization": "Bearer abc"}
        client.get("/api/auth/me", headers=headers)
        assert client.post("/api/auth/logout", headers=headers).json() == {"ok": True}
        client.get("/api/auth/me", headers=headers)

        assert memelab.call_count == 2

    def test_logout_cookie_follows_app_settings(self, settings, auth_gate):
        app = create_app(settings.model_copy(update={"environment": "production"}))
        with TestClient(app) as client:
            app.state.auth_gate = auth_gate
            response = client.post("/api/auth/logout")

        assert response.status_code == 200
        cookie = response.headers["set-cookie"].lower()
        assert cookie.startswith("token=")
        assert "secure" in cookie
