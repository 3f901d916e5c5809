"""
Tests for the provider HTTP client and platform registry.

Provider endpoints are replaced with httpx.MockTransport; no network I/O.
"""

from urllib.parse import parse_qs

import httpx
import pytest

from connection_health.config.provider_config import ProviderConfig, ProviderConfigLoader
from connection_health.config.settings import EngineSettings
from connection_health.errors import ProbeError, RefreshFailedError
from connection_health.integrations.providers.client import ProviderHttpClient
from connection_health.integrations.providers.models import RefreshIdentity
from connection_health.integrations.providers.registry import (
    AppleProvider,
    GoogleProvider,
    PlatformRegistry,
    RedditProvider,
    build_default_registry,
)
from connection_health.models.platform_connection import Platform

YOUTUBE_CONFIG = ProviderConfig(
    platform="youtube",
    display_name="YouTube",
    probe_url="https://probe.test/youtube",
    token_url="https://token.test/google",
    supports_refresh=True,
    client_id_env="YOUTUBE_CLIENT_ID",
    client_secret_env="YOUTUBE_CLIENT_SECRET",
)

IDENTITY = RefreshIdentity(user_identifier="user-1", platform=Platform.YOUTUBE, refresh_token="refresh-abc")


def _http(handler):
    return ProviderHttpClient(probe_timeout=1.0, refresh_timeout=1.0, transport=httpx.MockTransport(handler))


@pytest.fixture
def google_credentials(monkeypatch):
    monkeypatch.setenv("YOUTUBE_CLIENT_ID", "client-id")
    monkeypatch.setenv("YOUTUBE_CLIENT_SECRET", "client-secret")


# =============================================================================
# Probe
# =============================================================================

class TestProbe:

    @pytest.mark.asyncio
    async def test_2xx_is_valid_and_sends_bearer(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers["Authorization"]
            return httpx.Response(200, json={"items": []})

        async with _http(handler) as http:
            result = await GoogleProvider(Platform.YOUTUBE, YOUTUBE_CONFIG, http).probe("tok")

        assert result.valid is True
        assert result.status_code == 200
        assert seen["auth"] == "Bearer tok"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [401, 403, 500])
    async def test_non_2xx_is_invalid(self, status_code):
        async with _http(lambda request: httpx.Response(status_code)) as http:
            result = await GoogleProvider(Platform.YOUTUBE, YOUTUBE_CONFIG, http).probe("tok")

        assert result.valid is False
        assert result.reason == f"provider returned {status_code}"

    @pytest.mark.asyncio
    async def test_transport_failure_raises_probe_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with _http(handler) as http:
            with pytest.raises(ProbeError):
                await GoogleProvider(Platform.YOUTUBE, YOUTUBE_CONFIG, http).probe("tok")

    @pytest.mark.asyncio
    async def test_timeout_raises_probe_error(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        async with _http(handler) as http:
            with pytest.raises(ProbeError) as exc_info:
                await GoogleProvider(Platform.YOUTUBE, YOUTUBE_CONFIG, http).probe("tok")

        assert "timeout" in exc_info.value.message.lower()

    @pytest.mark.asyncio
    async def test_apple_probe_is_unsupported(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200)

        config = ProviderConfig(platform="apple", display_name="Apple", probe_url="https://probe.test/apple")
        async with _http(handler) as http:
            result = await AppleProvider(Platform.APPLE, config, http).probe("tok")

        assert result.valid is False
        assert result.reason == "probe unsupported"
        assert calls == []

    @pytest.mark.asyncio
    async def test_reddit_probe_sends_descriptive_user_agent(self):
        seen = {}

        def handler(request):
            seen["ua"] = request.headers["User-Agent"]
            return httpx.Response(200)

        config = ProviderConfig(platform="reddit", display_name="Reddit", probe_url="https://probe.test/reddit")
        async with _http(handler) as http:
            await RedditProvider(Platform.REDDIT, config, http).probe("tok")

        assert "token probe" in seen["ua"]


# =============================================================================
# Refresh
# =============================================================================

class TestRefresh:

    @pytest.mark.asyncio
    async def test_successful_refresh_returns_grant(self, google_credentials):
        seen = {}

        def handler(request):
            seen["form"] = parse_qs(request.content.decode())
            return httpx.Response(200, json={"access_token": "new-access", "expires_in": 3599})

        async with _http(handler) as http:
            grant = await GoogleProvider(Platform.YOUTUBE, YOUTUBE_CONFIG, http).refresh(IDENTITY)

        assert grant.access_token == "new-access"
        assert grant.expires_in == 3599
        assert grant.refresh_token is None
        assert seen["form"]["grant_type"] == ["refresh_token"]
        assert seen["form"]["refresh_token"] == ["refresh-abc"]
        assert seen["form"]["client_id"] == ["client-id"]

    @pytest.mark.asyncio
    async def test_invalid_grant_is_permanent(self, google_credentials):
        handler = lambda request: httpx.Response(400, json={"error": "invalid_grant"})  # noqa: E731

        async with _http(handler) as http:
            with pytest.raises(RefreshFailedError) as exc_info:
                await GoogleProvider(Platform.YOUTUBE, YOUTUBE_CONFIG, http).refresh(IDENTITY)

        assert exc_info.value.permanent is True
        assert "invalid_grant" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_server_error_is_not_permanent(self, google_credentials):
        async with _http(lambda request: httpx.Response(503, text="unavailable")) as http:
            with pytest.raises(RefreshFailedError) as exc_info:
                await GoogleProvider(Platform.YOUTUBE, YOUTUBE_CONFIG, http).refresh(IDENTITY)

        assert exc_info.value.permanent is False

    @pytest.mark.asyncio
    async def test_missing_access_token_in_response(self, google_credentials):
        async with _http(lambda request: httpx.Response(200, json={"expires_in": 3600})) as http:
            with pytest.raises(RefreshFailedError):
                await GoogleProvider(Platform.YOUTUBE, YOUTUBE_CONFIG, http).refresh(IDENTITY)

    @pytest.mark.asyncio
    async def test_unsupported_platform(self):
        config = ProviderConfig(platform="reddit", display_name="Reddit", token_url="https://token.test/reddit")
        async with _http(lambda request: httpx.Response(200)) as http:
            with pytest.raises(RefreshFailedError) as exc_info:
                await RedditProvider(Platform.REDDIT, config, http).refresh(IDENTITY)

        assert exc_info.value.message == "unsupported"
        assert exc_info.value.permanent is True

    @pytest.mark.asyncio
    async def test_missing_client_credentials(self, monkeypatch):
        monkeypatch.delenv("YOUTUBE_CLIENT_ID", raising=False)
        monkeypatch.delenv("YOUTUBE_CLIENT_SECRET", raising=False)

        async with _http(lambda request: httpx.Response(200)) as http:
            with pytest.raises(RefreshFailedError) as exc_info:
                await GoogleProvider(Platform.YOUTUBE, YOUTUBE_CONFIG, http).refresh(IDENTITY)

        assert "YOUTUBE_CLIENT_ID" in exc_info.value.message
        assert exc_info.value.permanent is False

    @pytest.mark.asyncio
    async def test_basic_auth_client_authentication(self, monkeypatch):
        monkeypatch.setenv("REDDIT_CLIENT_ID", "rid")
        monkeypatch.setenv("REDDIT_CLIENT_SECRET", "rsecret")
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("Authorization", "")
            seen["form"] = parse_qs(request.content.decode())
            return httpx.Response(200, json={"access_token": "rd-new"})

        config = ProviderConfig(
            platform="reddit",
            display_name="Reddit",
            token_url="https://token.test/reddit",
            supports_refresh=True,
            client_id_env="REDDIT_CLIENT_ID",
            client_secret_env="REDDIT_CLIENT_SECRET",
        )
        async with _http(handler) as http:
            await RedditProvider(Platform.REDDIT, config, http).refresh(IDENTITY)

        assert seen["auth"].startswith("Basic ")
        assert "client_secret" not in seen["form"]


# =============================================================================
# Registry
# =============================================================================

class TestRegistry:

    def test_register_and_get(self):
        registry = PlatformRegistry()
        provider = GoogleProvider(Platform.YOUTUBE, YOUTUBE_CONFIG, http=None)

        registry.register(provider)

        assert registry.get(Platform.YOUTUBE) is provider
        assert registry.has(Platform.LINKEDIN) is False
        assert registry.platforms == [Platform.YOUTUBE]

    @pytest.mark.asyncio
    async def test_default_registry_from_catalogue(self, clean_config):
        http = _http(lambda request: httpx.Response(200))
        registry = build_default_registry(EngineSettings(), loader=ProviderConfigLoader(), http=http)

        try:
            assert set(registry.platforms) == set(Platform)
            assert isinstance(registry.get(Platform.APPLE), AppleProvider)
            assert isinstance(registry.get(Platform.REDDIT), RedditProvider)
            assert registry.get(Platform.YOUTUBE).supports_refresh is True
            assert registry.get(Platform.GMAIL).supports_refresh is True
            assert registry.get(Platform.REDDIT).supports_refresh is False
        finally:
            await registry.close()
