"""
Platform probe/refresh registry.

Maps each Platform to a PlatformProvider exposing two calls:

- probe(access_token)  -> ProbeResult   (one read-only call with the token)
- refresh(identity)    -> TokenGrant    (refresh-token exchange)

Providers are built from config/oauth_providers.yml. The registry is the
single extension point: ``registry.register(provider)``.

Usage:
    registry = build_default_registry(settings)
    provider = registry.get(Platform.YOUTUBE)
    result = await provider.probe(access_token)
"""

import logging
from typing import Dict, List, Optional, Tuple

from connection_health.config.provider_config import (
    ProviderConfig,
    ProviderConfigLoader,
    get_provider_config_loader,
)
from connection_health.config.settings import EngineSettings
from connection_health.errors import RefreshFailedError
from connection_health.integrations.providers.client import ProviderHttpClient
from connection_health.integrations.providers.models import (
    ProbeResult,
    RefreshIdentity,
    TokenGrant,
)
from connection_health.models.platform_connection import Platform

logger = logging.getLogger(__name__)


class PlatformProvider:
    """
    Base provider: probe via a bearer GET, refresh via the OAuth2
    refresh_token grant.

    Subclasses override probe_headers / refresh_request for provider
    quirks, or probe / refresh entirely.
    """

    def __init__(self, platform: Platform, config: ProviderConfig, http: ProviderHttpClient):
        self.platform = platform
        self.config = config
        self.http = http

    @property
    def supports_refresh(self) -> bool:
        return self.config.supports_refresh and bool(self.config.token_url)

    def probe_headers(self) -> Dict[str, str]:
        return {}

    async def probe(self, access_token: str) -> ProbeResult:
        """
        Validate a token with one lightweight read-only call.

        Any non-2xx response means the token is not usable.

        Raises:
            ProbeError: On timeout or connection failure
        """
        if not self.config.probe_url:
            return ProbeResult(valid=False, reason="probe unsupported")

        response = await self.http.get_with_bearer(
            self.config.probe_url,
            access_token,
            platform=self.platform.value,
            headers=self.probe_headers(),
        )
        if 200 <= response.status_code < 300:
            return ProbeResult(valid=True, status_code=response.status_code)

        logger.info(
            "Provider probe rejected token",
            extra={"platform": self.platform.value, "status_code": response.status_code},
        )
        return ProbeResult(
            valid=False,
            reason=f"provider returned {response.status_code}",
            status_code=response.status_code,
        )

    def refresh_request(
        self, identity: RefreshIdentity, client_id: str, client_secret: str
    ) -> Tuple[Dict[str, str], Optional[Tuple[str, str]]]:
        """Return (form data, basic auth) for the token endpoint."""
        data = {
            "grant_type": "refresh_token",
            "refresh_token": identity.refresh_token,
            "client_id": client_id,
            "client_secret": client_secret,
        }
        return data, None

    async def refresh(self, identity: RefreshIdentity) -> TokenGrant:
        """
        Exchange a refresh token for a new access token.

        Raises:
            RefreshFailedError: If refresh is unsupported, not configured,
                                or rejected by the provider
        """
        if not self.supports_refresh:
            raise RefreshFailedError(
                "unsupported",
                platform=self.platform.value,
                permanent=True,
            )

        client_id, client_secret = self.config.client_credentials()
        if not client_id or not client_secret:
            logger.error(
                "OAuth client credentials not configured",
                extra={
                    "platform": self.platform.value,
                    "client_id_env": self.config.client_id_env,
                },
            )
            raise RefreshFailedError(
                f"OAuth client credentials not configured ({self.config.client_id_env})",
                platform=self.platform.value,
                permanent=False,
            )

        data, basic_auth = self.refresh_request(identity, client_id, client_secret)
        body = await self.http.post_token_request(
            self.config.token_url,
            data,
            platform=self.platform.value,
            basic_auth=basic_auth,
        )
        return TokenGrant.from_dict(body)


class GoogleProvider(PlatformProvider):
    """YouTube and Gmail: Google OAuth2 token endpoint."""


class LinkedInProvider(PlatformProvider):
    """LinkedIn v2; refresh tokens only for approved apps."""


class RedditProvider(PlatformProvider):
    """Reddit rejects requests without a descriptive User-Agent."""

    def probe_headers(self) -> Dict[str, str]:
        return {"User-Agent": "connection-health/0.1 (token probe)"}

    def refresh_request(
        self, identity: RefreshIdentity, client_id: str, client_secret: str
    ) -> Tuple[Dict[str, str], Optional[Tuple[str, str]]]:
        # Reddit authenticates the client with HTTP basic auth
        data = {"grant_type": "refresh_token", "refresh_token": identity.refresh_token}
        return data, (client_id, client_secret)


class PinterestProvider(PlatformProvider):
    """Pinterest v5."""

    def refresh_request(
        self, identity: RefreshIdentity, client_id: str, client_secret: str
    ) -> Tuple[Dict[str, str], Optional[Tuple[str, str]]]:
        data = {"grant_type": "refresh_token", "refresh_token": identity.refresh_token}
        return data, (client_id, client_secret)


class AppleProvider(PlatformProvider):
    """Sign in with Apple has no bearer-token read API to probe."""

    async def probe(self, access_token: str) -> ProbeResult:
        return ProbeResult(valid=False, reason="probe unsupported")


_PROVIDER_CLASSES = {
    Platform.YOUTUBE: GoogleProvider,
    Platform.GMAIL: GoogleProvider,
    Platform.LINKEDIN: LinkedInProvider,
    Platform.REDDIT: RedditProvider,
    Platform.PINTEREST: PinterestProvider,
    Platform.APPLE: AppleProvider,
}


class PlatformRegistry:
    """Platform -> provider mapping."""

    def __init__(self, http: Optional[ProviderHttpClient] = None):
        self._providers: Dict[Platform, PlatformProvider] = {}
        self._http = http

    def register(self, provider: PlatformProvider) -> None:
        """Register (or replace) the provider for its platform."""
        self._providers[provider.platform] = provider
        logger.debug("Provider registered", extra={"platform": provider.platform.value})

    def get(self, platform: Platform) -> Optional[PlatformProvider]:
        return self._providers.get(platform)

    def has(self, platform: Platform) -> bool:
        return platform in self._providers

    @property
    def platforms(self) -> List[Platform]:
        return list(self._providers.keys())

    async def close(self) -> None:
        """Close the shared HTTP client, if this registry owns one."""
        if self._http is not None:
            await self._http.close()


def build_default_registry(
    settings: EngineSettings,
    loader: Optional[ProviderConfigLoader] = None,
    http: Optional[ProviderHttpClient] = None,
) -> PlatformRegistry:
    """
    Build a registry with one provider per configured platform.

    Args:
        settings: Engine settings (probe/refresh timeouts)
        loader: Provider catalogue (default: singleton loader)
        http: Shared HTTP client (default: a new one from settings)
    """
    loader = loader or get_provider_config_loader()
    http = http or ProviderHttpClient(
        probe_timeout=settings.probe_timeout_seconds,
        refresh_timeout=settings.refresh_timeout_seconds,
    )
    registry = PlatformRegistry(http=http)

    for name in loader.platforms:
        platform = Platform.parse(name)
        if platform is None:
            logger.warning("Unknown platform in provider config", extra={"platform": name})
            continue
        provider_cls = _PROVIDER_CLASSES.get(platform, PlatformProvider)
        registry.register(provider_cls(platform, loader.get_provider(name), http))

    logger.info(
        "Provider registry built",
        extra={"platforms": [p.value for p in registry.platforms]},
    )
    return registry
