"""
Shared async HTTP client for OAuth provider probes and refreshes.

One client (and one connection pool) is shared by every provider in a
registry. Transport failures are mapped onto engine errors here so that
providers never leak httpx exceptions:

- probe:   httpx.TimeoutException / httpx.RequestError -> ProbeError
- refresh: httpx.TimeoutException / httpx.RequestError -> RefreshFailedError
           non-2xx token endpoint response               -> RefreshFailedError

SECURITY: Tokens and client secrets are never logged.
"""

import logging
from typing import Any, Dict, Optional, Tuple

import httpx

from connection_health.errors import ProbeError, RefreshFailedError

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_PROBE_TIMEOUT_SECONDS = 10.0
DEFAULT_REFRESH_TIMEOUT_SECONDS = 15.0
DEFAULT_CONNECT_TIMEOUT_SECONDS = 5.0
USER_AGENT = "connection-health/0.1"

# OAuth error codes meaning the grant itself is dead; retrying will not help
_PERMANENT_OAUTH_ERRORS = {"invalid_grant", "unauthorized_client", "invalid_client"}


class ProviderHttpClient:
    """
    Async client for provider probe and token endpoints.

    All methods are async and should be used with async/await.
    """

    def __init__(
        self,
        probe_timeout: float = DEFAULT_PROBE_TIMEOUT_SECONDS,
        refresh_timeout: float = DEFAULT_REFRESH_TIMEOUT_SECONDS,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize provider client.

        Args:
            probe_timeout: Probe request timeout in seconds
            refresh_timeout: Token endpoint request timeout in seconds
            connect_timeout: Connection timeout in seconds
            transport: Optional transport (httpx.MockTransport in tests)
        """
        self.probe_timeout = httpx.Timeout(probe_timeout, connect=min(connect_timeout, probe_timeout))
        self.refresh_timeout = httpx.Timeout(refresh_timeout, connect=min(connect_timeout, refresh_timeout))

        self._client = httpx.AsyncClient(
            timeout=self.probe_timeout,
            headers={
                "Accept": "application/json",
                "User-Agent": USER_AGENT,
            },
            transport=transport,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> "ProviderHttpClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def get_with_bearer(
        self,
        url: str,
        access_token: str,
        platform: str,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        """
        Make a GET request authorized with a bearer token.

        Returns:
            The raw response (any status code)

        Raises:
            ProbeError: On timeout or connection failure
        """
        request_headers = {"Authorization": f"Bearer {access_token}"}
        if headers:
            request_headers.update(headers)

        try:
            return await self._client.get(url, headers=request_headers, timeout=self.probe_timeout)
        except httpx.TimeoutException as e:
            logger.warning(
                "Provider probe timeout",
                extra={"platform": platform, "error_type": type(e).__name__},
            )
            raise ProbeError(f"Probe timeout: {type(e).__name__}", platform=platform)
        except httpx.RequestError as e:
            logger.warning(
                "Provider probe connection error",
                extra={"platform": platform, "error_type": type(e).__name__},
            )
            raise ProbeError(f"Probe connection error: {type(e).__name__}", platform=platform)

    async def post_token_request(
        self,
        url: str,
        data: Dict[str, str],
        platform: str,
        basic_auth: Optional[Tuple[str, str]] = None,
    ) -> Dict[str, Any]:
        """
        POST a form-encoded token request.

        Returns:
            Token endpoint JSON body

        Raises:
            RefreshFailedError: On transport failure or non-2xx response
        """
        try:
            response = await self._client.post(
                url,
                data=data,
                auth=basic_auth,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=self.refresh_timeout,
            )
        except httpx.TimeoutException as e:
            logger.warning(
                "Provider token endpoint timeout",
                extra={"platform": platform, "error_type": type(e).__name__},
            )
            raise RefreshFailedError(f"Token endpoint timeout: {type(e).__name__}", platform=platform)
        except httpx.RequestError as e:
            logger.warning(
                "Provider token endpoint connection error",
                extra={"platform": platform, "error_type": type(e).__name__},
            )
            raise RefreshFailedError(
                f"Token endpoint connection error: {type(e).__name__}", platform=platform
            )

        body: Dict[str, Any] = {}
        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.status_code >= 400:
            oauth_error = body.get("error") if isinstance(body, dict) else None
            permanent = oauth_error in _PERMANENT_OAUTH_ERRORS or response.status_code == 401
            logger.error(
                "Provider token endpoint rejected refresh",
                extra={
                    "platform": platform,
                    "status_code": response.status_code,
                    "oauth_error": oauth_error,
                    "permanent": permanent,
                },
            )
            raise RefreshFailedError(
                f"Token refresh rejected: {response.status_code}"
                + (f" ({oauth_error})" if oauth_error else ""),
                platform=platform,
                permanent=permanent,
                status_code=response.status_code,
            )

        if not isinstance(body, dict) or not body.get("access_token"):
            raise RefreshFailedError(
                "Token endpoint response missing access_token",
                platform=platform,
                status_code=response.status_code,
            )
        return body
