"""
OAuth provider integrations.

Provides the probe/refresh registry used by the token classifier and the
refresh orchestrator.
"""

from connection_health.integrations.providers.client import ProviderHttpClient
from connection_health.integrations.providers.models import (
    ProbeResult,
    RefreshIdentity,
    TokenGrant,
)
from connection_health.integrations.providers.registry import (
    AppleProvider,
    GoogleProvider,
    LinkedInProvider,
    PinterestProvider,
    PlatformProvider,
    PlatformRegistry,
    RedditProvider,
    build_default_registry,
)

__all__ = [
    # Client
    "ProviderHttpClient",
    # Models
    "ProbeResult",
    "RefreshIdentity",
    "TokenGrant",
    # Registry
    "PlatformProvider",
    "GoogleProvider",
    "LinkedInProvider",
    "RedditProvider",
    "PinterestProvider",
    "AppleProvider",
    "PlatformRegistry",
    "build_default_registry",
]
