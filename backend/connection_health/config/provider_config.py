"""
OAuth provider catalogue loader.

Loads per-platform provider settings from config/oauth_providers.yml,
the single source of truth for probe endpoints, token endpoints and the
environment variables that hold client credentials.

Consumers:
  - PlatformRegistry: builds one provider per configured platform
  - Connection health API: display names in reports

Usage:
    from connection_health.config.provider_config import get_provider_config_loader

    loader = get_provider_config_loader()
    cfg = loader.get_provider("youtube")
    client_id, client_secret = cfg.client_credentials()
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from threading import Lock
from typing import Any, Dict, List, Optional, Tuple

import yaml

logger = logging.getLogger(__name__)

_CONFIG_FILENAME = "oauth_providers.yml"


@dataclass(frozen=True)
class ProviderConfig:
    """Static configuration for one OAuth provider."""
    platform: str
    display_name: str
    category: str = ""
    probe_url: Optional[str] = None
    token_url: Optional[str] = None
    supports_refresh: bool = False
    client_id_env: Optional[str] = None
    client_secret_env: Optional[str] = None
    fallback_client_id_env: Optional[str] = None
    fallback_client_secret_env: Optional[str] = None

    def client_credentials(self) -> Tuple[Optional[str], Optional[str]]:
        """
        Resolve (client_id, client_secret) from the environment.

        Falls back to the fallback_* variables when the primary ones are unset
        (Gmail reuses the YouTube Google client when no dedicated one exists).
        """
        client_id = os.getenv(self.client_id_env) if self.client_id_env else None
        client_secret = os.getenv(self.client_secret_env) if self.client_secret_env else None

        if not client_id and self.fallback_client_id_env:
            client_id = os.getenv(self.fallback_client_id_env)
        if not client_secret and self.fallback_client_secret_env:
            client_secret = os.getenv(self.fallback_client_secret_env)

        return client_id, client_secret

    @classmethod
    def from_dict(cls, platform: str, data: Dict[str, Any]) -> "ProviderConfig":
        return cls(
            platform=platform,
            display_name=data.get("display_name", platform),
            category=data.get("category", ""),
            probe_url=data.get("probe_url"),
            token_url=data.get("token_url"),
            supports_refresh=bool(data.get("supports_refresh", False)),
            client_id_env=data.get("client_id_env"),
            client_secret_env=data.get("client_secret_env"),
            fallback_client_id_env=data.get("fallback_client_id_env"),
            fallback_client_secret_env=data.get("fallback_client_secret_env"),
        )


class ProviderConfigLoader:
    """
    Thread-safe singleton loader for config/oauth_providers.yml.

    Provides lookup by platform name and bulk access for the registry.
    """

    _instance: Optional["ProviderConfigLoader"] = None
    _lock = Lock()

    def __new__(cls, config_path: Optional[str] = None):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self, config_path: Optional[str] = None):
        if self._initialized:
            return

        self._config_path = config_path
        self._raw: Dict[str, Any] = {}
        self._providers: Dict[str, ProviderConfig] = {}
        self._load_lock = Lock()

        self._load()
        self._initialized = True

    # ------------------------------------------------------------------
    # Config resolution
    # ------------------------------------------------------------------

    def _resolve_path(self) -> Path:
        if self._config_path:
            return Path(self._config_path)

        candidates = [
            # Shipped next to this module (package data)
            Path(__file__).parent / _CONFIG_FILENAME,
            Path(os.getcwd()) / "config" / _CONFIG_FILENAME,
        ]

        for p in candidates:
            resolved = p.resolve()
            if resolved.exists():
                return resolved

        raise FileNotFoundError(
            f"{_CONFIG_FILENAME} not found in: {[str(p) for p in candidates]}"
        )

    def _load(self) -> None:
        with self._load_lock:
            path = self._resolve_path()
            logger.info("Loading OAuth provider config from %s", path)

            with open(path, "r") as f:
                self._raw = yaml.safe_load(f) or {}

            providers = self._raw.get("providers", {}) or {}
            self._providers = {
                name: ProviderConfig.from_dict(name, cfg or {})
                for name, cfg in providers.items()
            }

            logger.info(
                "Loaded OAuth provider config for %d platforms, platforms=%s",
                len(self._providers),
                sorted(self._providers),
            )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def reload(self) -> None:
        """Re-read the YAML from disk (e.g. after a config change)."""
        self._load()

    @property
    def platforms(self) -> List[str]:
        return list(self._providers.keys())

    def get_provider(self, platform: str) -> Optional[ProviderConfig]:
        """Return the provider config for a platform, or None if not configured."""
        return self._providers.get(platform)

    def get_display_name(self, platform: str) -> str:
        cfg = self._providers.get(platform)
        return cfg.display_name if cfg else platform

    def get_all(self) -> Dict[str, Any]:
        """Return the catalogue as a serialisable dict (secrets excluded)."""
        return {
            "version": self._raw.get("version", 1),
            "providers": {
                name: {
                    "display_name": cfg.display_name,
                    "category": cfg.category,
                    "supports_refresh": cfg.supports_refresh,
                    "probe_supported": cfg.probe_url is not None,
                }
                for name, cfg in self._providers.items()
            },
        }


# ------------------------------------------------------------------
# Module-level accessors
# ------------------------------------------------------------------

def get_provider_config_loader(
    config_path: Optional[str] = None,
) -> ProviderConfigLoader:
    """Return the singleton ProviderConfigLoader."""
    return ProviderConfigLoader(config_path)


def reset_provider_config_loader() -> None:
    """Reset singleton (for tests only)."""
    ProviderConfigLoader._instance = None
