"""Configuration: environment settings and the OAuth provider catalogue."""

from connection_health.config.settings import EngineSettings, get_settings, reset_settings
from connection_health.config.provider_config import (
    ProviderConfig,
    ProviderConfigLoader,
    get_provider_config_loader,
    reset_provider_config_loader,
)

__all__ = [
    "EngineSettings",
    "get_settings",
    "reset_settings",
    "ProviderConfig",
    "ProviderConfigLoader",
    "get_provider_config_loader",
    "reset_provider_config_loader",
]
