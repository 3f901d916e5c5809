"""
Tests for engine settings and the OAuth provider catalogue.
"""

import pytest

from connection_health.config.provider_config import (
    ProviderConfigLoader,
    get_provider_config_loader,
)
from connection_health.config.settings import (
    DEFAULT_HEALTH_MAX_CONCURRENCY,
    DEFAULT_PROBE_TIMEOUT_SECONDS,
    EngineSettings,
    get_settings,
    normalize_database_url,
)

_ENV_VARS = (
    "PRIMARY_DATABASE_URL",
    "SECONDARY_DATABASE_URL",
    "PROBE_TIMEOUT_SECONDS",
    "REFRESH_TIMEOUT_SECONDS",
    "HEALTH_MAX_CONCURRENCY",
    "EXPIRY_BUFFER_MINUTES",
    "DEFAULT_TOKEN_LIFETIME_SECONDS",
    "STALE_VALIDATION_DAYS",
    "HEALTH_CHECK_DEADLINE_SECONDS",
)


@pytest.fixture
def clean_env(monkeypatch, clean_config):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestEngineSettings:

    def test_defaults(self, clean_env):
        settings = EngineSettings.from_env()

        assert settings.primary_database_url is None
        assert settings.probe_timeout_seconds == DEFAULT_PROBE_TIMEOUT_SECONDS
        assert settings.health_max_concurrency == DEFAULT_HEALTH_MAX_CONCURRENCY
        assert settings.expiry_buffer_minutes == 5
        assert settings.stale_validation_days == 30
        assert settings.health_check_deadline_seconds is None

    def test_overrides(self, clean_env):
        clean_env.setenv("PRIMARY_DATABASE_URL", "postgres://u:p@db/primary")
        clean_env.setenv("SECONDARY_DATABASE_URL", "sqlite:///legacy.db")
        clean_env.setenv("PROBE_TIMEOUT_SECONDS", "2.5")
        clean_env.setenv("HEALTH_MAX_CONCURRENCY", "12")
        clean_env.setenv("HEALTH_CHECK_DEADLINE_SECONDS", "8")

        settings = EngineSettings.from_env()

        assert settings.primary_database_url == "postgresql://u:p@db/primary"
        assert settings.secondary_database_url == "sqlite:///legacy.db"
        assert settings.probe_timeout_seconds == 2.5
        assert settings.health_max_concurrency == 12
        assert settings.health_check_deadline_seconds == 8.0

    def test_invalid_values_fall_back_to_defaults(self, clean_env):
        clean_env.setenv("PROBE_TIMEOUT_SECONDS", "fast")
        clean_env.setenv("HEALTH_MAX_CONCURRENCY", "many")

        settings = EngineSettings.from_env()

        assert settings.probe_timeout_seconds == DEFAULT_PROBE_TIMEOUT_SECONDS
        assert settings.health_max_concurrency == DEFAULT_HEALTH_MAX_CONCURRENCY

    def test_concurrency_is_at_least_one(self, clean_env):
        clean_env.setenv("HEALTH_MAX_CONCURRENCY", "0")

        assert EngineSettings.from_env().health_max_concurrency == 1

    def test_get_settings_is_cached(self, clean_env):
        first = get_settings()
        clean_env.setenv("PROBE_TIMEOUT_SECONDS", "99")

        assert get_settings() is first

    @pytest.mark.parametrize("url,expected", [
        ("postgres://h/db", "postgresql://h/db"),
        ("postgresql://h/db", "postgresql://h/db"),
        (None, None),
    ])
    def test_normalize_database_url(self, url, expected):
        assert normalize_database_url(url) == expected


class TestProviderConfigLoader:

    def test_singleton(self, clean_config):
        assert get_provider_config_loader() is ProviderConfigLoader()

    def test_catalogue_contents(self, clean_config):
        loader = get_provider_config_loader()

        assert set(loader.platforms) == {"youtube", "linkedin", "reddit", "pinterest", "apple", "gmail"}
        assert loader.get_display_name("linkedin") == "LinkedIn"
        assert loader.get_display_name("myspace") == "myspace"
        assert loader.get_provider("myspace") is None

    def test_get_all_excludes_secrets(self, clean_config):
        catalogue = get_provider_config_loader().get_all()

        assert catalogue["version"] == 1
        assert catalogue["providers"]["apple"]["probe_supported"] is False
        assert catalogue["providers"]["youtube"]["supports_refresh"] is True
        assert "client_id_env" not in catalogue["providers"]["youtube"]

    def test_explicit_config_path(self, clean_config, tmp_path):
        path = tmp_path / "providers.yml"
        path.write_text(
            "version: 2\n"
            "providers:\n"
            "  reddit:\n"
            "    display_name: Reddit Test\n"
            "    probe_url: https://probe.test/reddit\n"
        )

        loader = ProviderConfigLoader(str(path))

        assert loader.platforms == ["reddit"]
        assert loader.get_all()["version"] == 2
        assert loader.get_provider("reddit").supports_refresh is False

    def test_gmail_falls_back_to_youtube_credentials(self, clean_config, monkeypatch):
        monkeypatch.delenv("GMAIL_CLIENT_ID", raising=False)
        monkeypatch.delenv("GMAIL_CLIENT_SECRET", raising=False)
        monkeypatch.setenv("YOUTUBE_CLIENT_ID", "google-id")
        monkeypatch.setenv("YOUTUBE_CLIENT_SECRET", "google-secret")

        gmail = get_provider_config_loader().get_provider("gmail")

        assert gmail.client_credentials() == ("google-id", "google-secret")

    def test_dedicated_gmail_credentials_win(self, clean_config, monkeypatch):
        monkeypatch.setenv("GMAIL_CLIENT_ID", "gmail-id")
        monkeypatch.setenv("GMAIL_CLIENT_SECRET", "gmail-secret")
        monkeypatch.setenv("YOUTUBE_CLIENT_ID", "google-id")

        gmail = get_provider_config_loader().get_provider("gmail")

        assert gmail.client_credentials() == ("gmail-id", "gmail-secret")
