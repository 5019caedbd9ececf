import pytest

from config import (
    DevelopmentSettings,
    ProductionSettings,
    Settings,
    TestingSettings,
    get_settings,
    get_settings_for_environment,
)


@pytest.fixture(autouse=True)
def fresh_settings():
    """Drop the cached settings around each test."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestEnvironmentProfiles:
    """Test profile selection from APP_ENV."""

    @pytest.mark.parametrize("env, expected", [
        ("development", DevelopmentSettings),
        ("production", ProductionSettings),
        ("testing", TestingSettings),
        (" Production ", ProductionSettings),
    ])
    def test_profile_by_name(self, env, expected):
        assert type(get_settings_for_environment(env)) is expected

    def test_unknown_profile_uses_base_settings(self):
        assert type(get_settings_for_environment("staging")) is Settings

    def test_get_settings_reads_app_env(self, monkeypatch):
        monkeypatch.setenv("APP_ENV", "development")

        settings = get_settings()

        assert isinstance(settings, DevelopmentSettings)
        assert settings.log_format == "text"
        assert settings.debug is True

    def test_get_settings_without_app_env(self, monkeypatch):
        monkeypatch.delenv("APP_ENV", raising=False)

        settings = get_settings()

        assert type(settings) is Settings
        assert settings.enable_request_logging is True

    def test_production_profile_restricts_origins(self, monkeypatch):
        monkeypatch.setenv("APP_ENV", "production")

        assert get_settings().allowed_origins == []

    def test_testing_profile_disables_request_logging(self):
        assert get_settings_for_environment("testing").enable_request_logging is False

    def test_environment_overrides_profile_defaults(self, monkeypatch):
        monkeypatch.setenv("APP_ENV", "development")
        monkeypatch.setenv("LOG_FORMAT", "json")

        assert get_settings().log_format == "json"

    def test_settings_are_cached(self, monkeypatch):
        monkeypatch.setenv("APP_ENV", "testing")

        assert get_settings() is get_settings()
