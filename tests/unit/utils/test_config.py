"""Unit tests for settings parsing."""

import pytest

from mantra_pair.errors import ConfigError
from mantra_pair.utils.config import Settings


class TestFromEnv:
    def test_defaults(self):
        settings = Settings.from_env({})
        assert settings.server.port == 3000
        assert settings.server.api_key is None
        assert settings.server.cors_origins == []
        assert settings.rate_limit.window_seconds == 60.0
        assert settings.rate_limit.max_requests == 30
        assert settings.session.ttl_seconds == 300.0
        assert settings.session.idle_ttl_seconds == 120.0
        assert settings.session.cleanup_interval_seconds == 30.0
        assert settings.retry.max_retries == 3
        assert settings.retry.base_delay_seconds == 5.0
        assert settings.export.encrypted is False

    def test_millisecond_values_become_seconds(self):
        settings = Settings.from_env(
            {
                "SESSION_TTL_MS": "90000",
                "SESSION_IDLE_TTL_MS": "1500",
                "RETRY_DELAY_MS": "250",
                "RATE_LIMIT_WINDOW_MS": "1000",
            }
        )
        assert settings.session.ttl_seconds == 90.0
        assert settings.session.idle_ttl_seconds == 1.5
        assert settings.retry.base_delay_seconds == 0.25
        assert settings.rate_limit.window_seconds == 1.0

    def test_api_key_and_origins(self):
        settings = Settings.from_env({"API_KEY": "  s3cret ", "CORS_ORIGINS": "https://a.example, ,https://b.example"})
        assert settings.server.api_key == "s3cret"
        assert settings.server.cors_origins == ["https://a.example", "https://b.example"]

    def test_blank_api_key_disables_gate(self):
        assert Settings.from_env({"API_KEY": "   "}).server.api_key is None

    def test_encrypted_exports_require_secret(self):
        with pytest.raises(ConfigError, match="SESSION_SECRET"):
            Settings.from_env({"EXPORT_ENCRYPTED": "true"})

    def test_encrypted_exports_with_secret(self):
        settings = Settings.from_env({"EXPORT_ENCRYPTED": "TRUE", "SESSION_SECRET": "k"})
        assert settings.export.encrypted is True
        assert settings.export.secret == "k"

    def test_non_numeric_value_rejected(self):
        with pytest.raises(ConfigError, match="MAX_RETRIES"):
            Settings.from_env({"MAX_RETRIES": "three"})


class TestFromDict:
    def test_nested_sections(self):
        settings = Settings.from_dict({"retry": {"max_retries": 5}, "session": {"ttl_seconds": 10}})
        assert settings.retry.max_retries == 5
        assert settings.session.ttl_seconds == 10
        assert settings.server.port == 3000

    def test_validation_applies(self):
        with pytest.raises(ConfigError):
            Settings.from_dict({"export": {"encrypted": True}})
