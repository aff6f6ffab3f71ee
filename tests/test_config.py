"""
Tests for application settings validation.
"""

import pytest
from pydantic import ValidationError

from deliveryhub.core.config import DEFAULT_SECRET_KEY, Settings, get_settings

STRONG_SECRET = "a-production-secret-that-is-long-enough"


class TestSettings:
    def test_test_environment_is_active(self):
        settings = get_settings()

        assert settings.environment == "test"
        assert settings.rate_limit_enabled is False

    def test_defaults(self):
        settings = Settings(secret_key=STRONG_SECRET, environment="development")

        assert settings.default_page_size == 10
        assert settings.max_page_size == 100
        assert settings.order_operation_timeout_seconds == 10.0
        assert settings.is_development
        assert not settings.is_sqlite

    def test_default_secret_rejected_in_production(self):
        with pytest.raises(ValidationError, match="Default secret key"):
            Settings(secret_key=DEFAULT_SECRET_KEY, environment="production")

    def test_custom_secret_allowed_in_production(self):
        settings = Settings(secret_key=STRONG_SECRET, environment="production")

        assert settings.is_production

    def test_short_secret_rejected(self):
        with pytest.raises(ValidationError):
            Settings(secret_key="too-short")

    def test_cors_origins_from_comma_separated_string(self):
        settings = Settings(cors_origins="https://a.example, https://b.example,")

        assert settings.cors_origins == ["https://a.example", "https://b.example"]

    @pytest.mark.parametrize(
        "url",
        [
            "postgresql://user:pass@db:5432/deliveryhub",
            "postgresql+asyncpg://user:pass@db:5432/deliveryhub",
            "sqlite+aiosqlite:///./deliveryhub.db",
        ],
    )
    def test_supported_database_urls(self, url):
        assert Settings(database_url=url).database_url == url

    def test_unsupported_database_url(self):
        with pytest.raises(ValidationError, match="Database URL"):
            Settings(database_url="mysql://user:pass@db/deliveryhub")

    @pytest.mark.parametrize("timeout", [0, -1])
    def test_operation_timeout_must_be_positive(self, timeout):
        with pytest.raises(ValidationError):
            Settings(order_operation_timeout_seconds=timeout)
