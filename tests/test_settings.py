"""
Tests for configuration loading and validation.
"""
import pytest
from pydantic import ValidationError

from checkin_auth.config import Settings, get_access_token_ttl, get_jwt_settings

from conftest import TEST_SECRET


def test_short_secret_is_rejected():
    """Test that a key under 256 bits stops startup."""
    with pytest.raises(ValidationError, match="JWT_SECRET_KEY"):
        Settings(JWT_SECRET_KEY="too-short")


def test_generated_secret_is_long_enough():
    assert len(Settings().JWT_SECRET_KEY) >= 32


@pytest.mark.parametrize(
    "field",
    ["MAX_LOGIN_ATTEMPTS", "MAX_CONCURRENT_SESSIONS", "JWT_ACCESS_TOKEN_EXPIRE_MINUTES"],
)
def test_limits_must_be_positive(field):
    with pytest.raises(ValidationError):
        Settings(JWT_SECRET_KEY=TEST_SECRET, **{field: 0})


def test_backend_names():
    settings = Settings(JWT_SECRET_KEY=TEST_SECRET, SESSION_BACKEND="Redis")
    assert settings.SESSION_BACKEND == "redis"

    with pytest.raises(ValidationError):
        Settings(JWT_SECRET_KEY=TEST_SECRET, BLACKLIST_BACKEND="memcached")


def test_cors_origins_from_string():
    settings = Settings(JWT_SECRET_KEY=TEST_SECRET, CORS_ORIGINS="https://a.court.org, https://b.court.org")
    assert settings.CORS_ORIGINS == ["https://a.court.org", "https://b.court.org"]


def test_default_database_url():
    settings = Settings(JWT_SECRET_KEY=TEST_SECRET)
    assert settings.DATABASE_URL.startswith("sqlite:///")
    assert settings.DATABASE_URL.endswith("checkin_auth.db")


def test_environment_overrides(monkeypatch):
    """Test that environment variables override the defaults."""
    monkeypatch.setenv("JWT_SECRET_KEY", TEST_SECRET)
    monkeypatch.setenv("MAX_CONCURRENT_SESSIONS", "3")
    monkeypatch.setenv("DATABASE_URL", "postgresql://db/checkin")

    settings = Settings()

    assert settings.MAX_CONCURRENT_SESSIONS == 3
    assert settings.DATABASE_URL == "postgresql://db/checkin"


def test_jwt_helpers():
    jwt_settings = get_jwt_settings()
    assert jwt_settings["algorithm"] == "HS256"
    assert get_access_token_ttl().total_seconds() == 60 * jwt_settings["access_token_expire_minutes"]


def test_jwt_helpers_with_explicit_settings():
    app_settings = Settings(JWT_SECRET_KEY=TEST_SECRET, JWT_ALGORITHM="HS512")
    assert get_jwt_settings(app_settings)["algorithm"] == "HS512"
    assert get_jwt_settings(app_settings)["secret_key"] == TEST_SECRET
