"""
Centralized configuration management for the check-in authentication service.

This module provides a centralized configuration system using Pydantic BaseSettings
for JWT, lockout, session, password-policy, database and Redis settings. Every
field can be overridden by an environment variable of the same name or by an
``.env`` file in the working directory.
"""
import os
import secrets
from typing import List, Optional, Union

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

# HS256 needs a key of at least 256 bits
MIN_JWT_SECRET_BYTES = 32


class Settings(BaseSettings):
    """
    Settings class for all application configuration.

    Values are validated at construction time, so a misconfigured deployment
    fails on startup instead of on the first request.
    """
    # Application settings
    APP_NAME: str = "Check-in Authentication"
    APP_DESCRIPTION: str = "Authentication and session management for the check-in case backend"
    APP_ENV: str = "development"
    DEBUG: bool = False

    # API settings
    API_PREFIX: str = "/api/auth"
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    RELOAD: bool = False
    CORS_ORIGINS: Union[List[str], str] = Field(default=["*"])

    # JWT settings
    JWT_SECRET_KEY: str = Field(default_factory=lambda: secrets.token_urlsafe(48))
    JWT_ALGORITHM: str = "HS256"
    JWT_ISSUER: str = "checkin-auth"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # Refresh token settings
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7
    REFRESH_TOKEN_ROTATE_AFTER_HOURS: int = 24

    # Account lockout and rate limiting
    MAX_LOGIN_ATTEMPTS: int = 5
    LOCKOUT_DURATION_MINUTES: int = 30
    RATE_LIMIT_WINDOW_SECONDS: int = 60
    RATE_LIMIT_MAX_ATTEMPTS_PER_IP: int = 10

    # Session settings
    SESSION_TIMEOUT_MINUTES: int = 60
    MAX_CONCURRENT_SESSIONS: int = 6
    SESSION_CLEANUP_INTERVAL_SECONDS: int = 300
    SESSION_BACKEND: str = "memory"
    BLACKLIST_BACKEND: str = "memory"

    # Password policy
    PASSWORD_MIN_LENGTH: int = 8
    PASSWORD_MAX_LENGTH: int = 128
    PASSWORD_REQUIRE_UPPERCASE: bool = True
    PASSWORD_REQUIRE_LOWERCASE: bool = True
    PASSWORD_REQUIRE_DIGIT: bool = True
    PASSWORD_REQUIRE_SPECIAL: bool = True
    PASSWORD_SPECIAL_CHARS: str = "@$!%*?&#"
    PASSWORD_RESET_TOKEN_EXPIRE_HOURS: int = 2
    PASSWORD_EXPIRE_DAYS: int = 90
    BCRYPT_ROUNDS: int = 12

    # MFA is stubbed: enabling it only makes login ask for a code
    MFA_ENABLED: bool = False

    # Database settings
    DATABASE_URL: Optional[str] = Field(default=None, validate_default=True)
    DATABASE_ECHO: bool = False
    DATABASE_TIMEOUT_SECONDS: float = 5.0

    # Redis settings (shared blacklist and session store)
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_SOCKET_TIMEOUT_SECONDS: float = 2.0

    # Logging settings
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": True,
        "extra": "ignore",
    }

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> List[str]:
        """Parse CORS_ORIGINS from a comma separated string."""
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",") if i.strip()]
        return v

    @field_validator("JWT_SECRET_KEY")
    @classmethod
    def check_secret_length(cls, v: str) -> str:
        """Refuse to start with a signing key shorter than 256 bits."""
        if len(v.encode("utf-8")) < MIN_JWT_SECRET_BYTES:
            raise ValueError(
                f"JWT_SECRET_KEY must be at least {MIN_JWT_SECRET_BYTES} bytes (256 bits)"
            )
        return v

    @field_validator(
        "JWT_ACCESS_TOKEN_EXPIRE_MINUTES",
        "REFRESH_TOKEN_EXPIRE_DAYS",
        "MAX_LOGIN_ATTEMPTS",
        "LOCKOUT_DURATION_MINUTES",
        "RATE_LIMIT_WINDOW_SECONDS",
        "RATE_LIMIT_MAX_ATTEMPTS_PER_IP",
        "SESSION_TIMEOUT_MINUTES",
        "MAX_CONCURRENT_SESSIONS",
    )
    @classmethod
    def check_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be a positive integer")
        return v

    @field_validator("SESSION_BACKEND", "BLACKLIST_BACKEND")
    @classmethod
    def check_backend(cls, v: str) -> str:
        v = v.lower()
        if v not in ("memory", "redis"):
            raise ValueError("backend must be 'memory' or 'redis'")
        return v

    @field_validator("DATABASE_URL", mode="before")
    @classmethod
    def assemble_db_url(cls, v: Optional[str]) -> str:
        """Default to a SQLite database in the project root."""
        if isinstance(v, str) and v:
            return v
        base_dir = os.path.dirname(os.path.dirname(os.path.dirname(__file__)))
        return f"sqlite:///{os.path.join(base_dir, 'checkin_auth.db')}"


# Create a global settings instance
settings = Settings()


# PUBLIC_INTERFACE
def get_settings() -> Settings:
    """
    Get the application settings.

    Returns:
        Settings: The application settings instance.
    """
    return settings
