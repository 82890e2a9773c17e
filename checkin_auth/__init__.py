"""
Check-in Authentication.

This package provides the authentication and session-management core of the
court check-in case backend:
- Credential verification with bcrypt password hashes
- JWT access token issuance, validation and revocation
- Refresh token rotation with single-use consumption
- Concurrent session limits and account lockout
- Password reset and change with global session invalidation
"""

__version__ = "0.1.0"

# Export config and errors first; everything else depends on them
from checkin_auth.config import Settings, get_settings, settings
from checkin_auth.errors import (
    AccountLockedError,
    AuthenticationError,
    AuthError,
    AuthorizationError,
    ConcurrentSessionLimitError,
    ConfigurationError,
    InvalidTokenError,
    RateLimitError,
    StoreUnavailableError,
    TokenDecodeError,
    ValidationError,
)

# Database and models next
from checkin_auth.database import Base, Database, init_db, utcnow
from checkin_auth.models import LoginAttempt, RefreshToken, UserCredential, UserRole, new_credential

# Coordinator last as it depends on the above modules
from checkin_auth.auth import (
    AuthCoordinator,
    LoginFailed,
    LoginLocked,
    LoginSuccess,
    MfaRequired,
    RefreshResult,
    TokenValidation,
    UserSummary,
)

__all__ = [
    # Config
    "Settings",
    "settings",
    "get_settings",

    # Errors
    "AuthError",
    "AuthenticationError",
    "AccountLockedError",
    "InvalidTokenError",
    "TokenDecodeError",
    "ValidationError",
    "RateLimitError",
    "ConcurrentSessionLimitError",
    "AuthorizationError",
    "StoreUnavailableError",
    "ConfigurationError",

    # Database and models
    "Base",
    "Database",
    "init_db",
    "utcnow",
    "UserCredential",
    "UserRole",
    "LoginAttempt",
    "RefreshToken",
    "new_credential",

    # Coordinator
    "AuthCoordinator",
    "LoginSuccess",
    "LoginFailed",
    "LoginLocked",
    "MfaRequired",
    "RefreshResult",
    "TokenValidation",
    "UserSummary",
]
