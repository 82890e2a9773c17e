"""
Exception taxonomy for the check-in authentication service.

Every error raised across the service boundary derives from AuthError and
carries the HTTP status code the API layer maps it to. Messages are safe to
show to clients: none of them reveal which credential field was wrong.
"""
from typing import List, Optional

GENERIC_LOGIN_FAILURE = "Invalid email or password"


class AuthError(Exception):
    """Base exception for authentication-related errors."""
    status_code: int = 400

    def __init__(self, message: str = "", status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class AuthenticationError(AuthError):
    """Bad credentials or disabled account."""
    status_code = 401

    def __init__(self, message: str = GENERIC_LOGIN_FAILURE):
        super().__init__(message)


class AccountLockedError(AuthError):
    """Exception raised when an account is locked due to too many failed attempts."""
    status_code = 423

    def __init__(self, minutes_remaining: int):
        self.minutes_remaining = minutes_remaining
        super().__init__(
            f"Account locked. Try again in {minutes_remaining} minutes."
        )


class InvalidTokenError(AuthError):
    """Malformed, expired or revoked access, refresh or reset token."""
    status_code = 401


class TokenDecodeError(InvalidTokenError):
    """Exception raised when token claims cannot be extracted."""
    pass


class ValidationError(AuthError):
    """Password policy violation or mismatched confirmation."""
    status_code = 400

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__(" ".join(self.errors))


class RateLimitError(AuthError):
    """Exception raised when too many login attempts come from one IP address."""
    status_code = 429

    def __init__(self, retry_after_seconds: int):
        self.retry_after_seconds = retry_after_seconds
        super().__init__("Too many login attempts. Please wait before trying again.")


class ConcurrentSessionLimitError(AuthError):
    """Exception raised when a login would exceed the concurrent session limit."""
    status_code = 409

    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(
            f"Maximum of {limit} concurrent sessions reached. "
            f"Log in with force_login to end the oldest session."
        )


class AuthorizationError(AuthError):
    """Authenticated caller lacks permission for the operation."""
    status_code = 403


class StoreUnavailableError(AuthError):
    """A backing store did not answer within its timeout."""
    status_code = 503


class ConfigurationError(Exception):
    """Fatal misconfiguration detected at startup."""
    pass


__all__ = [
    "GENERIC_LOGIN_FAILURE",
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
]
