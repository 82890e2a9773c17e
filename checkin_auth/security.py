"""
Security utilities for the check-in authentication service.

This module provides password hashing, password strength validation and
secure random token generation.
"""
import logging
import re
import secrets
from typing import List, Optional, Pattern, Tuple

from passlib.context import CryptContext

from checkin_auth.config import settings
from checkin_auth.errors import ValidationError

# Configure logging
logger = logging.getLogger(__name__)

# Security constants
MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 128
DEFAULT_SPECIAL_CHARS = "@$!%*?&#"


class PasswordValidator:
    """
    Password strength validator.

    Validates passwords against configurable strength requirements.
    """

    def __init__(
        self,
        min_length: int = MIN_PASSWORD_LENGTH,
        max_length: int = MAX_PASSWORD_LENGTH,
        require_uppercase: bool = True,
        require_lowercase: bool = True,
        require_digit: bool = True,
        require_special: bool = True,
        special_chars: str = DEFAULT_SPECIAL_CHARS,
    ):
        """
        Initialize the password validator with configurable requirements.

        Args:
            min_length: Minimum password length.
            max_length: Maximum password length.
            require_uppercase: Whether to require uppercase letters.
            require_lowercase: Whether to require lowercase letters.
            require_digit: Whether to require at least one digit.
            require_special: Whether to require at least one special character.
            special_chars: The characters that count as special.
        """
        self.min_length = min_length
        self.max_length = max_length
        self.require_uppercase = require_uppercase
        self.require_lowercase = require_lowercase
        self.require_digit = require_digit
        self.require_special = require_special
        self.special_chars = special_chars

        # Regex patterns for validation
        self.uppercase_pattern: Pattern = re.compile(r"[A-Z]")
        self.lowercase_pattern: Pattern = re.compile(r"[a-z]")
        self.digit_pattern: Pattern = re.compile(r"\d")
        self.special_pattern: Pattern = re.compile(f"[{re.escape(special_chars)}]")

    @classmethod
    def from_settings(cls) -> "PasswordValidator":
        """Build a validator from the PASSWORD_* settings."""
        return cls(
            min_length=settings.PASSWORD_MIN_LENGTH,
            max_length=settings.PASSWORD_MAX_LENGTH,
            require_uppercase=settings.PASSWORD_REQUIRE_UPPERCASE,
            require_lowercase=settings.PASSWORD_REQUIRE_LOWERCASE,
            require_digit=settings.PASSWORD_REQUIRE_DIGIT,
            require_special=settings.PASSWORD_REQUIRE_SPECIAL,
            special_chars=settings.PASSWORD_SPECIAL_CHARS,
        )

    # PUBLIC_INTERFACE
    def validate(self, password: Optional[str]) -> Tuple[bool, List[str]]:
        """
        Validate a password against the configured requirements.

        Args:
            password: Password to validate.

        Returns:
            Tuple containing:
                - Boolean indicating if the password is valid.
                - List of validation error messages (empty if valid).
        """
        password = password or ""
        errors = []

        # Check length
        if len(password) < self.min_length:
            errors.append(f"Password must be at least {self.min_length} characters long.")

        if len(password) > self.max_length:
            errors.append(f"Password must be at most {self.max_length} characters long.")

        # Check character requirements
        if self.require_uppercase and not self.uppercase_pattern.search(password):
            errors.append("Password must contain at least one uppercase letter.")

        if self.require_lowercase and not self.lowercase_pattern.search(password):
            errors.append("Password must contain at least one lowercase letter.")

        if self.require_digit and not self.digit_pattern.search(password):
            errors.append("Password must contain at least one digit.")

        if self.require_special and not self.special_pattern.search(password):
            errors.append(
                f"Password must contain at least one special character ({self.special_chars})."
            )

        return len(errors) == 0, errors

    # PUBLIC_INTERFACE
    def validate_or_raise(self, password: Optional[str]) -> None:
        """
        Validate a password and raise an exception if it's invalid.

        Args:
            password: Password to validate.

        Raises:
            ValidationError: If the password does not meet the requirements.
        """
        is_valid, errors = self.validate(password)
        if not is_valid:
            raise ValidationError(errors)


class PasswordManager:
    """
    Password management utilities.

    Provides functionality for hashing and verifying passwords with bcrypt.
    """

    def __init__(
        self,
        validator: Optional[PasswordValidator] = None,
        rounds: Optional[int] = None,
    ):
        """
        Initialize the password manager.

        Args:
            validator: Optional password validator for strength validation.
            rounds: bcrypt cost factor, defaults to BCRYPT_ROUNDS.
        """
        self.validator = validator or PasswordValidator.from_settings()
        self.context = CryptContext(
            schemes=["bcrypt"],
            deprecated="auto",
            bcrypt__rounds=rounds or settings.BCRYPT_ROUNDS,
        )
        self._dummy_hash: Optional[str] = None

    # PUBLIC_INTERFACE
    def hash_password(self, password: str, validate: bool = True) -> str:
        """
        Hash a password using bcrypt.

        Args:
            password: Plain text password to hash.
            validate: Whether to validate password strength before hashing.

        Returns:
            Hashed password string.

        Raises:
            ValidationError: If validate is True and the password is weak.
        """
        if validate:
            self.validator.validate_or_raise(password)

        return self.context.hash(password)

    # PUBLIC_INTERFACE
    def verify_password(self, plain_password: str, hashed_password: Optional[str]) -> bool:
        """
        Verify a password against a hash.

        bcrypt compares in constant time. A missing or unreadable hash
        counts as a mismatch.

        Args:
            plain_password: Plain text password to verify.
            hashed_password: Hashed password to compare against.

        Returns:
            True if the password matches the hash, False otherwise.
        """
        if not plain_password or not hashed_password:
            return False
        try:
            return self.context.verify(plain_password, hashed_password)
        except (ValueError, TypeError) as e:
            logger.warning(f"Password hash could not be verified: {e}")
            return False

    # PUBLIC_INTERFACE
    def burn_verification(self, plain_password: str) -> None:
        """
        Run a verification against a throwaway hash.

        Used when no credential exists so the response time does not reveal
        whether the email is registered.

        Args:
            plain_password: The password supplied by the caller.
        """
        if self._dummy_hash is None:
            self._dummy_hash = self.context.hash(generate_secure_token(16))
        self.verify_password(plain_password or "x", self._dummy_hash)

    # PUBLIC_INTERFACE
    def needs_rehash(self, hashed_password: str) -> bool:
        """
        Check if a password hash needs to be updated.

        This is useful when the hashing algorithm or parameters have changed.

        Args:
            hashed_password: Hashed password to check.

        Returns:
            True if the password should be rehashed, False otherwise.
        """
        return self.context.needs_update(hashed_password)


# PUBLIC_INTERFACE
def generate_secure_token(length: int = 32) -> str:
    """
    Generate a secure random URL-safe token.

    Args:
        length: Number of random bytes.

    Returns:
        Secure random token as a URL-safe string.
    """
    return secrets.token_urlsafe(length)


# PUBLIC_INTERFACE
def normalize_email(email: Optional[str]) -> str:
    """
    Normalise an email address for lookups.

    Args:
        email: Raw email as typed by the user.

    Returns:
        The stripped, lower-cased email.
    """
    return (email or "").strip().lower()
