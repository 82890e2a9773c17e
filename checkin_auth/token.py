"""
JWT access token management for the check-in authentication service.

This module provides signed access token generation, validation and claim
extraction. Tokens are stateless; revocation is delegated to a TokenBlacklist.
"""
import logging
import uuid
from calendar import timegm
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

import jwt
from jwt.exceptions import PyJWTError

from checkin_auth.blacklist import TokenBlacklist
from checkin_auth.config import (CLAIM_ROLES, CLAIM_SESSION_ID, CLAIM_USER_ID, Settings,
                                 get_access_token_ttl, get_jwt_settings)
from checkin_auth.config.jwt_config import REQUIRED_CLAIMS
from checkin_auth.config.settings import MIN_JWT_SECRET_BYTES
from checkin_auth.database import utcnow
from checkin_auth.errors import ConfigurationError, InvalidTokenError, TokenDecodeError

# Configure logger
logger = logging.getLogger(__name__)


def _to_timestamp(value: datetime) -> int:
    """Convert a naive UTC datetime to a POSIX timestamp."""
    return timegm(value.utctimetuple())


def _from_timestamp(value: Any) -> datetime:
    """Convert a POSIX timestamp claim back to a naive UTC datetime."""
    return datetime(1970, 1, 1) + timedelta(seconds=int(value))


@dataclass(frozen=True)
class TokenClaims:
    """Claims extracted from a verified access token."""
    subject: str
    issued_at: datetime
    expires_at: datetime
    issuer: str
    user_id: Optional[int] = None
    session_id: Optional[str] = None
    roles: List[str] = field(default_factory=list)
    token_id: Optional[str] = None


class TokenIssuer:
    """
    Creates and validates signed access tokens.

    The issuer holds no per-token state. Expiry is checked against the
    injected clock rather than wall time.
    """

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        issuer: str = "checkin-auth",
        access_token_ttl: Optional[timedelta] = None,
        blacklist: Optional[TokenBlacklist] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize the token issuer.

        Args:
            secret_key: HMAC signing key, at least 256 bits.
            algorithm: JWT signing algorithm.
            issuer: Value of the iss claim.
            access_token_ttl: Default token lifetime.
            blacklist: Revocation store consulted by validate().
            clock: Returns the current naive UTC time.

        Raises:
            ConfigurationError: If the signing key is too short.
        """
        if not secret_key or len(secret_key.encode("utf-8")) < MIN_JWT_SECRET_BYTES:
            raise ConfigurationError(
                f"JWT signing key must be at least {MIN_JWT_SECRET_BYTES} bytes (256 bits)"
            )
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.issuer = issuer
        self.access_token_ttl = access_token_ttl or get_access_token_ttl()
        self.blacklist = blacklist
        self.clock = clock

    @classmethod
    def from_settings(
        cls,
        app_settings: Optional[Settings] = None,
        blacklist: Optional[TokenBlacklist] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> "TokenIssuer":
        """Build an issuer from the JWT settings, the global ones by default."""
        jwt_settings = get_jwt_settings(app_settings)
        return cls(
            secret_key=jwt_settings["secret_key"],
            algorithm=jwt_settings["algorithm"],
            issuer=jwt_settings["issuer"],
            access_token_ttl=timedelta(minutes=jwt_settings["access_token_expire_minutes"]),
            blacklist=blacklist,
            clock=clock,
        )

    @property
    def expires_in(self) -> int:
        """Default access token lifetime in seconds."""
        return int(self.access_token_ttl.total_seconds())

    # PUBLIC_INTERFACE
    def issue(
        self,
        user_id: int,
        email: str,
        roles: List[str],
        session_id: str,
        ttl: Optional[timedelta] = None,
    ) -> str:
        """
        Create a new signed access token.

        Args:
            user_id: Credential ID of the user.
            email: Email, stored as the subject claim.
            roles: Role names granted to the user.
            session_id: Session the token belongs to.
            ttl: Token lifetime, defaults to the configured access token TTL.

        Returns:
            JWT access token string.
        """
        issued_at = _to_timestamp(self.clock())
        lifetime = ttl if ttl is not None else self.access_token_ttl

        payload: Dict[str, Any] = {
            "sub": email,
            "iat": issued_at,
            "exp": issued_at + int(lifetime.total_seconds()),
            "iss": self.issuer,
            "jti": str(uuid.uuid4()),
            CLAIM_USER_ID: user_id,
            CLAIM_ROLES: list(roles),
            CLAIM_SESSION_ID: session_id,
        }

        token = jwt.encode(payload, self.secret_key, algorithm=self.algorithm)
        logger.debug(f"Issued access token for {email}, session {session_id}")
        return token

    # PUBLIC_INTERFACE
    def decode_claims(self, token: str, verify_exp: bool = True) -> TokenClaims:
        """
        Verify a token's signature and issuer and extract its claims.

        Args:
            token: JWT token string.
            verify_exp: Whether an expired token is rejected.

        Returns:
            TokenClaims for the token.

        Raises:
            TokenDecodeError: If the token is malformed, forged, from another
                issuer, missing required claims, or expired.
        """
        if not token:
            raise TokenDecodeError("Token cannot be empty")

        try:
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                issuer=self.issuer,
                options={
                    # expiry is checked below against the injected clock
                    "verify_exp": False,
                    "verify_iat": False,
                    "require": REQUIRED_CLAIMS,
                },
            )
        except PyJWTError as e:
            raise TokenDecodeError(f"Invalid token: {e}")

        try:
            expires_at = _from_timestamp(payload["exp"])
            issued_at = _from_timestamp(payload["iat"])
            user_id = payload.get(CLAIM_USER_ID)
            claims = TokenClaims(
                subject=str(payload["sub"]),
                issued_at=issued_at,
                expires_at=expires_at,
                issuer=payload["iss"],
                user_id=int(user_id) if user_id is not None else None,
                session_id=payload.get(CLAIM_SESSION_ID),
                roles=[str(role) for role in payload.get(CLAIM_ROLES) or []],
                token_id=payload.get("jti"),
            )
        except (TypeError, ValueError, OverflowError) as e:
            raise TokenDecodeError(f"Invalid token claims: {e}")

        if verify_exp and expires_at <= self.clock():
            raise TokenDecodeError("Token has expired")

        return claims

    # PUBLIC_INTERFACE
    def verify(self, token: str) -> TokenClaims:
        """
        Check that a token is not revoked and extract its claims.

        Args:
            token: JWT token string.

        Returns:
            TokenClaims for the token.

        Raises:
            InvalidTokenError: If the token is blacklisted, malformed, forged
                or expired.
        """
        if self.blacklist is not None and self.blacklist.is_revoked(token):
            logger.info("Rejected blacklisted access token")
            raise InvalidTokenError("Token has been revoked")
        return self.decode_claims(token)

    # PUBLIC_INTERFACE
    def validate(self, token: str) -> bool:
        """
        Check whether a token is currently acceptable.

        A token is rejected if it is blacklisted, malformed, signed with
        another key, or expired. This method never raises.

        Args:
            token: JWT token string.

        Returns:
            True if the token is valid, False otherwise.
        """
        try:
            self.verify(token)
            return True
        except InvalidTokenError as e:
            logger.debug(f"Token validation failed: {e.message}")
            return False
        except Exception as e:
            logger.error(f"Unexpected error during token validation: {e}", exc_info=True)
            return False
