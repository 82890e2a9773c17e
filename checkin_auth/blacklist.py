"""
Access token revocation store.

A revoked token stays in the blacklist until its natural expiry and no longer:
once expired it is rejected by signature validation anyway. Tokens are keyed
by their SHA-256 digest so the store never holds usable bearer secrets.
"""
import hashlib
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, Dict, Optional

from redis import Redis
from redis.exceptions import RedisError

from checkin_auth.database import utcnow
from checkin_auth.errors import StoreUnavailableError

logger = logging.getLogger(__name__)

BLACKLIST_PREFIX = "auth:blacklist:"


def token_fingerprint(token: str) -> str:
    """Stable, non-reversible key for a bearer token."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class TokenBlacklist(ABC):
    """Revocation store for access tokens, bounded by each token's expiry."""

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.clock = clock

    def ttl_for(self, expires_at: datetime) -> float:
        """Seconds until expires_at, never negative."""
        return max((expires_at - self.clock()).total_seconds(), 0.0)

    # PUBLIC_INTERFACE
    @abstractmethod
    def revoke(self, token: str, expires_at: datetime) -> None:
        """
        Revoke a token until its expiry.

        A token whose expiry already passed is ignored.

        Args:
            token: Access token string.
            expires_at: The token's exp claim as naive UTC datetime.
        """

    # PUBLIC_INTERFACE
    @abstractmethod
    def is_revoked(self, token: str) -> bool:
        """
        Check if a token has been revoked.

        Args:
            token: Access token string.

        Returns:
            True if the token is in the blacklist.
        """


class InMemoryTokenBlacklist(TokenBlacklist):
    """
    Process-local blacklist.

    Only correct for a single instance; use RedisTokenBlacklist when several
    instances serve the same users.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        super().__init__(clock)
        self._entries: Dict[str, datetime] = {}
        self._lock = threading.Lock()

    def revoke(self, token: str, expires_at: datetime) -> None:
        if self.ttl_for(expires_at) <= 0:
            logger.debug("Skipping blacklist entry for already expired token")
            return
        with self._lock:
            self._entries[token_fingerprint(token)] = expires_at

    def is_revoked(self, token: str) -> bool:
        key = token_fingerprint(token)
        expires_at = self._entries.get(key)
        if expires_at is None:
            return False
        if expires_at <= self.clock():
            with self._lock:
                self._entries.pop(key, None)
            return False
        return True

    # PUBLIC_INTERFACE
    def purge_expired(self) -> int:
        """
        Drop entries whose tokens have expired.

        Returns:
            Number of entries removed.
        """
        now = self.clock()
        with self._lock:
            expired = [key for key, exp in self._entries.items() if exp <= now]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug(f"Purged {len(expired)} expired blacklist entries")
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)


class RedisTokenBlacklist(TokenBlacklist):
    """
    Blacklist shared by every instance through Redis.

    Entries are written with a millisecond TTL so Redis drops them when the
    token would have expired anyway.
    """

    def __init__(
        self,
        client: Redis,
        prefix: str = BLACKLIST_PREFIX,
        clock: Callable[[], datetime] = utcnow,
    ):
        super().__init__(clock)
        self.client = client
        self.prefix = prefix

    @classmethod
    def from_url(
        cls,
        redis_url: str,
        socket_timeout: float = 2.0,
        clock: Callable[[], datetime] = utcnow,
    ) -> "RedisTokenBlacklist":
        """Connect with bounded socket timeouts."""
        client = Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        return cls(client, clock=clock)

    def _key(self, token: str) -> str:
        return f"{self.prefix}{token_fingerprint(token)}"

    def revoke(self, token: str, expires_at: datetime) -> None:
        ttl_ms = int(self.ttl_for(expires_at) * 1000)
        if ttl_ms <= 0:
            logger.debug("Skipping blacklist entry for already expired token")
            return
        try:
            self.client.set(self._key(token), "revoked", px=ttl_ms)
        except RedisError as e:
            logger.error(f"Failed to blacklist token in Redis: {e}")
            raise StoreUnavailableError("Token blacklist unavailable")

    def is_revoked(self, token: str) -> bool:
        try:
            return bool(self.client.exists(self._key(token)))
        except RedisError as e:
            # an unreachable blacklist must not let revoked tokens through
            logger.error(f"Failed to query token blacklist in Redis: {e}")
            return True


# PUBLIC_INTERFACE
def build_blacklist(
    backend: str,
    redis_url: Optional[str] = None,
    socket_timeout: float = 2.0,
    clock: Callable[[], datetime] = utcnow,
) -> TokenBlacklist:
    """
    Create the configured blacklist backend.

    Args:
        backend: "memory" or "redis".
        redis_url: Redis connection URL, required for the redis backend.
        socket_timeout: Redis socket timeout in seconds.
        clock: Returns the current naive UTC time.

    Returns:
        A TokenBlacklist implementation.
    """
    if backend == "redis":
        return RedisTokenBlacklist.from_url(redis_url, socket_timeout=socket_timeout, clock=clock)
    return InMemoryTokenBlacklist(clock=clock)
