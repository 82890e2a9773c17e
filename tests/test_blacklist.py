"""
Tests for the access token blacklist backends.
"""
from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from checkin_auth.blacklist import (InMemoryTokenBlacklist, RedisTokenBlacklist,
                                    build_blacklist, token_fingerprint)
from checkin_auth.errors import StoreUnavailableError


def test_revoked_token_stays_revoked_until_expiry(blacklist, clock):
    """Test that an entry lives exactly as long as the token it revokes."""
    expires_at = clock() + timedelta(minutes=30)

    blacklist.revoke("token-a", expires_at)

    assert blacklist.is_revoked("token-a") is True
    assert blacklist.is_revoked("token-b") is False

    clock.advance(minutes=29)
    assert blacklist.is_revoked("token-a") is True

    clock.advance(minutes=1)
    assert blacklist.is_revoked("token-a") is False
    assert len(blacklist) == 0


def test_revoking_expired_token_is_noop(blacklist, clock):
    """Test that a token past its expiry is not stored."""
    blacklist.revoke("token-a", clock() - timedelta(seconds=1))

    assert len(blacklist) == 0
    assert blacklist.is_revoked("token-a") is False


def test_purge_expired(blacklist, clock):
    """Test bulk removal of expired entries."""
    blacklist.revoke("short", clock() + timedelta(minutes=5))
    blacklist.revoke("long", clock() + timedelta(minutes=50))
    clock.advance(minutes=10)

    assert blacklist.purge_expired() == 1
    assert len(blacklist) == 1
    assert blacklist.is_revoked("long") is True


def test_fingerprint_hides_token():
    digest = token_fingerprint("secret-token")
    assert "secret-token" not in digest
    assert len(digest) == 64


def test_redis_revoke_sets_key_with_ttl(clock):
    """Test that Redis entries expire with the token."""
    client = MagicMock()
    redis_blacklist = RedisTokenBlacklist(client, clock=clock)

    redis_blacklist.revoke("token-a", clock() + timedelta(seconds=90))

    client.set.assert_called_once_with(
        f"auth:blacklist:{token_fingerprint('token-a')}", "revoked", px=90000
    )


def test_redis_revoke_skips_expired_token(clock):
    client = MagicMock()
    redis_blacklist = RedisTokenBlacklist(client, clock=clock)

    redis_blacklist.revoke("token-a", clock())

    client.set.assert_not_called()


def test_redis_is_revoked(clock):
    client = MagicMock()
    client.exists.return_value = 1
    redis_blacklist = RedisTokenBlacklist(client, clock=clock)

    assert redis_blacklist.is_revoked("token-a") is True
    client.exists.assert_called_once_with(f"auth:blacklist:{token_fingerprint('token-a')}")


def test_redis_write_failure_raises(clock):
    """Test that a failed write surfaces as an unavailable store."""
    client = MagicMock()
    client.set.side_effect = RedisConnectionError("connection refused")
    redis_blacklist = RedisTokenBlacklist(client, clock=clock)

    with pytest.raises(StoreUnavailableError):
        redis_blacklist.revoke("token-a", clock() + timedelta(minutes=5))


def test_redis_read_failure_fails_closed(clock):
    """Test that an unreachable blacklist treats every token as revoked."""
    client = MagicMock()
    client.exists.side_effect = RedisConnectionError("connection refused")
    redis_blacklist = RedisTokenBlacklist(client, clock=clock)

    assert redis_blacklist.is_revoked("token-a") is True


def test_build_blacklist_memory(clock):
    assert isinstance(build_blacklist("memory", clock=clock), InMemoryTokenBlacklist)
