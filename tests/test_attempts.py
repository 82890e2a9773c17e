"""
Tests for the login attempt ledger, the lockout state machine and the
per-IP rate limit.
"""
from datetime import timedelta

import pytest

from checkin_auth.attempts import IpRateLimit, LockoutPolicy, LoginAttemptLedger
from checkin_auth.errors import RateLimitError
from checkin_auth.models import LoginAttempt


@pytest.fixture
def ledger(db, clock):
    return LoginAttemptLedger(db, clock=clock)


@pytest.fixture
def policy(clock):
    return LockoutPolicy(max_attempts=5, lockout_duration=timedelta(minutes=30), clock=clock)


def test_record_attempt(ledger, db, clock):
    """Test that attempts are appended with their context."""
    ledger.record("Officer@Court.org", "10.0.0.1", "pytest", False, "bad_password")

    with db.session_scope() as session:
        attempt = session.query(LoginAttempt).one()
        assert attempt.email == "officer@court.org"
        assert attempt.ip_address == "10.0.0.1"
        assert attempt.user_agent == "pytest"
        assert attempt.success is False
        assert attempt.failure_reason == "bad_password"
        assert attempt.attempted_at == clock()


def test_successful_attempt_has_no_reason(ledger):
    attempt = ledger.record("officer@court.org", "10.0.0.1", None, True, "ignored")
    assert attempt.failure_reason is None


def test_count_recent_by_ip_uses_window(ledger, clock):
    """Test that only attempts inside the window are counted."""
    ledger.record("a@court.org", "10.0.0.1", None, False)
    clock.advance(seconds=30)
    ledger.record("b@court.org", "10.0.0.1", None, True)
    ledger.record("c@court.org", "10.0.0.2", None, False)

    assert ledger.count_recent_by_ip("10.0.0.1", timedelta(seconds=60)) == 2

    clock.advance(seconds=31)
    assert ledger.count_recent_by_ip("10.0.0.1", timedelta(seconds=60)) == 1


def test_lockout_after_max_failures(policy, test_user):
    """Test the OPEN to LOCKED transition."""
    for _ in range(4):
        assert policy.register_failure(test_user) is False
    assert policy.is_locked(test_user) is False

    assert policy.register_failure(test_user) is True
    assert policy.is_locked(test_user) is True
    assert policy.minutes_remaining(test_user) == 30


def test_lock_expires(policy, test_user, clock):
    """Test the LOCKED to OPEN transition once the lock runs out."""
    for _ in range(5):
        policy.register_failure(test_user)

    clock.advance(minutes=29, seconds=30)
    assert policy.is_locked(test_user) is True
    assert policy.minutes_remaining(test_user) == 1

    clock.advance(seconds=30)
    assert policy.is_locked(test_user) is False
    assert policy.minutes_remaining(test_user) == 0


def test_failure_after_elapsed_lock_starts_fresh(policy, test_user, clock):
    """Test that an elapsed lock resets the counter before counting again."""
    for _ in range(5):
        policy.register_failure(test_user)
    clock.advance(minutes=31)

    assert policy.register_failure(test_user) is False
    assert test_user.failed_login_attempts == 1
    assert test_user.locked_until is None


def test_register_success_resets(policy, test_user):
    policy.register_failure(test_user)
    policy.register_failure(test_user)

    policy.register_success(test_user)

    assert test_user.failed_login_attempts == 0
    assert test_user.locked_until is None


def test_ip_rate_limit(ledger, clock):
    """Test that an IP is cut off once it used up its window."""
    limit = IpRateLimit(ledger, max_attempts=3, window=timedelta(seconds=60))
    for _ in range(3):
        limit.check("10.0.0.1")
        ledger.record("officer@court.org", "10.0.0.1", None, False)
        clock.advance(seconds=10)

    with pytest.raises(RateLimitError) as exc_info:
        limit.check("10.0.0.1")
    # the oldest attempt leaves the window 30 seconds from now
    assert exc_info.value.retry_after_seconds == 30

    # other addresses are unaffected
    limit.check("10.0.0.2")

    clock.advance(seconds=31)
    limit.check("10.0.0.1")
