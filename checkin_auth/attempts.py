"""
Login attempt ledger, account lockout and per-IP rate limiting.

Every login attempt is appended to the ledger. The ledger answers windowed
count queries for the IP rate limit; per-account lockout is tracked on the
credential itself by LockoutPolicy:

    OPEN --(failures reach max_attempts)--> LOCKED(until) --(until passes)--> OPEN

A successful login always returns the account to OPEN with a zero counter.
"""
import logging
import math
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from checkin_auth.database import Database, utcnow
from checkin_auth.errors import RateLimitError
from checkin_auth.models import LoginAttempt, UserCredential
from checkin_auth.security import normalize_email

logger = logging.getLogger(__name__)

# Failure reasons stored on LoginAttempt rows
REASON_UNKNOWN_USER = "unknown_user"
REASON_BAD_PASSWORD = "bad_password"
REASON_LOCKED = "account_locked"
REASON_DISABLED = "account_disabled"
REASON_BAD_MFA = "bad_mfa_code"


class LoginAttemptLedger:
    """
    Append-only log of login attempts.

    Window queries rely on the database's own concurrency control.
    """

    def __init__(self, db: Database, clock: Callable[[], datetime] = utcnow):
        """
        Initialize the ledger.

        Args:
            db: Database providing sessions.
            clock: Returns the current naive UTC time.
        """
        self.db = db
        self.clock = clock

    # PUBLIC_INTERFACE
    def record(
        self,
        email: str,
        ip_address: str,
        user_agent: Optional[str],
        success: bool,
        failure_reason: Optional[str] = None,
    ) -> Optional[LoginAttempt]:
        """
        Append a login attempt.

        A failed write is logged and swallowed so that an audit problem never
        blocks a login.

        Args:
            email: Email the attempt was made for.
            ip_address: Client IP address.
            user_agent: Client user agent, if known.
            success: Whether the attempt succeeded.
            failure_reason: Short machine-readable reason for failures.

        Returns:
            The stored LoginAttempt, or None if the write failed.
        """
        attempt = LoginAttempt(
            email=normalize_email(email),
            ip_address=ip_address or "unknown",
            user_agent=user_agent,
            success=success,
            failure_reason=None if success else failure_reason,
            attempted_at=self.clock(),
        )
        try:
            with self.db.session_scope() as session:
                session.add(attempt)
            return attempt
        except SQLAlchemyError as e:
            logger.error(f"Failed to record login attempt: {e}")
            return None

    # PUBLIC_INTERFACE
    def count_recent_by_ip(self, ip_address: str, window: timedelta) -> int:
        """
        Count attempts from an IP address inside a sliding window.

        Args:
            ip_address: Client IP address.
            window: How far back to look.

        Returns:
            Number of attempts, successful or not.
        """
        since = self.clock() - window
        with self.db.session_scope() as session:
            return session.query(func.count(LoginAttempt.id)).filter(
                LoginAttempt.ip_address == ip_address,
                LoginAttempt.attempted_at > since,
            ).scalar() or 0

    # PUBLIC_INTERFACE
    def oldest_recent_by_ip(self, ip_address: str, window: timedelta) -> Optional[datetime]:
        """
        Time of the oldest attempt from an IP address inside the window.

        Args:
            ip_address: Client IP address.
            window: How far back to look.

        Returns:
            Timestamp of the oldest attempt, or None.
        """
        since = self.clock() - window
        with self.db.session_scope() as session:
            return session.query(func.min(LoginAttempt.attempted_at)).filter(
                LoginAttempt.ip_address == ip_address,
                LoginAttempt.attempted_at > since,
            ).scalar()


class LockoutPolicy:
    """Per-account lockout state machine driven by consecutive failures."""

    def __init__(
        self,
        max_attempts: int,
        lockout_duration: timedelta,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.max_attempts = max_attempts
        self.lockout_duration = lockout_duration
        self.clock = clock

    def is_locked(self, credential: UserCredential) -> bool:
        """Check if the account is currently LOCKED."""
        return credential.locked_until is not None and credential.locked_until > self.clock()

    def minutes_remaining(self, credential: UserCredential) -> int:
        """Whole minutes until the lock lifts, rounded up; 0 when not locked."""
        if not self.is_locked(credential):
            return 0
        seconds = (credential.locked_until - self.clock()).total_seconds()
        return max(1, math.ceil(seconds / 60))

    # PUBLIC_INTERFACE
    def register_failure(self, credential: UserCredential) -> bool:
        """
        Count a failed password check against the account.

        A lock that has already run out is cleared first, so the account
        starts a fresh series of attempts.

        Args:
            credential: The credential to mutate; the caller saves it.

        Returns:
            True if this failure moved the account from OPEN to LOCKED.
        """
        now = self.clock()
        if credential.locked_until is not None and credential.locked_until <= now:
            credential.locked_until = None
            credential.failed_login_attempts = 0

        credential.failed_login_attempts = (credential.failed_login_attempts or 0) + 1
        if credential.failed_login_attempts >= self.max_attempts:
            credential.locked_until = now + self.lockout_duration
            logger.warning(
                f"Account locked after {credential.failed_login_attempts} failed attempts: "
                f"{credential.email}"
            )
            return True
        return False

    # PUBLIC_INTERFACE
    def register_success(self, credential: UserCredential) -> None:
        """
        Return the account to OPEN with a zero failure counter.

        Args:
            credential: The credential to mutate; the caller saves it.
        """
        credential.failed_login_attempts = 0
        credential.locked_until = None


class IpRateLimit:
    """Sliding-window cap on login attempts from a single IP address."""

    def __init__(self, ledger: LoginAttemptLedger, max_attempts: int, window: timedelta):
        self.ledger = ledger
        self.max_attempts = max_attempts
        self.window = window

    # PUBLIC_INTERFACE
    def check(self, ip_address: str) -> None:
        """
        Reject the attempt if the IP has used up its window.

        Args:
            ip_address: Client IP address.

        Raises:
            RateLimitError: If max_attempts attempts were already made within
                the window.
        """
        recent = self.ledger.count_recent_by_ip(ip_address, self.window)
        if recent < self.max_attempts:
            return

        oldest = self.ledger.oldest_recent_by_ip(ip_address, self.window)
        retry_after = int(self.window.total_seconds())
        if oldest is not None:
            retry_after = max(1, math.ceil((oldest + self.window - self.ledger.clock()).total_seconds()))
        logger.warning(f"Login rate limit hit for IP {ip_address}: {recent} attempts")
        raise RateLimitError(retry_after)
