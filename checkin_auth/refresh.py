"""
Refresh token persistence and rotation.

Refresh tokens are opaque random strings stored in the refresh_tokens table.
Rotation consumes the presented token with a conditional UPDATE so that of two
concurrent refreshes with the same token exactly one succeeds.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy.exc import OperationalError

from checkin_auth.database import Database, utcnow
from checkin_auth.errors import InvalidTokenError, StoreUnavailableError
from checkin_auth.models import RefreshToken
from checkin_auth.security import generate_secure_token

logger = logging.getLogger(__name__)

REFRESH_TOKEN_BYTES = 48

# Reasons stored on revoked rows
REVOKED_ROTATED = "rotated"
REVOKED_LOGOUT = "logout"
REVOKED_PASSWORD_CHANGE = "password_change"
REVOKED_PASSWORD_RESET = "password_reset"
REVOKED_ADMIN = "admin"
REVOKED_EVICTED = "evicted"
REVOKED_SESSION_ENDED = "session_ended"


@dataclass(frozen=True)
class RefreshGrant:
    """
    Outcome of a successful refresh token check.

    When the presented token was consumed, token holds its replacement.
    """
    user_id: int
    token: str
    consumed: bool
    session_id: Optional[str] = None


class RefreshTokenStore:
    """Issues, consumes and revokes refresh tokens."""

    def __init__(
        self,
        db: Database,
        expires_in: timedelta,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize the store.

        Args:
            db: Database providing sessions.
            expires_in: Lifetime of newly issued tokens.
            clock: Returns the current naive UTC time.
        """
        self.db = db
        self.expires_in = expires_in
        self.clock = clock

    # PUBLIC_INTERFACE
    def issue(
        self,
        user_id: int,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> str:
        """
        Create and persist a new refresh token.

        Args:
            user_id: Owner of the token.
            ip_address: Client IP address the token was issued to.
            user_agent: Client user agent.
            session_id: Session the token was issued for.

        Returns:
            The opaque token string.

        Raises:
            StoreUnavailableError: If the database cannot be reached.
        """
        row = self._new_row(user_id, ip_address, user_agent, session_id)
        token = row.token
        try:
            with self.db.session_scope() as session:
                session.add(row)
        except OperationalError as e:
            logger.error(f"Failed to persist refresh token for user {user_id}: {e}")
            raise StoreUnavailableError("Refresh token store unavailable")

        logger.debug(f"Issued refresh token for user {user_id}")
        return token

    def _new_row(
        self,
        user_id: int,
        ip_address: Optional[str],
        user_agent: Optional[str],
        session_id: Optional[str],
    ) -> RefreshToken:
        now = self.clock()
        return RefreshToken(
            token=generate_secure_token(REFRESH_TOKEN_BYTES),
            user_id=user_id,
            created_at=now,
            expires_at=now + self.expires_in,
            ip_address=ip_address,
            user_agent=user_agent,
            session_id=session_id,
            revoked=False,
        )

    # PUBLIC_INTERFACE
    def validate_and_consume(
        self,
        token: str,
        rotate_after: Optional[timedelta] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> RefreshGrant:
        """
        Check a refresh token and consume it if rotation is due.

        Rotation is due when the token is older than rotate_after, or always
        when rotate_after is None. A consumed token is revoked atomically: the
        UPDATE only matches a row that is still unrevoked, so a concurrent
        caller presenting the same token loses. The replacement token is
        written in the same transaction, so the client never ends up holding
        a consumed token without a successor.

        Args:
            token: Refresh token presented by the client.
            rotate_after: Minimum token age before it is rotated.
            ip_address: Client IP address recorded on the replacement.
            user_agent: Client user agent recorded on the replacement.

        Returns:
            RefreshGrant naming the owner, the token to hand back and whether
            the presented token was consumed.

        Raises:
            InvalidTokenError: If the token is unknown, revoked, expired, or
                was consumed by a concurrent request.
            StoreUnavailableError: If the database cannot be reached.
        """
        if not token:
            raise InvalidTokenError("Invalid refresh token")

        now = self.clock()
        try:
            with self.db.session_scope() as session:
                row = session.query(RefreshToken).filter(RefreshToken.token == token).first()
                if row is None:
                    raise InvalidTokenError("Invalid refresh token")
                if row.revoked:
                    logger.warning(
                        f"Revoked refresh token presented for user {row.user_id} "
                        f"(reason: {row.revoked_reason})"
                    )
                    raise InvalidTokenError("Refresh token has been revoked")
                if row.is_expired(now):
                    raise InvalidTokenError("Refresh token has expired")

                user_id = row.user_id
                session_id = row.session_id
                if rotate_after is not None and now - row.created_at < rotate_after:
                    return RefreshGrant(
                        user_id=user_id, token=token, consumed=False, session_id=session_id
                    )

                updated = session.query(RefreshToken).filter(
                    RefreshToken.id == row.id,
                    RefreshToken.revoked.is_(False),
                ).update(
                    {
                        RefreshToken.revoked: True,
                        RefreshToken.revoked_at: now,
                        RefreshToken.revoked_reason: REVOKED_ROTATED,
                    },
                    synchronize_session=False,
                )
                if updated != 1:
                    logger.warning(f"Lost refresh token rotation race for user {user_id}")
                    raise InvalidTokenError("Refresh token has already been used")
                replacement = self._new_row(user_id, ip_address, user_agent, session_id)
                session.add(replacement)
                new_token = replacement.token
        except OperationalError as e:
            logger.error(f"Refresh token lookup failed: {e}")
            raise StoreUnavailableError("Refresh token store unavailable")

        logger.debug(f"Rotated refresh token for user {user_id}")
        return RefreshGrant(user_id=user_id, token=new_token, consumed=True, session_id=session_id)

    # PUBLIC_INTERFACE
    def revoke_all_for_user(self, user_id: int, reason: str) -> int:
        """
        Revoke every live refresh token of a user.

        Args:
            user_id: Owner of the tokens.
            reason: Stored as revoked_reason.

        Returns:
            Number of tokens revoked.
        """
        now = self.clock()
        with self.db.session_scope() as session:
            count = session.query(RefreshToken).filter(
                RefreshToken.user_id == user_id,
                RefreshToken.revoked.is_(False),
            ).update(
                {
                    RefreshToken.revoked: True,
                    RefreshToken.revoked_at: now,
                    RefreshToken.revoked_reason: reason,
                },
                synchronize_session=False,
            )
        if count:
            logger.info(f"Revoked {count} refresh tokens for user {user_id} ({reason})")
        return count

    # PUBLIC_INTERFACE
    def revoke_for_session(self, session_id: str, reason: str) -> int:
        """
        Revoke the live refresh tokens bound to one session.

        Args:
            session_id: Session the tokens were issued for.
            reason: Stored as revoked_reason.

        Returns:
            Number of tokens revoked.

        Raises:
            StoreUnavailableError: If the database cannot be reached.
        """
        if not session_id:
            return 0
        now = self.clock()
        try:
            with self.db.session_scope() as session:
                count = session.query(RefreshToken).filter(
                    RefreshToken.session_id == session_id,
                    RefreshToken.revoked.is_(False),
                ).update(
                    {
                        RefreshToken.revoked: True,
                        RefreshToken.revoked_at: now,
                        RefreshToken.revoked_reason: reason,
                    },
                    synchronize_session=False,
                )
        except OperationalError as e:
            logger.error(f"Failed to revoke refresh tokens of session {session_id}: {e}")
            raise StoreUnavailableError("Refresh token store unavailable")
        if count:
            logger.info(f"Revoked {count} refresh tokens of session {session_id} ({reason})")
        return count

    # PUBLIC_INTERFACE
    def active_for_user(self, user_id: int) -> List[RefreshToken]:
        """
        List a user's unrevoked, unexpired refresh tokens, newest first.

        Args:
            user_id: Owner of the tokens.

        Returns:
            List of RefreshToken rows.
        """
        now = self.clock()
        with self.db.session_scope() as session:
            return session.query(RefreshToken).filter(
                RefreshToken.user_id == user_id,
                RefreshToken.revoked.is_(False),
                RefreshToken.expires_at > now,
            ).order_by(RefreshToken.created_at.desc()).all()

    # PUBLIC_INTERFACE
    def purge_expired(self) -> int:
        """
        Delete tokens past their expiry, revoked or not.

        Returns:
            Number of rows deleted.
        """
        now = self.clock()
        with self.db.session_scope() as session:
            count = session.query(RefreshToken).filter(
                RefreshToken.expires_at <= now
            ).delete(synchronize_session=False)
        if count:
            logger.info(f"Purged {count} expired refresh tokens")
        return count
