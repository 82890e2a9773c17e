"""
Authentication coordinator for the check-in authentication service.

This module ties credentials, the login attempt ledger, token issuance,
refresh token rotation and the session registry together into the operations
the API exposes: login, logout, refresh, token validation, the password
lifecycle and session administration.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Union

from checkin_auth.attempts import (REASON_BAD_MFA, REASON_BAD_PASSWORD, REASON_DISABLED,
                                   REASON_LOCKED, REASON_UNKNOWN_USER, IpRateLimit,
                                   LockoutPolicy, LoginAttemptLedger)
from checkin_auth.blacklist import TokenBlacklist, build_blacklist
from checkin_auth.config import TOKEN_TYPE_BEARER, Settings, get_settings
from checkin_auth.credentials import CredentialStore, SqlAlchemyCredentialStore
from checkin_auth.database import Database, utcnow
from checkin_auth.errors import (GENERIC_LOGIN_FAILURE, AccountLockedError, AuthenticationError,
                                 AuthorizationError, InvalidTokenError, StoreUnavailableError,
                                 ValidationError)
from checkin_auth.models import UserCredential
from checkin_auth.notifications import (EVENT_ACCOUNT_LOCKED, EVENT_LOGIN, EVENT_LOGOUT,
                                        EVENT_PASSWORD_CHANGE, EVENT_PASSWORD_RESET,
                                        EVENT_PASSWORD_RESET_REQUEST,
                                        EVENT_SESSION_INVALIDATED, EVENT_TOKEN_REFRESH,
                                        OUTCOME_DISABLED, OUTCOME_FAILURE, OUTCOME_LOCKED,
                                        OUTCOME_SUCCESS, AuditSink, LoggingAuditSink,
                                        LoggingNotificationSink, MfaVerifier,
                                        NotificationSink, QueuedNotificationSink,
                                        UnavailableMfaVerifier, lockout_message,
                                        password_changed_message, password_reset_message)
from checkin_auth.refresh import (REVOKED_ADMIN, REVOKED_EVICTED, REVOKED_LOGOUT,
                                  REVOKED_PASSWORD_CHANGE, REVOKED_PASSWORD_RESET,
                                  REVOKED_SESSION_ENDED, RefreshTokenStore)
from checkin_auth.security import PasswordManager, generate_secure_token, normalize_email
from checkin_auth.sessions import (Session, SessionRegistry, SessionStore, build_session_store,
                                   new_session_id)
from checkin_auth.token import TokenIssuer

# Configure logging
logger = logging.getLogger(__name__)

RESET_TOKEN_BYTES = 32


@dataclass(frozen=True)
class UserSummary:
    """Public view of a user returned with a successful login."""
    id: int
    email: str
    name: Optional[str]
    roles: List[str]

    @classmethod
    def from_credential(cls, credential: UserCredential) -> "UserSummary":
        return cls(
            id=credential.id,
            email=credential.email,
            name=credential.name,
            roles=credential.role_list,
        )


@dataclass(frozen=True)
class LoginSuccess:
    """Tokens and session for a completed login."""
    access_token: str
    refresh_token: str
    expires_in: int
    session_id: str
    user: UserSummary
    requires_password_change: bool = False
    token_type: str = TOKEN_TYPE_BEARER

    @property
    def roles(self) -> List[str]:
        return self.user.roles


@dataclass(frozen=True)
class MfaRequired:
    """Password accepted; the caller must repeat the login with an MFA code."""
    email: str
    requires_mfa: bool = True


@dataclass(frozen=True)
class LoginLocked:
    """The account is locked."""
    minutes_remaining: int


@dataclass(frozen=True)
class LoginFailed:
    """The login was rejected; message is safe to show to the client."""
    reason: str
    message: str = GENERIC_LOGIN_FAILURE


LoginOutcome = Union[LoginSuccess, MfaRequired, LoginLocked, LoginFailed]


@dataclass(frozen=True)
class RefreshResult:
    """New access token, and the refresh token the client should keep."""
    access_token: str
    refresh_token: str
    expires_in: int
    session_id: str
    rotated: bool
    token_type: str = TOKEN_TYPE_BEARER


@dataclass(frozen=True)
class TokenValidation:
    """Result of validate_token."""
    valid: bool
    email: Optional[str] = None
    expires_at: Optional[datetime] = None
    roles: List[str] = field(default_factory=list)
    session_id: Optional[str] = None
    message: Optional[str] = None


class AuthCoordinator:
    """
    Orchestrates every authentication operation.

    The coordinator holds no state of its own; all of it lives in the
    injected stores, so one instance serves every request thread.
    """

    def __init__(
        self,
        credentials: CredentialStore,
        ledger: LoginAttemptLedger,
        lockout: LockoutPolicy,
        rate_limit: IpRateLimit,
        issuer: TokenIssuer,
        blacklist: TokenBlacklist,
        refresh_tokens: RefreshTokenStore,
        sessions: SessionRegistry,
        passwords: PasswordManager,
        notifier: NotificationSink,
        audit: AuditSink,
        mfa: MfaVerifier,
        mfa_enabled: bool = False,
        refresh_rotate_after: Optional[timedelta] = timedelta(hours=24),
        reset_token_ttl: timedelta = timedelta(hours=2),
        password_ttl: Optional[timedelta] = timedelta(days=90),
        clock: Callable[[], datetime] = utcnow,
    ):
        self.credentials = credentials
        self.ledger = ledger
        self.lockout = lockout
        self.rate_limit = rate_limit
        self.issuer = issuer
        self.blacklist = blacklist
        self.refresh_tokens = refresh_tokens
        self.sessions = sessions
        self.passwords = passwords
        self.notifier = notifier
        self.audit = audit
        self.mfa = mfa
        self.mfa_enabled = mfa_enabled
        self.refresh_rotate_after = refresh_rotate_after
        self.reset_token_ttl = reset_token_ttl
        self.password_ttl = password_ttl
        self.clock = clock

    @classmethod
    def from_settings(
        cls,
        db: Database,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
        blacklist: Optional[TokenBlacklist] = None,
        session_store: Optional[SessionStore] = None,
        notifier: Optional[NotificationSink] = None,
        audit: Optional[AuditSink] = None,
        mfa: Optional[MfaVerifier] = None,
        passwords: Optional[PasswordManager] = None,
    ) -> "AuthCoordinator":
        """
        Wire a coordinator from configuration.

        Args:
            db: Database holding credentials, attempts and refresh tokens.
            settings: Configuration, defaults to the global settings.
            clock: Returns the current naive UTC time.
            blacklist: Overrides the configured blacklist backend.
            session_store: Overrides the configured session store backend.
            notifier: Overrides the queued logging notification sink.
            audit: Overrides the logging audit sink.
            mfa: Overrides the placeholder MFA verifier.
            passwords: Overrides the bcrypt password manager.

        Returns:
            A ready AuthCoordinator.
        """
        settings = settings or get_settings()
        if blacklist is None:
            blacklist = build_blacklist(
                settings.BLACKLIST_BACKEND,
                redis_url=settings.REDIS_URL,
                socket_timeout=settings.REDIS_SOCKET_TIMEOUT_SECONDS,
                clock=clock,
            )
        if session_store is None:
            session_store = build_session_store(
                settings.SESSION_BACKEND,
                redis_url=settings.REDIS_URL,
                socket_timeout=settings.REDIS_SOCKET_TIMEOUT_SECONDS,
                clock=clock,
            )

        ledger = LoginAttemptLedger(db, clock=clock)
        issuer = TokenIssuer.from_settings(settings, blacklist=blacklist, clock=clock)
        return cls(
            credentials=SqlAlchemyCredentialStore(db),
            ledger=ledger,
            lockout=LockoutPolicy(
                max_attempts=settings.MAX_LOGIN_ATTEMPTS,
                lockout_duration=timedelta(minutes=settings.LOCKOUT_DURATION_MINUTES),
                clock=clock,
            ),
            rate_limit=IpRateLimit(
                ledger,
                max_attempts=settings.RATE_LIMIT_MAX_ATTEMPTS_PER_IP,
                window=timedelta(seconds=settings.RATE_LIMIT_WINDOW_SECONDS),
            ),
            issuer=issuer,
            blacklist=blacklist,
            refresh_tokens=RefreshTokenStore(
                db, expires_in=timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS), clock=clock
            ),
            sessions=SessionRegistry(
                session_store,
                blacklist,
                max_sessions=settings.MAX_CONCURRENT_SESSIONS,
                timeout=timedelta(minutes=settings.SESSION_TIMEOUT_MINUTES),
                clock=clock,
            ),
            passwords=passwords or PasswordManager(rounds=settings.BCRYPT_ROUNDS),
            notifier=notifier or QueuedNotificationSink(LoggingNotificationSink()),
            audit=audit or LoggingAuditSink(),
            mfa=mfa or UnavailableMfaVerifier(),
            mfa_enabled=settings.MFA_ENABLED,
            refresh_rotate_after=timedelta(hours=settings.REFRESH_TOKEN_ROTATE_AFTER_HOURS),
            reset_token_ttl=timedelta(hours=settings.PASSWORD_RESET_TOKEN_EXPIRE_HOURS),
            password_ttl=timedelta(days=settings.PASSWORD_EXPIRE_DAYS),
            clock=clock,
        )

    # Side effects that must never fail an operation

    def _audit(self, event_type: str, email: Optional[str], ip_address: Optional[str], outcome: str) -> None:
        try:
            self.audit.record(event_type, email, ip_address, outcome)
        except Exception as e:
            logger.error(f"Failed to record audit event {event_type}: {e}")

    def _notify(self, recipient: str, subject: str, body: str) -> None:
        try:
            self.notifier.send(recipient, subject, body)
        except Exception as e:
            logger.error(f"Failed to send notification to {recipient}: {e}")

    def _mint(self, credential: UserCredential, session_id: str):
        """Issue an access token and return it with its expiry."""
        token = self.issuer.issue(credential.id, credential.email, credential.role_list, session_id)
        return token, self.issuer.decode_claims(token).expires_at

    def _end_evicted(self, session: Session) -> None:
        """Revoke the refresh tokens of a session ended by a forced login."""
        self.refresh_tokens.revoke_for_session(session.session_id, REVOKED_EVICTED)

    def _register_failure(
        self,
        credential: UserCredential,
        ip_address: str,
        user_agent: Optional[str],
        reason: str,
    ) -> LoginFailed:
        locked_now = self.lockout.register_failure(credential)
        self.credentials.save(credential)
        self.ledger.record(credential.email, ip_address, user_agent, False, reason)
        self._audit(EVENT_LOGIN, credential.email, ip_address, OUTCOME_FAILURE)
        if locked_now:
            self._audit(EVENT_ACCOUNT_LOCKED, credential.email, ip_address, OUTCOME_LOCKED)
            minutes = int(self.lockout.lockout_duration.total_seconds() // 60)
            self._notify(credential.email, *lockout_message(minutes))
        return LoginFailed(reason)

    # PUBLIC_INTERFACE
    def attempt_login(
        self,
        email: str,
        password: str,
        mfa_code: Optional[str] = None,
        force_login: bool = False,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> LoginOutcome:
        """
        Run a login attempt and describe its outcome.

        Credential problems come back as LoginLocked or LoginFailed values;
        problems unrelated to the credentials are raised.

        Args:
            email: Login email.
            password: Plain text password.
            mfa_code: Second factor code, if the client has one.
            force_login: End the oldest session when the user is at the
                concurrent session limit.
            ip_address: Client IP address.
            user_agent: Client user agent.

        Returns:
            LoginSuccess, MfaRequired, LoginLocked or LoginFailed.

        Raises:
            RateLimitError: If the client IP made too many attempts recently.
            ConcurrentSessionLimitError: If the user is at the session limit
                and force_login is False.
            StoreUnavailableError: If a backing store cannot be reached.
        """
        email = normalize_email(email)
        ip_address = ip_address or "unknown"

        self.rate_limit.check(ip_address)

        credential = self.credentials.find_by_email(email)
        if credential is None:
            # hash anyway so response time does not reveal unknown emails
            self.passwords.burn_verification(password)
            self.ledger.record(email, ip_address, user_agent, False, REASON_UNKNOWN_USER)
            self._audit(EVENT_LOGIN, email, ip_address, OUTCOME_FAILURE)
            logger.info(f"Login failed for unknown email {email} from {ip_address}")
            return LoginFailed(REASON_UNKNOWN_USER)

        if self.lockout.is_locked(credential):
            self.ledger.record(email, ip_address, user_agent, False, REASON_LOCKED)
            self._audit(EVENT_LOGIN, email, ip_address, OUTCOME_LOCKED)
            logger.info(f"Login rejected for locked account {email}")
            return LoginLocked(self.lockout.minutes_remaining(credential))

        if not credential.is_active:
            self.passwords.burn_verification(password)
            self.ledger.record(email, ip_address, user_agent, False, REASON_DISABLED)
            self._audit(EVENT_LOGIN, email, ip_address, OUTCOME_DISABLED)
            logger.info(f"Login rejected for disabled account {email}")
            return LoginFailed(REASON_DISABLED)

        if not self.passwords.verify_password(password, credential.hashed_password):
            logger.info(f"Invalid password for {email} from {ip_address}")
            return self._register_failure(credential, ip_address, user_agent, REASON_BAD_PASSWORD)

        if self.mfa_enabled and credential.mfa_enabled:
            if not mfa_code:
                logger.info(f"MFA code required for {email}")
                return MfaRequired(email)
            if not self.mfa.verify(credential, mfa_code):
                logger.info(f"Invalid MFA code for {email} from {ip_address}")
                return self._register_failure(credential, ip_address, user_agent, REASON_BAD_MFA)

        now = self.clock()
        session_id = new_session_id()
        access_token, token_expires_at = self._mint(credential, session_id)
        session = self.sessions.register(
            email=email,
            user_id=credential.id,
            access_token=access_token,
            token_expires_at=token_expires_at,
            ip_address=ip_address,
            user_agent=user_agent,
            force_login=force_login,
            session_id=session_id,
            on_evict=self._end_evicted,
        )
        try:
            refresh_token = self.refresh_tokens.issue(
                credential.id, ip_address, user_agent, session_id=session.session_id
            )
        except StoreUnavailableError:
            self.sessions.remove(session.session_id, revoke_token=True)
            raise

        self.lockout.register_success(credential)
        credential.last_login_at = now
        if self.passwords.needs_rehash(credential.hashed_password):
            credential.hashed_password = self.passwords.hash_password(password, validate=False)
        credential = self.credentials.save(credential)

        self.ledger.record(email, ip_address, user_agent, True)
        self._audit(EVENT_LOGIN, email, ip_address, OUTCOME_SUCCESS)
        logger.info(f"User {email} logged in, session {session.session_id}")

        return LoginSuccess(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=self.issuer.expires_in,
            session_id=session.session_id,
            user=UserSummary.from_credential(credential),
            requires_password_change=(
                credential.must_change_password or credential.password_expired(now)
            ),
        )

    # PUBLIC_INTERFACE
    def login(
        self,
        email: str,
        password: str,
        mfa_code: Optional[str] = None,
        force_login: bool = False,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Union[LoginSuccess, MfaRequired]:
        """
        Authenticate a user and open a session.

        Args:
            email: Login email.
            password: Plain text password.
            mfa_code: Second factor code, if the client has one.
            force_login: End the oldest session when the user is at the
                concurrent session limit.
            ip_address: Client IP address.
            user_agent: Client user agent.

        Returns:
            LoginSuccess with tokens, or MfaRequired if a code must be supplied.

        Raises:
            AuthenticationError: If the credentials are wrong or the account
                is disabled. The message never says which.
            AccountLockedError: If the account is locked.
            RateLimitError: If the client IP made too many attempts recently.
            ConcurrentSessionLimitError: If the user is at the session limit
                and force_login is False.
        """
        outcome = self.attempt_login(
            email, password, mfa_code, force_login, ip_address, user_agent
        )
        if isinstance(outcome, LoginLocked):
            raise AccountLockedError(outcome.minutes_remaining)
        if isinstance(outcome, LoginFailed):
            raise AuthenticationError(outcome.message)
        return outcome

    # PUBLIC_INTERFACE
    def logout(self, access_token: Optional[str], ip_address: Optional[str] = None) -> bool:
        """
        End the session an access token belongs to.

        The token is blacklisted, every refresh token of its owner is revoked
        and the session is removed. Each step is attempted independently and
        failures are only logged.

        Args:
            access_token: The caller's access token, possibly expired.
            ip_address: Client IP address.

        Returns:
            Always True.
        """
        if not access_token:
            return True

        try:
            claims = self.issuer.decode_claims(access_token, verify_exp=False)
        except InvalidTokenError as e:
            logger.info(f"Logout with undecodable token: {e.message}")
            return True
        except Exception as e:
            logger.error(f"Unexpected error decoding token on logout: {e}", exc_info=True)
            return True

        try:
            self.blacklist.revoke(access_token, claims.expires_at)
        except Exception as e:
            logger.error(f"Failed to blacklist token on logout: {e}")

        user_id = claims.user_id
        try:
            if user_id is None:
                credential = self.credentials.find_by_email(claims.subject)
                user_id = credential.id if credential else None
            if user_id is not None:
                self.refresh_tokens.revoke_all_for_user(user_id, REVOKED_LOGOUT)
        except Exception as e:
            logger.error(f"Failed to revoke refresh tokens on logout: {e}")

        if claims.session_id:
            try:
                self.sessions.remove(claims.session_id)
            except Exception as e:
                logger.error(f"Failed to remove session on logout: {e}")

        self._audit(EVENT_LOGOUT, claims.subject, ip_address, OUTCOME_SUCCESS)
        logger.info(f"User {claims.subject} logged out")
        return True

    # PUBLIC_INTERFACE
    def refresh(
        self,
        refresh_token: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> RefreshResult:
        """
        Exchange a refresh token for a new access token.

        The refresh token is rotated once it is older than the rotation
        threshold. If its session is gone (expired, or lost on restart) a new
        session with the same ID is registered. Sessions ended by logout,
        eviction or invalidation cannot come back this way because their
        refresh tokens are revoked with them.

        Args:
            refresh_token: Opaque refresh token.
            ip_address: Client IP address.
            user_agent: Client user agent.

        Returns:
            RefreshResult with the new access token.

        Raises:
            InvalidTokenError: If the refresh token is unknown, expired,
                revoked, or was consumed concurrently.
            AuthenticationError: If the owner is disabled, locked or gone.
        """
        grant = self.refresh_tokens.validate_and_consume(
            refresh_token, self.refresh_rotate_after, ip_address, user_agent
        )

        credential = self.credentials.find_by_id(grant.user_id)
        if credential is None or not credential.is_active or self.lockout.is_locked(credential):
            email = credential.email if credential else None
            self._audit(EVENT_TOKEN_REFRESH, email, ip_address, OUTCOME_FAILURE)
            logger.info(f"Refresh rejected for unavailable user {grant.user_id}")
            raise AuthenticationError()

        session_id = grant.session_id or new_session_id()
        access_token, token_expires_at = self._mint(credential, session_id)
        session = self.sessions.touch(session_id, access_token, token_expires_at)
        if session is None:
            logger.info(f"Re-creating session {session_id} for {credential.email} on refresh")
            session = self.sessions.register(
                email=credential.email,
                user_id=credential.id,
                access_token=access_token,
                token_expires_at=token_expires_at,
                ip_address=ip_address,
                user_agent=user_agent,
                force_login=True,
                session_id=session_id,
                on_evict=self._end_evicted,
            )

        self._audit(EVENT_TOKEN_REFRESH, credential.email, ip_address, OUTCOME_SUCCESS)
        return RefreshResult(
            access_token=access_token,
            refresh_token=grant.token,
            expires_in=self.issuer.expires_in,
            session_id=session.session_id,
            rotated=grant.consumed,
        )

    # PUBLIC_INTERFACE
    def validate_token(self, token: Optional[str]) -> TokenValidation:
        """
        Check an access token and describe it.

        A token is valid when its signature, issuer and expiry check out, it
        is not blacklisted, it was issued after the owner's last password
        change and the owner exists and is active.

        Args:
            token: Access token string.

        Returns:
            TokenValidation; message explains a negative result.
        """
        if not token:
            return TokenValidation(valid=False, message="Token is required")

        try:
            claims = self.issuer.verify(token)
        except InvalidTokenError as e:
            return TokenValidation(valid=False, message=e.message)

        credential = self.credentials.find_by_email(claims.subject)
        if credential is None or not credential.is_active:
            return TokenValidation(valid=False, message="User not found or inactive")

        changed_at = credential.password_changed_at
        if changed_at is not None and claims.issued_at < changed_at.replace(microsecond=0):
            return TokenValidation(valid=False, message="Token issued before password change")

        return TokenValidation(
            valid=True,
            email=claims.subject,
            expires_at=claims.expires_at,
            roles=claims.roles,
            session_id=claims.session_id,
        )

    # PUBLIC_INTERFACE
    def request_password_reset(self, email: str, ip_address: Optional[str] = None) -> None:
        """
        Send a password reset code to an active user.

        Unknown or disabled emails are accepted silently so the caller cannot
        tell which addresses are registered.

        Args:
            email: Email the reset was requested for.
            ip_address: Client IP address.
        """
        email = normalize_email(email)
        credential = self.credentials.find_by_email(email)
        if credential is None or not credential.is_active:
            logger.info(f"Password reset requested for unknown or inactive email {email}")
            self._audit(EVENT_PASSWORD_RESET_REQUEST, email, ip_address, OUTCOME_FAILURE)
            return

        token = generate_secure_token(RESET_TOKEN_BYTES)
        credential.password_reset_token = token
        credential.password_reset_expires_at = self.clock() + self.reset_token_ttl
        self.credentials.save(credential)

        hours = int(self.reset_token_ttl.total_seconds() // 3600)
        self._notify(email, *password_reset_message(token, hours))
        self._audit(EVENT_PASSWORD_RESET_REQUEST, email, ip_address, OUTCOME_SUCCESS)
        logger.info(f"Password reset token issued for {email}")

    def _check_new_password(
        self,
        credential: UserCredential,
        new_password: str,
        confirmation: Optional[str],
    ) -> None:
        if confirmation is not None and confirmation != new_password:
            raise ValidationError(["Passwords do not match."])
        self.passwords.validator.validate_or_raise(new_password)
        if self.passwords.verify_password(new_password, credential.hashed_password):
            raise ValidationError(["New password must differ from the current password."])

    def _apply_new_password(self, credential: UserCredential, new_password: str, reason: str) -> UserCredential:
        """Store a new hash and end every session and refresh token of the user."""
        now = self.clock()
        credential.hashed_password = self.passwords.hash_password(new_password)
        credential.password_reset_token = None
        credential.password_reset_expires_at = None
        credential.must_change_password = False
        credential.password_changed_at = now
        credential.password_expires_at = now + self.password_ttl if self.password_ttl else None
        credential = self.credentials.save(credential)

        self.sessions.remove_all_for_user(credential.email, revoke_tokens=True)
        self.refresh_tokens.revoke_all_for_user(credential.id, reason)
        self._notify(credential.email, *password_changed_message())
        return credential

    # PUBLIC_INTERFACE
    def reset_password(
        self,
        token: str,
        new_password: str,
        confirmation: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> None:
        """
        Set a new password using a reset code.

        Args:
            token: Reset code from request_password_reset.
            new_password: The new password.
            confirmation: Repeated new password, checked when given.
            ip_address: Client IP address.

        Raises:
            InvalidTokenError: If the code is unknown or expired.
            ValidationError: If the password is weak, unchanged, or does not
                match its confirmation.
        """
        credential = self.credentials.find_by_reset_token(token)
        if credential is None:
            raise InvalidTokenError("Invalid or expired reset token")
        expires_at = credential.password_reset_expires_at
        if expires_at is None or expires_at <= self.clock():
            logger.info(f"Expired reset token presented for {credential.email}")
            raise InvalidTokenError("Invalid or expired reset token")

        self._check_new_password(credential, new_password, confirmation)
        credential = self._apply_new_password(credential, new_password, REVOKED_PASSWORD_RESET)

        self._audit(EVENT_PASSWORD_RESET, credential.email, ip_address, OUTCOME_SUCCESS)
        logger.info(f"Password reset for {credential.email}")

    # PUBLIC_INTERFACE
    def change_password(
        self,
        email: str,
        current_password: str,
        new_password: str,
        confirmation: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> None:
        """
        Change a user's password after checking the current one.

        Every session and refresh token of the user is invalidated, including
        the caller's.

        Args:
            email: Email of the authenticated user.
            current_password: The password being replaced.
            new_password: The new password.
            confirmation: Repeated new password, checked when given.
            ip_address: Client IP address.

        Raises:
            AuthenticationError: If the current password is wrong.
            ValidationError: If the password is weak, unchanged, or does not
                match its confirmation.
        """
        email = normalize_email(email)
        credential = self.credentials.find_by_email(email)
        if credential is None or not self.passwords.verify_password(
            current_password, credential.hashed_password
        ):
            self._audit(EVENT_PASSWORD_CHANGE, email, ip_address, OUTCOME_FAILURE)
            raise AuthenticationError("Current password is incorrect")

        self._check_new_password(credential, new_password, confirmation)
        self._apply_new_password(credential, new_password, REVOKED_PASSWORD_CHANGE)

        self._audit(EVENT_PASSWORD_CHANGE, email, ip_address, OUTCOME_SUCCESS)
        logger.info(f"Password changed for {email}")

    # PUBLIC_INTERFACE
    def current_session(self, access_token: str) -> Optional[Session]:
        """
        Session an access token belongs to.

        Raises:
            InvalidTokenError: If the token is invalid or revoked.
        """
        claims = self.issuer.verify(access_token)
        return self.sessions.get(claims.session_id)

    # PUBLIC_INTERFACE
    def list_sessions(self, email: str) -> List[Session]:
        """Live sessions of a user, oldest login first."""
        sessions = self.sessions.sessions_for_user(normalize_email(email))
        return sorted(sessions, key=lambda s: s.login_time)

    # PUBLIC_INTERFACE
    def invalidate_session(
        self,
        session_id: str,
        requester_email: str,
        requester_is_admin: bool = False,
        ip_address: Optional[str] = None,
    ) -> bool:
        """
        End one session and revoke its access and refresh tokens.

        Args:
            session_id: Session to end.
            requester_email: Email of the authenticated caller.
            requester_is_admin: Whether the caller may end other users' sessions.
            ip_address: Client IP address.

        Returns:
            True if a session was ended, False if it did not exist.

        Raises:
            AuthorizationError: If the session belongs to someone else and the
                caller is not an admin.
        """
        session = self.sessions.get(session_id)
        if session is None:
            return False
        if session.user_email != normalize_email(requester_email) and not requester_is_admin:
            logger.warning(f"{requester_email} tried to end session {session_id} of another user")
            raise AuthorizationError("Not allowed to end another user's session")

        self.sessions.remove(session_id, revoke_token=True)
        self.refresh_tokens.revoke_for_session(session_id, REVOKED_SESSION_ENDED)
        self._audit(EVENT_SESSION_INVALIDATED, session.user_email, ip_address, OUTCOME_SUCCESS)
        return True

    # PUBLIC_INTERFACE
    def invalidate_all_sessions(self, email: str, ip_address: Optional[str] = None) -> int:
        """
        End every session of a user and revoke their refresh tokens.

        Args:
            email: Email of the user.
            ip_address: Client IP address.

        Returns:
            Number of sessions ended.
        """
        email = normalize_email(email)
        removed = self.sessions.remove_all_for_user(email, revoke_tokens=True)
        credential = self.credentials.find_by_email(email)
        if credential is not None:
            self.refresh_tokens.revoke_all_for_user(credential.id, REVOKED_ADMIN)
        self._audit(EVENT_SESSION_INVALIDATED, email, ip_address, OUTCOME_SUCCESS)
        return removed

    def cleanup_tasks(self) -> List[Callable[[], int]]:
        """Periodic cleanup jobs for SessionJanitor."""
        tasks = [self.sessions.purge_expired, self.refresh_tokens.purge_expired]
        purge_blacklist = getattr(self.blacklist, "purge_expired", None)
        if purge_blacklist is not None:
            tasks.append(purge_blacklist)
        return tasks
