"""
Active session tracking with a per-user concurrency limit.

A session is created at login and lives until logout, eviction, password
change or its fixed expiry (login_time + timeout). Sessions are volatile: the
in-memory store is only correct within one process, the Redis store shares
them across instances.
"""
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timedelta
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional

from redis import Redis
from redis.exceptions import RedisError

from checkin_auth.blacklist import TokenBlacklist
from checkin_auth.database import utcnow
from checkin_auth.errors import ConcurrentSessionLimitError, StoreUnavailableError

logger = logging.getLogger(__name__)

SESSION_PREFIX = "auth:session:"
USER_SESSIONS_PREFIX = "auth:user_sessions:"

_DATETIME_FIELDS = ("login_time", "last_activity", "expires_at", "token_expires_at")


@dataclass(frozen=True)
class Session:
    """One logged-in client of one user."""
    session_id: str
    user_email: str
    user_id: int
    access_token: str
    ip_address: Optional[str]
    user_agent: Optional[str]
    login_time: datetime
    last_activity: datetime
    expires_at: datetime
    token_expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    def to_mapping(self) -> Dict[str, str]:
        """Flat string mapping for hash storage."""
        data = asdict(self)
        for name in _DATETIME_FIELDS:
            data[name] = data[name].isoformat()
        data["user_id"] = str(self.user_id)
        return {key: "" if value is None else value for key, value in data.items()}

    @classmethod
    def from_mapping(cls, data: Dict[str, str]) -> "Session":
        values = dict(data)
        for name in _DATETIME_FIELDS:
            values[name] = datetime.fromisoformat(values[name])
        values["user_id"] = int(values["user_id"])
        values["ip_address"] = values.get("ip_address") or None
        values["user_agent"] = values.get("user_agent") or None
        return cls(**values)


# PUBLIC_INTERFACE
def new_session_id() -> str:
    """Random session identifier."""
    return str(uuid.uuid4())


class SessionStore(ABC):
    """Storage for Session records indexed by ID and by user email."""

    @abstractmethod
    def put(self, session: Session) -> None:
        """Insert or replace a session."""

    @abstractmethod
    def get(self, session_id: str) -> Optional[Session]:
        """Return a session by ID, or None."""

    @abstractmethod
    def delete(self, session_id: str) -> Optional[Session]:
        """Remove a session and return it, or None if absent."""

    @abstractmethod
    def for_user(self, email: str) -> List[Session]:
        """All stored sessions of a user, expired ones included."""

    @abstractmethod
    def all(self) -> List[Session]:
        """Every stored session."""


class InMemorySessionStore(SessionStore):
    """
    Process-local session store.

    Writers build new dictionaries under a lock and swap them in; readers use
    whatever dictionaries are current without locking.
    """

    def __init__(self):
        self._sessions: Dict[str, Session] = {}
        self._by_user: Dict[str, FrozenSet[str]] = {}
        self._lock = threading.Lock()

    def put(self, session: Session) -> None:
        with self._lock:
            sessions = dict(self._sessions)
            by_user = dict(self._by_user)
            sessions[session.session_id] = session
            by_user[session.user_email] = by_user.get(session.user_email, frozenset()) | {
                session.session_id
            }
            self._sessions, self._by_user = sessions, by_user

    def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def delete(self, session_id: str) -> Optional[Session]:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            sessions = dict(self._sessions)
            by_user = dict(self._by_user)
            del sessions[session_id]
            remaining = by_user.get(session.user_email, frozenset()) - {session_id}
            if remaining:
                by_user[session.user_email] = remaining
            else:
                by_user.pop(session.user_email, None)
            self._sessions, self._by_user = sessions, by_user
            return session

    def for_user(self, email: str) -> List[Session]:
        sessions = self._sessions
        ids = self._by_user.get(email, frozenset())
        return [sessions[sid] for sid in ids if sid in sessions]

    def all(self) -> List[Session]:
        return list(self._sessions.values())


class RedisSessionStore(SessionStore):
    """
    Session store shared through Redis.

    Each session is a hash under auth:session:<id> that Redis expires with the
    session; auth:user_sessions:<email> is a set of the user's session IDs.
    Stale IDs left in the set are dropped when the set is read.
    """

    def __init__(self, client: Redis, clock: Callable[[], datetime] = utcnow):
        self.client = client
        self.clock = clock

    @classmethod
    def from_url(
        cls,
        redis_url: str,
        socket_timeout: float = 2.0,
        clock: Callable[[], datetime] = utcnow,
    ) -> "RedisSessionStore":
        """Connect with bounded socket timeouts."""
        client = Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        return cls(client, clock=clock)

    def _ttl_seconds(self, expires_at: datetime) -> int:
        # Redis rejects zero or negative expiries
        return max(1, int((expires_at - self.clock()).total_seconds()))

    def put(self, session: Session) -> None:
        key = f"{SESSION_PREFIX}{session.session_id}"
        user_key = f"{USER_SESSIONS_PREFIX}{session.user_email}"
        ttl = self._ttl_seconds(session.expires_at)
        try:
            index_ttl = self.client.ttl(user_key)
            pipe = self.client.pipeline()
            pipe.hset(key, mapping=session.to_mapping())
            pipe.expire(key, ttl)
            pipe.sadd(user_key, session.session_id)
            # the user index must outlive the longest-lived session
            if index_ttl < ttl:
                pipe.expire(user_key, ttl)
            pipe.execute()
        except RedisError as e:
            logger.error(f"Failed to store session in Redis: {e}")
            raise StoreUnavailableError("Session store unavailable")

    def get(self, session_id: str) -> Optional[Session]:
        try:
            data = self.client.hgetall(f"{SESSION_PREFIX}{session_id}")
        except RedisError as e:
            logger.error(f"Failed to read session from Redis: {e}")
            raise StoreUnavailableError("Session store unavailable")
        return Session.from_mapping(data) if data else None

    def delete(self, session_id: str) -> Optional[Session]:
        session = self.get(session_id)
        if session is None:
            return None
        try:
            pipe = self.client.pipeline()
            pipe.delete(f"{SESSION_PREFIX}{session_id}")
            pipe.srem(f"{USER_SESSIONS_PREFIX}{session.user_email}", session_id)
            pipe.execute()
        except RedisError as e:
            logger.error(f"Failed to delete session from Redis: {e}")
            raise StoreUnavailableError("Session store unavailable")
        return session

    def _load_many(self, session_ids: Iterable[str]) -> List[Optional[Session]]:
        session_ids = list(session_ids)
        pipe = self.client.pipeline()
        for session_id in session_ids:
            pipe.hgetall(f"{SESSION_PREFIX}{session_id}")
        return [Session.from_mapping(data) if data else None for data in pipe.execute()]

    def for_user(self, email: str) -> List[Session]:
        user_key = f"{USER_SESSIONS_PREFIX}{email}"
        try:
            session_ids = sorted(self.client.smembers(user_key))
            loaded = self._load_many(session_ids)
            stale = [sid for sid, session in zip(session_ids, loaded) if session is None]
            if stale:
                self.client.srem(user_key, *stale)
        except RedisError as e:
            logger.error(f"Failed to list sessions from Redis: {e}")
            raise StoreUnavailableError("Session store unavailable")
        return [session for session in loaded if session is not None]

    def all(self) -> List[Session]:
        try:
            session_ids = [
                key[len(SESSION_PREFIX):]
                for key in self.client.scan_iter(match=f"{SESSION_PREFIX}*")
            ]
            loaded = self._load_many(session_ids)
        except RedisError as e:
            logger.error(f"Failed to scan sessions in Redis: {e}")
            raise StoreUnavailableError("Session store unavailable")
        return [session for session in loaded if session is not None]


class SessionRegistry:
    """
    Session policy: concurrency limit, eviction and expiry.

    Mutations go through a registry-wide lock so a limit check and the insert
    that follows it cannot interleave with another login in this process.
    """

    def __init__(
        self,
        store: SessionStore,
        blacklist: TokenBlacklist,
        max_sessions: int,
        timeout: timedelta,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize the registry.

        Args:
            store: Where sessions are kept.
            blacklist: Receives the access tokens of evicted sessions.
            max_sessions: Maximum live sessions per user.
            timeout: Session lifetime from login.
            clock: Returns the current naive UTC time.
        """
        self.store = store
        self.blacklist = blacklist
        self.max_sessions = max_sessions
        self.timeout = timeout
        self.clock = clock
        self._lock = threading.RLock()

    def _revoke(self, session: Session) -> None:
        self.blacklist.revoke(session.access_token, session.token_expires_at)

    # PUBLIC_INTERFACE
    def register(
        self,
        email: str,
        user_id: int,
        access_token: str,
        token_expires_at: datetime,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        force_login: bool = False,
        session_id: Optional[str] = None,
        on_evict: Optional[Callable[[Session], None]] = None,
    ) -> Session:
        """
        Create a session, enforcing the per-user limit.

        Args:
            email: Owner's email.
            user_id: Owner's credential ID.
            access_token: Access token bound to the session.
            token_expires_at: Expiry of that access token.
            ip_address: Client IP address.
            user_agent: Client user agent.
            force_login: Evict the oldest sessions instead of failing when the
                user is at the limit.
            session_id: Pre-generated ID, used when it is already embedded in
                the access token.
            on_evict: Called with each session ended by a forced login.

        Returns:
            The new Session.

        Raises:
            ConcurrentSessionLimitError: If the user is at the limit and
                force_login is False.
        """
        now = self.clock()
        with self._lock:
            live = self.sessions_for_user(email)
            if len(live) >= self.max_sessions:
                if not force_login:
                    logger.info(f"Concurrent session limit reached for {email}")
                    raise ConcurrentSessionLimitError(self.max_sessions)
                live.sort(key=lambda s: s.login_time)
                while len(live) >= self.max_sessions:
                    oldest = live.pop(0)
                    self.store.delete(oldest.session_id)
                    self._revoke(oldest)
                    logger.info(f"Evicted session {oldest.session_id} of {email} for forced login")
                    if on_evict is not None:
                        on_evict(oldest)

            session = Session(
                session_id=session_id or new_session_id(),
                user_email=email,
                user_id=user_id,
                access_token=access_token,
                ip_address=ip_address,
                user_agent=user_agent,
                login_time=now,
                last_activity=now,
                expires_at=now + self.timeout,
                token_expires_at=token_expires_at,
            )
            self.store.put(session)

        logger.info(f"Registered session {session.session_id} for {email}")
        return session

    # PUBLIC_INTERFACE
    def get(self, session_id: str) -> Optional[Session]:
        """Return a live session by ID; expired sessions are dropped."""
        if not session_id:
            return None
        session = self.store.get(session_id)
        if session is not None and session.is_expired(self.clock()):
            self.store.delete(session_id)
            return None
        return session

    # PUBLIC_INTERFACE
    def touch(
        self,
        session_id: str,
        access_token: Optional[str] = None,
        token_expires_at: Optional[datetime] = None,
    ) -> Optional[Session]:
        """
        Record activity on a session and optionally bind a new access token.

        The session's expiry does not move.

        Args:
            session_id: Session to update.
            access_token: New access token for the session.
            token_expires_at: Expiry of the new access token.

        Returns:
            The updated Session, or None if it no longer exists.
        """
        with self._lock:
            session = self.get(session_id)
            if session is None:
                return None
            changes = {"last_activity": self.clock()}
            if access_token is not None:
                changes["access_token"] = access_token
                changes["token_expires_at"] = token_expires_at or session.token_expires_at
            session = replace(session, **changes)
            self.store.put(session)
            return session

    # PUBLIC_INTERFACE
    def remove(self, session_id: str, revoke_token: bool = False) -> Optional[Session]:
        """
        Remove a session.

        Args:
            session_id: Session to remove.
            revoke_token: Also blacklist the session's access token.

        Returns:
            The removed Session, or None if it did not exist.
        """
        with self._lock:
            session = self.store.delete(session_id)
        if session is not None:
            if revoke_token:
                self._revoke(session)
            logger.info(f"Removed session {session_id} of {session.user_email}")
        return session

    # PUBLIC_INTERFACE
    def remove_all_for_user(self, email: str, revoke_tokens: bool = True) -> int:
        """
        Remove every session of a user.

        Args:
            email: Owner's email.
            revoke_tokens: Also blacklist the sessions' access tokens.

        Returns:
            Number of sessions removed.
        """
        removed = 0
        with self._lock:
            for session in self.store.for_user(email):
                if self.store.delete(session.session_id) is None:
                    continue
                removed += 1
                if revoke_tokens and not session.is_expired(self.clock()):
                    self._revoke(session)
        if removed:
            logger.info(f"Removed {removed} sessions of {email}")
        return removed

    # PUBLIC_INTERFACE
    def sessions_for_user(self, email: str) -> List[Session]:
        """Live sessions of a user, expired ones are dropped on the way."""
        now = self.clock()
        live = []
        for session in self.store.for_user(email):
            if session.is_expired(now):
                self.store.delete(session.session_id)
            else:
                live.append(session)
        return live

    # PUBLIC_INTERFACE
    def purge_expired(self) -> int:
        """
        Delete every expired session.

        Returns:
            Number of sessions deleted.
        """
        now = self.clock()
        purged = 0
        with self._lock:
            for session in self.store.all():
                if session.is_expired(now) and self.store.delete(session.session_id) is not None:
                    purged += 1
        if purged:
            logger.info(f"Purged {purged} expired sessions")
        return purged


class SessionJanitor:
    """Daemon thread that runs cleanup tasks at a fixed interval."""

    def __init__(self, tasks: List[Callable[[], int]], interval_seconds: float):
        self.tasks = tasks
        self.interval_seconds = interval_seconds
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            logger.warning("Session janitor already running")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._worker, name="session-janitor", daemon=True
        )
        self._thread.start()
        logger.info(f"Session janitor started (interval: {self.interval_seconds} seconds)")

    def stop(self, timeout: float = 5.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def run_once(self) -> int:
        """Run every task once, returning the total number of items cleaned."""
        total = 0
        for task in self.tasks:
            try:
                total += task() or 0
            except Exception as e:
                logger.error(f"Cleanup task {getattr(task, '__name__', task)} failed: {e}", exc_info=True)
        return total

    def _worker(self) -> None:
        while not self._stop_event.wait(self.interval_seconds):
            self.run_once()


# PUBLIC_INTERFACE
def build_session_store(
    backend: str,
    redis_url: Optional[str] = None,
    socket_timeout: float = 2.0,
    clock: Callable[[], datetime] = utcnow,
) -> SessionStore:
    """
    Create the configured session store backend.

    Args:
        backend: "memory" or "redis".
        redis_url: Redis connection URL, required for the redis backend.
        socket_timeout: Redis socket timeout in seconds.
        clock: Returns the current naive UTC time.

    Returns:
        A SessionStore implementation.
    """
    if backend == "redis":
        return RedisSessionStore.from_url(redis_url, socket_timeout=socket_timeout, clock=clock)
    return InMemorySessionStore()
