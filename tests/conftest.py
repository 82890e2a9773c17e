"""
Test fixtures for the check-in authentication service.

This module provides pytest fixtures for the database, a controllable clock,
a fully wired coordinator, recording notification/audit sinks, test users and
a FastAPI test client.
"""
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from checkin_auth.auth import AuthCoordinator
from checkin_auth.blacklist import InMemoryTokenBlacklist
from checkin_auth.config import Settings
from checkin_auth.credentials import SqlAlchemyCredentialStore
from checkin_auth.database import Database
from checkin_auth.models import UserRole, new_credential
from checkin_auth.notifications import AuditSink, NotificationSink
from checkin_auth.security import PasswordManager, PasswordValidator
from checkin_auth.sessions import InMemorySessionStore
from main import create_app

TEST_SECRET = "test-secret-key-that-is-long-enough-for-hs256"
TEST_PASSWORD = "Str0ng!Pass"
OTHER_PASSWORD = "An0ther$Pass"
TEST_EMAIL = "officer@court.org"


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime = datetime(2026, 3, 2, 9, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class RecordingNotificationSink(NotificationSink):
    """Keeps sent messages in memory."""

    def __init__(self):
        self.messages: List[Tuple[str, str, str]] = []

    def send(self, recipient: str, subject: str, body: str) -> None:
        self.messages.append((recipient, subject, body))

    def to(self, recipient: str) -> List[Tuple[str, str, str]]:
        return [m for m in self.messages if m[0] == recipient]


class RecordingAuditSink(AuditSink):
    """Keeps audit events in memory."""

    def __init__(self):
        self.events: List[Tuple[str, Optional[str], Optional[str], str]] = []

    def record(self, event_type, subject_email, ip_address, outcome) -> None:
        self.events.append((event_type, subject_email, ip_address, outcome))

    def types(self) -> List[str]:
        return [event[0] for event in self.events]


@pytest.fixture
def clock():
    """A frozen clock shared by every component of a test."""
    return FrozenClock()


@pytest.fixture
def app_settings():
    """Settings with a fixed key, cheap hashing and a small session limit."""
    return Settings(
        JWT_SECRET_KEY=TEST_SECRET,
        JWT_ACCESS_TOKEN_EXPIRE_MINUTES=60,
        MAX_LOGIN_ATTEMPTS=5,
        LOCKOUT_DURATION_MINUTES=30,
        RATE_LIMIT_WINDOW_SECONDS=60,
        RATE_LIMIT_MAX_ATTEMPTS_PER_IP=10,
        MAX_CONCURRENT_SESSIONS=3,
        SESSION_TIMEOUT_MINUTES=60,
        SESSION_BACKEND="memory",
        BLACKLIST_BACKEND="memory",
        BCRYPT_ROUNDS=4,
        MFA_ENABLED=False,
        DATABASE_URL="sqlite:///:memory:",
    )


@pytest.fixture
def db_engine():
    """Create an in-memory database engine shared across threads."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    db = Database(engine=engine)
    db.create_all()
    yield engine
    db.drop_all()
    engine.dispose()


@pytest.fixture
def db(db_engine):
    """Database wrapper around the test engine."""
    return Database(engine=db_engine)


@pytest.fixture
def passwords():
    """Password manager with the minimum bcrypt cost."""
    return PasswordManager(validator=PasswordValidator(), rounds=4)


@pytest.fixture
def blacklist(clock):
    return InMemoryTokenBlacklist(clock=clock)


@pytest.fixture
def session_store():
    return InMemorySessionStore()


@pytest.fixture
def notifications():
    return RecordingNotificationSink()


@pytest.fixture
def audit():
    return RecordingAuditSink()


@pytest.fixture
def coordinator(db, app_settings, clock, blacklist, session_store, notifications, audit, passwords):
    """A coordinator wired to in-memory stores and the frozen clock."""
    return AuthCoordinator.from_settings(
        db,
        app_settings,
        clock=clock,
        blacklist=blacklist,
        session_store=session_store,
        notifier=notifications,
        audit=audit,
        passwords=passwords,
    )


@pytest.fixture
def credentials(db):
    return SqlAlchemyCredentialStore(db)


@pytest.fixture
def make_user(credentials, passwords):
    """Factory that stores a credential and returns it."""

    def _make(email=TEST_EMAIL, password=TEST_PASSWORD, roles=None, **fields):
        credential = new_credential(
            email,
            passwords.hash_password(password, validate=False),
            roles=roles,
            name=fields.pop("name", "Test Officer"),
        )
        for key, value in fields.items():
            setattr(credential, key, value)
        return credentials.save(credential)

    return _make


@pytest.fixture
def test_user(make_user):
    """Create a regular test user."""
    return make_user()


@pytest.fixture
def admin_user(make_user):
    """Create an admin test user."""
    return make_user(
        email="admin@court.org",
        roles=[UserRole.USER.value, UserRole.ADMIN.value],
        name="Test Admin",
    )


@pytest.fixture
def logged_in(coordinator, test_user):
    """A successful login of the test user."""
    return coordinator.login(TEST_EMAIL, TEST_PASSWORD, ip_address="10.0.0.1", user_agent="pytest")


@pytest.fixture
def client(coordinator):
    """Create a FastAPI test client bound to the test coordinator."""
    app = create_app(coordinator)
    return TestClient(app)


def auth_headers(token: str) -> dict:
    """Authorization header for a bearer token."""
    return {"Authorization": f"Bearer {token}"}
