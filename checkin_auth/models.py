"""
SQLAlchemy models for the check-in authentication service.

This module defines the persisted data: user credentials, the append-only
login attempt ledger, and opaque refresh tokens. Active sessions are not
persisted.
"""
import enum
from datetime import datetime
from typing import List, Optional

from sqlalchemy import (JSON, Boolean, Column, DateTime, ForeignKey, Integer,
                        String, Text)
from sqlalchemy.orm import relationship

from checkin_auth.database import Base, utcnow


class UserRole(enum.Enum):
    """User role enumeration."""
    USER = "user"
    ADMIN = "admin"


class UserCredential(Base):
    """
    Credential record for one user of the case backend.

    Holds the password hash together with the lockout and password lifecycle
    state that login and password operations mutate.
    """
    __tablename__ = "user_credentials"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(150), unique=True, index=True, nullable=False)
    name = Column(String(150), nullable=True)
    hashed_password = Column(String(100), nullable=False)
    roles = Column(JSON, nullable=False, default=lambda: [UserRole.USER.value])
    is_active = Column(Boolean, default=True, nullable=False)
    mfa_enabled = Column(Boolean, default=False, nullable=False)

    # Lockout state
    failed_login_attempts = Column(Integer, default=0, nullable=False)
    locked_until = Column(DateTime, nullable=True)

    # Password lifecycle
    password_reset_token = Column(String(255), unique=True, index=True, nullable=True)
    password_reset_expires_at = Column(DateTime, nullable=True)
    password_expires_at = Column(DateTime, nullable=True)
    password_changed_at = Column(DateTime, nullable=True)
    must_change_password = Column(Boolean, default=False, nullable=False)

    last_login_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    refresh_tokens = relationship(
        "RefreshToken", back_populates="user", cascade="all, delete-orphan"
    )

    @property
    def role_list(self) -> List[str]:
        """Roles as a plain list of strings."""
        return list(self.roles or [])

    @property
    def is_admin(self) -> bool:
        """Check if the user has admin role."""
        return UserRole.ADMIN.value in self.role_list

    def password_expired(self, now: datetime) -> bool:
        """Check whether the password has passed its expiry date."""
        return self.password_expires_at is not None and self.password_expires_at <= now

    def __repr__(self) -> str:
        """String representation of the UserCredential object."""
        return f"<UserCredential(id={self.id}, email={self.email}, active={self.is_active})>"


class LoginAttempt(Base):
    """
    One login attempt, successful or not.

    Rows are written once and never updated; they back the per-IP rate limit
    and the audit trail.
    """
    __tablename__ = "login_attempts"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(150), nullable=False, index=True)
    ip_address = Column(String(45), nullable=False, index=True)  # IPv6 can be up to 45 chars
    user_agent = Column(Text, nullable=True)
    success = Column(Boolean, nullable=False)
    failure_reason = Column(String(255), nullable=True)
    attempted_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    def __repr__(self) -> str:
        """String representation of the LoginAttempt object."""
        return (
            f"<LoginAttempt(id={self.id}, email={self.email}, ip={self.ip_address}, "
            f"success={self.success})>"
        )


class RefreshToken(Base):
    """
    Opaque refresh token exchanged for new access tokens.

    The only mutation after creation is revocation.
    """
    __tablename__ = "refresh_tokens"

    id = Column(Integer, primary_key=True, index=True)
    token = Column(String(128), unique=True, index=True, nullable=False)
    user_id = Column(
        Integer, ForeignKey("user_credentials.id", ondelete="CASCADE"), nullable=False, index=True
    )
    session_id = Column(String(64), nullable=True, index=True)
    expires_at = Column(DateTime, nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(Text, nullable=True)
    revoked = Column(Boolean, default=False, nullable=False)
    revoked_at = Column(DateTime, nullable=True)
    revoked_reason = Column(String(255), nullable=True)

    # Relationships
    user = relationship("UserCredential", back_populates="refresh_tokens")

    def is_expired(self, now: datetime) -> bool:
        """Check if the token has passed its expiry."""
        return self.expires_at <= now

    def __repr__(self) -> str:
        """String representation of the RefreshToken object."""
        return f"<RefreshToken(id={self.id}, user_id={self.user_id}, revoked={self.revoked})>"


# PUBLIC_INTERFACE
def new_credential(
    email: str,
    hashed_password: str,
    roles: Optional[List[str]] = None,
    name: Optional[str] = None,
    is_active: bool = True,
    mfa_enabled: bool = False,
) -> UserCredential:
    """
    Build an unsaved credential with normalised email and default lifecycle state.

    Args:
        email: Login email.
        hashed_password: Password hash produced by PasswordManager.
        roles: Role names, defaults to ["user"].
        name: Optional display name.
        is_active: Whether the account may log in.
        mfa_enabled: Whether the account asks for a second factor.

    Returns:
        A transient UserCredential.
    """
    return UserCredential(
        email=email.strip().lower(),
        name=name,
        hashed_password=hashed_password,
        roles=roles or [UserRole.USER.value],
        is_active=is_active,
        mfa_enabled=mfa_enabled,
        failed_login_attempts=0,
        must_change_password=False,
    )
