"""
Credential storage for the check-in authentication service.

The case backend owns user records; this module only needs to load and save
the credential part of them. CredentialStore is the narrow interface the
coordinator depends on, SqlAlchemyCredentialStore the default implementation.
"""
import logging
from abc import ABC, abstractmethod
from typing import Optional

from sqlalchemy.exc import IntegrityError, OperationalError

from checkin_auth.database import Database
from checkin_auth.errors import StoreUnavailableError
from checkin_auth.models import UserCredential
from checkin_auth.security import normalize_email

logger = logging.getLogger(__name__)


class CredentialExistsError(Exception):
    """Exception raised when saving a second credential for the same email."""
    pass


class CredentialStore(ABC):
    """Loads and saves user credential records."""

    # PUBLIC_INTERFACE
    @abstractmethod
    def find_by_email(self, email: str) -> Optional[UserCredential]:
        """Return the credential for an email, or None."""

    # PUBLIC_INTERFACE
    @abstractmethod
    def find_by_id(self, user_id: int) -> Optional[UserCredential]:
        """Return the credential with the given ID, or None."""

    # PUBLIC_INTERFACE
    @abstractmethod
    def find_by_reset_token(self, token: str) -> Optional[UserCredential]:
        """Return the credential holding a password reset token, or None."""

    # PUBLIC_INTERFACE
    @abstractmethod
    def save(self, credential: UserCredential) -> UserCredential:
        """Insert or update a credential and return the stored copy."""


class SqlAlchemyCredentialStore(CredentialStore):
    """Credential store backed by the user_credentials table."""

    def __init__(self, db: Database):
        """
        Initialize the store.

        Args:
            db: Database providing sessions.
        """
        self.db = db

    def find_by_email(self, email: str) -> Optional[UserCredential]:
        email = normalize_email(email)
        if not email:
            return None
        try:
            with self.db.session_scope() as session:
                return session.query(UserCredential).filter(UserCredential.email == email).first()
        except OperationalError as e:
            logger.error(f"Credential lookup failed: {e}")
            raise StoreUnavailableError("Credential store unavailable")

    def find_by_id(self, user_id: int) -> Optional[UserCredential]:
        try:
            with self.db.session_scope() as session:
                return session.get(UserCredential, user_id)
        except OperationalError as e:
            logger.error(f"Credential lookup failed: {e}")
            raise StoreUnavailableError("Credential store unavailable")

    def find_by_reset_token(self, token: str) -> Optional[UserCredential]:
        if not token:
            return None
        try:
            with self.db.session_scope() as session:
                return session.query(UserCredential).filter(
                    UserCredential.password_reset_token == token
                ).first()
        except OperationalError as e:
            logger.error(f"Credential lookup failed: {e}")
            raise StoreUnavailableError("Credential store unavailable")

    def save(self, credential: UserCredential) -> UserCredential:
        credential.email = normalize_email(credential.email)
        try:
            with self.db.session_scope() as session:
                stored = session.merge(credential)
                session.flush()
                return stored
        except IntegrityError as e:
            logger.warning(f"Failed to save credential for {credential.email}: {e.orig}")
            raise CredentialExistsError(f"Credential already exists: {credential.email}")
        except OperationalError as e:
            logger.error(f"Credential save failed: {e}")
            raise StoreUnavailableError("Credential store unavailable")
