"""
Outbound side effects of authentication: user notifications, audit events
and second-factor verification.

Notifications are fire-and-forget. QueuedNotificationSink hands messages to a
worker thread so a slow mail relay never holds up a login or password reset.
"""
import logging
import queue
import threading
from abc import ABC, abstractmethod
from typing import Optional, Tuple

from checkin_auth.models import UserCredential

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("checkin_auth.audit")

# Audit event types
EVENT_LOGIN = "LOGIN"
EVENT_LOGOUT = "LOGOUT"
EVENT_TOKEN_REFRESH = "TOKEN_REFRESH"
EVENT_PASSWORD_RESET_REQUEST = "PASSWORD_RESET_REQUEST"
EVENT_PASSWORD_RESET = "PASSWORD_RESET"
EVENT_PASSWORD_CHANGE = "PASSWORD_CHANGE"
EVENT_SESSION_INVALIDATED = "SESSION_INVALIDATED"
EVENT_ACCOUNT_LOCKED = "ACCOUNT_LOCKED"

# Audit outcomes
OUTCOME_SUCCESS = "SUCCESS"
OUTCOME_FAILURE = "FAILURE"
OUTCOME_LOCKED = "LOCKED"
OUTCOME_DISABLED = "DISABLED"


class NotificationSink(ABC):
    """Delivers plain-text messages to users."""

    # PUBLIC_INTERFACE
    @abstractmethod
    def send(self, recipient: str, subject: str, body: str) -> None:
        """
        Deliver a message.

        Args:
            recipient: Email address of the user.
            subject: Message subject.
            body: Plain-text body.
        """


class AuditSink(ABC):
    """Receives security-relevant events."""

    # PUBLIC_INTERFACE
    @abstractmethod
    def record(
        self,
        event_type: str,
        subject_email: Optional[str],
        ip_address: Optional[str],
        outcome: str,
    ) -> None:
        """
        Record an audit event.

        Args:
            event_type: One of the EVENT_* constants.
            subject_email: User the event concerns, if known.
            ip_address: Client IP address, if known.
            outcome: One of the OUTCOME_* constants.
        """


class LoggingNotificationSink(NotificationSink):
    """Writes notifications to the log instead of sending them."""

    def send(self, recipient: str, subject: str, body: str) -> None:
        logger.info(f"Notification to {recipient}: {subject}")


class LoggingAuditSink(AuditSink):
    """Writes audit events to the checkin_auth.audit logger."""

    def record(
        self,
        event_type: str,
        subject_email: Optional[str],
        ip_address: Optional[str],
        outcome: str,
    ) -> None:
        audit_logger.info(
            f"event={event_type} subject={subject_email or '-'} "
            f"ip={ip_address or '-'} outcome={outcome}"
        )


class QueuedNotificationSink(NotificationSink):
    """
    Sends notifications from a background worker thread.

    send() only enqueues. Delivery errors are logged by the worker and never
    reach the caller.
    """

    _STOP = None

    def __init__(self, delegate: NotificationSink, maxsize: int = 1000):
        """
        Initialize the queued sink.

        Args:
            delegate: Sink that performs the actual delivery.
            maxsize: Queue capacity; messages beyond it are dropped.
        """
        self.delegate = delegate
        self._queue: "queue.Queue[Optional[Tuple[str, str, str]]]" = queue.Queue(maxsize=maxsize)
        self._thread: Optional[threading.Thread] = None
        self._start_lock = threading.Lock()

    def start(self) -> None:
        """Start the worker thread if it is not running."""
        with self._start_lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self._thread = threading.Thread(
                target=self._worker, name="notification-worker", daemon=True
            )
            self._thread.start()

    def send(self, recipient: str, subject: str, body: str) -> None:
        self.start()
        try:
            self._queue.put_nowait((recipient, subject, body))
        except queue.Full:
            logger.error(f"Notification queue full, dropping message to {recipient}: {subject}")

    def join(self) -> None:
        """Block until every queued message has been handled."""
        self._queue.join()

    def stop(self, timeout: float = 5.0) -> None:
        """Let the worker drain the queue and exit."""
        if self._thread is None:
            return
        self._queue.put(self._STOP)
        self._thread.join(timeout)
        self._thread = None

    def _worker(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is self._STOP:
                    return
                recipient, subject, body = item
                self.delegate.send(recipient, subject, body)
            except Exception as e:
                logger.error(f"Failed to deliver notification: {e}", exc_info=True)
            finally:
                self._queue.task_done()


class MfaVerifier(ABC):
    """Checks a second-factor code for a user."""

    # PUBLIC_INTERFACE
    @abstractmethod
    def verify(self, credential: UserCredential, code: str) -> bool:
        """Return True if the code is valid for the user."""


class UnavailableMfaVerifier(MfaVerifier):
    """Placeholder verifier used until a real second factor is wired in; rejects every code."""

    def verify(self, credential: UserCredential, code: str) -> bool:
        logger.warning(f"MFA code rejected for {credential.email}: no verifier configured")
        return False


# Message bodies

def lockout_message(minutes: int) -> Tuple[str, str]:
    return (
        "Your account has been locked",
        "Your account was locked after too many failed login attempts. "
        f"You can try again in {minutes} minutes. If this was not you, "
        "reset your password.",
    )


def password_reset_message(token: str, expires_hours: int) -> Tuple[str, str]:
    return (
        "Password reset request",
        "Use the following code to reset your password:\n\n"
        f"{token}\n\n"
        f"The code expires in {expires_hours} hours. If you did not ask for a "
        "reset, you can ignore this message.",
    )


def password_changed_message() -> Tuple[str, str]:
    return (
        "Your password was changed",
        "Your password was changed and all of your sessions were signed out. "
        "If this was not you, contact your case officer immediately.",
    )
