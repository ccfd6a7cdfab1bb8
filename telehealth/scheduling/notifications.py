import logging
import threading
from enum import Enum
from typing import Any, Protocol

from telehealth.core import config

logger = logging.getLogger(__name__)

DEFAULT_PATIENT_NAME = 'A patient'


class NotificationKind(str, Enum):
    BOOKING_REQUEST = "BOOKING_REQUEST"
    BOOKING_CONFIRMED = "BOOKING_CONFIRMED"
    BOOKING_DECLINED = "BOOKING_DECLINED"
    APPOINTMENT_CANCELLED = "APPOINTMENT_CANCELLED"


class NotificationSender(Protocol):
    def send(self, recipient_user_id: str, kind: NotificationKind, payload: dict[str, Any]) -> None:
        ...


class LoggingNotificationSender:
    """Sender used when no delivery transport is configured."""

    def send(self, recipient_user_id: str, kind: NotificationKind, payload: dict[str, Any]) -> None:
        logger.info('Notification %s for user %s: %s', kind.value, recipient_user_id, payload)


class NotificationTimeout(Exception):
    pass


class NotificationDispatcher:
    """Best-effort call-through to a ``NotificationSender``.

    Called after the state change is committed. A failing or slow sender is
    logged and never propagates to the caller.
    """

    def __init__(self, sender: NotificationSender, timeout_seconds: float | None = None):
        self.sender = sender
        if timeout_seconds is None:
            timeout_seconds = config.NOTIFICATION_TIMEOUT_SECONDS
        self.timeout_seconds = timeout_seconds

    def dispatch(self, recipient_user_id: str | None, kind: NotificationKind, payload: dict[str, Any]) -> bool:
        if not recipient_user_id:
            logger.warning('Skipping %s notification without a recipient: %s', kind.value, payload)
            return False

        try:
            if self.timeout_seconds and self.timeout_seconds > 0:
                self._send_with_deadline(recipient_user_id, kind, payload)
            else:
                self.sender.send(recipient_user_id, kind, payload)
        except NotificationTimeout:
            logger.warning(
                'Timed out after %ss sending %s notification to user %s',
                self.timeout_seconds,
                kind.value,
                recipient_user_id,
            )
            return False
        except Exception:
            logger.exception('Failed to send %s notification to user %s', kind.value, recipient_user_id)
            return False

        return True

    def _send_with_deadline(self, recipient_user_id: str, kind: NotificationKind, payload: dict[str, Any]) -> None:
        # One daemon thread per send, so a hung sender cannot delay later sends.
        errors: list[Exception] = []

        def deliver() -> None:
            try:
                self.sender.send(recipient_user_id, kind, payload)
            except Exception as exc:
                errors.append(exc)

        worker = threading.Thread(target=deliver, name=f'notify-{kind.value.lower()}', daemon=True)
        worker.start()
        worker.join(self.timeout_seconds)
        if worker.is_alive():
            raise NotificationTimeout(kind.value)
        if errors:
            raise errors[0]


def format_person_name(first_name: str | None, last_name: str | None, default: str = '') -> str:
    name = f"{first_name or ''} {last_name or ''}".strip()
    return name or default


def format_therapist_name(first_name: str | None, last_name: str | None) -> str:
    name = format_person_name(first_name, last_name)
    return f"Dr. {name}" if name else 'Your therapist'
