"""
Delivery of confirmation links and password reset codes.

No mail transport is configured; the default sender writes the messages to
the log so links and codes can be picked up during development.
"""
import logging

from .models import User

logger = logging.getLogger(__name__)


class EmailSender:
    """Interface for sending identity emails."""

    def send_confirmation_link(self, user: User, email: str, confirmation_link: str) -> None:
        raise NotImplementedError

    def send_password_reset_code(self, user: User, email: str, reset_code: str) -> None:
        raise NotImplementedError


class LoggingEmailSender(EmailSender):

    def send_confirmation_link(self, user: User, email: str, confirmation_link: str) -> None:
        logger.info("[DEV] Confirmation link for %s (user_id=%s): %s", email, user.id, confirmation_link)

    def send_password_reset_code(self, user: User, email: str, reset_code: str) -> None:
        logger.info("[DEV] Password reset code for %s (user_id=%s): %s", email, user.id, reset_code)


_default_sender = LoggingEmailSender()


def get_email_sender() -> EmailSender:
    return _default_sender
