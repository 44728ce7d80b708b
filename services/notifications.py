"""
Renewal notifiers.

- LoggingNotifier: writes every event to the log (default when SMTP is not configured).
- SmtpNotifier: emails the account holder, and copies support on captured-but-unfulfilled
  renewals so they can be reconciled.
"""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from typing import Optional

from domain.renewal_attempt import FailureReason
from domain.renewal_event import RenewalEvent

logger = logging.getLogger(__name__)


class LoggingNotifier:
    def notify(self, event: RenewalEvent) -> None:
        if event.is_failure:
            logger.warning(
                "Renewal notification: domain=%s outcome=%s reason=%s attempt=%s",
                event.domain_ref,
                event.outcome.value,
                event.reason,
                event.attempt_id,
            )
        else:
            logger.info(
                "Renewal notification: domain=%s outcome=%s new_expiration=%s attempt=%s",
                event.domain_ref,
                event.outcome.value,
                event.new_expires_at.isoformat() if event.new_expires_at else None,
                event.attempt_id,
            )


class SmtpNotifier:
    def __init__(
        self,
        host: str,
        port: int,
        sender: str,
        *,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = True,
        support_address: Optional[str] = None,
        timeout: float = 30.0,
    ) -> None:
        self._host = host
        self._port = port
        self._sender = sender
        self._username = username
        self._password = password
        self._use_tls = use_tls
        self._support_address = support_address
        self._timeout = timeout

    def build_message(self, event: RenewalEvent) -> Optional[EmailMessage]:
        """The email for this event, or None when there is nobody to send it to."""

        recipients = []
        if event.account_email:
            recipients.append(event.account_email)
        if (
            self._support_address
            and event.reason == FailureReason.REGISTRAR_EXTEND_FAILED.value
        ):
            recipients.append(self._support_address)
        if not recipients:
            return None

        message = EmailMessage()
        message["From"] = self._sender
        message["To"] = ", ".join(recipients)
        message["Subject"] = event.subject
        message.set_content(event.customer_message())
        return message

    def notify(self, event: RenewalEvent) -> None:
        message = self.build_message(event)
        if message is None:
            logger.warning("No recipient for renewal notification of %s", event.domain_ref)
            return

        with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as smtp:
            if self._use_tls:
                smtp.starttls()
            if self._username and self._password:
                smtp.login(self._username, self._password)
            smtp.send_message(message)

        logger.info("Sent renewal %s email for %s", event.outcome.value, event.domain_ref)


__all__ = [
    "LoggingNotifier",
    "SmtpNotifier",
]
