"""
Tests for `services/notifications.py`.
"""

from __future__ import annotations

import logging
from unittest.mock import MagicMock

from domain.renewal_attempt import FailureReason
from domain.renewal_event import RenewalEvent, RenewalOutcome
from services import notifications
from services.notifications import LoggingNotifier, SmtpNotifier
from fakes import NOW


def _event(reason=None, email="owner@example.com") -> RenewalEvent:
    return RenewalEvent(
        domain_ref="example.com",
        outcome=RenewalOutcome.FAILURE if reason else RenewalOutcome.SUCCESS,
        entitlement_id="dom-1",
        occurred_at=NOW,
        reason=reason,
        account_email=email,
    )


def _notifier(**kwargs) -> SmtpNotifier:
    return SmtpNotifier("smtp.example.com", 587, "renewals@example.com", support_address="support@example.com", **kwargs)


def test_declined_email_goes_to_customer_only() -> None:
    message = _notifier().build_message(_event(FailureReason.PAYMENT_DECLINED.value))

    assert message["To"] == "owner@example.com"
    assert "update your payment method" in message.get_content()


def test_registrar_failure_copies_support() -> None:
    message = _notifier().build_message(_event(FailureReason.REGISTRAR_EXTEND_FAILED.value))

    assert message["To"] == "owner@example.com, support@example.com"
    assert "support team has been notified" in message.get_content()


def test_no_recipient_means_no_message() -> None:
    assert _notifier().build_message(_event(email=None)) is None


def test_notify_sends_through_smtp(monkeypatch) -> None:
    smtp_class = MagicMock()
    monkeypatch.setattr(notifications.smtplib, "SMTP", smtp_class)

    _notifier(username="user", password="pass").notify(_event())

    smtp_class.assert_called_once_with("smtp.example.com", 587, timeout=30.0)
    smtp = smtp_class.return_value.__enter__.return_value
    smtp.starttls.assert_called_once()
    smtp.login.assert_called_once_with("user", "pass")
    sent = smtp.send_message.call_args.args[0]
    assert sent["Subject"] == "example.com has been renewed"


def test_notify_without_recipient_skips_smtp(monkeypatch) -> None:
    smtp_class = MagicMock()
    monkeypatch.setattr(notifications.smtplib, "SMTP", smtp_class)

    _notifier().notify(_event(email=None))

    smtp_class.assert_not_called()


def test_logging_notifier_logs_failures_as_warnings(caplog) -> None:
    with caplog.at_level(logging.INFO, logger="services.notifications"):
        LoggingNotifier().notify(_event(FailureReason.PAYMENT_DECLINED.value))
        LoggingNotifier().notify(_event())

    levels = [r.levelno for r in caplog.records]
    assert levels == [logging.WARNING, logging.INFO]
