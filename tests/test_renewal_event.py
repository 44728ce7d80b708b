"""
Tests for `domain/renewal_event.py`.

The payment-failed and captured-but-unfulfilled messages must never be conflated.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from domain.renewal_attempt import FailureReason
from domain.renewal_event import PAYMENT_METHOD_MISSING, RenewalEvent, RenewalOutcome
from fakes import NOW


def _failure(reason: str) -> RenewalEvent:
    return RenewalEvent(
        domain_ref="example.com",
        outcome=RenewalOutcome.FAILURE,
        entitlement_id="dom-1",
        occurred_at=NOW,
        reason=reason,
    )


def test_failure_requires_reason() -> None:
    with pytest.raises(ValueError):
        RenewalEvent(
            domain_ref="example.com",
            outcome=RenewalOutcome.FAILURE,
            entitlement_id="dom-1",
            occurred_at=NOW,
        )


def test_occurred_at_must_be_utc() -> None:
    with pytest.raises(ValueError):
        RenewalEvent(
            domain_ref="example.com",
            outcome=RenewalOutcome.SUCCESS,
            entitlement_id="dom-1",
            occurred_at=datetime(2025, 2, 1),
        )


def test_declined_and_registrar_failure_messages_differ() -> None:
    declined = _failure(FailureReason.PAYMENT_DECLINED.value)
    unfulfilled = _failure(FailureReason.REGISTRAR_EXTEND_FAILED.value)

    assert "update your payment method" in declined.customer_message()
    assert "support team has been notified" in unfulfilled.customer_message()
    assert "payment for example.com succeeded" in unfulfilled.customer_message()
    assert declined.customer_message() != unfulfilled.customer_message()
    assert declined.subject != unfulfilled.subject


def test_missing_payment_method_message() -> None:
    assert "add a payment method" in _failure(PAYMENT_METHOD_MISSING).customer_message()


def test_success_message_includes_new_expiration() -> None:
    event = RenewalEvent(
        domain_ref="example.com",
        outcome=RenewalOutcome.SUCCESS,
        entitlement_id="dom-1",
        occurred_at=NOW,
        new_expires_at=datetime(2026, 2, 11, tzinfo=timezone.utc),
    )

    assert not event.is_failure
    assert "2026-02-11" in event.customer_message()
    assert event.subject == "example.com has been renewed"


def test_unknown_reason_falls_back_to_generic_text() -> None:
    event = _failure("something_else")

    assert "something_else" in event.customer_message()
    assert event.occurred_at - NOW == timedelta(0)
