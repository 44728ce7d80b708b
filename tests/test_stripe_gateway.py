"""
Tests for `services/stripe_gateway.py` with the Stripe API patched out.
"""

from __future__ import annotations

import pytest
import stripe

from services.gateways import ChargeStatus
from services.stripe_gateway import StripeConfigurationError, StripePaymentGateway


@pytest.fixture
def gateway(monkeypatch):
    monkeypatch.setattr(stripe, "api_key", None)
    monkeypatch.setattr(stripe, "max_network_retries", 0)
    monkeypatch.setattr(
        stripe.PaymentMethod,
        "retrieve",
        lambda payment_method_id: {"id": payment_method_id, "customer": "cus_1"},
    )
    return StripePaymentGateway("sk_test_123")


def _patch_create(monkeypatch, behavior):
    calls = []

    def create(**kwargs):
        calls.append(kwargs)
        if isinstance(behavior, Exception):
            raise behavior
        return behavior

    monkeypatch.setattr(stripe.PaymentIntent, "create", create)
    return calls


def test_requires_secret_key() -> None:
    with pytest.raises(StripeConfigurationError):
        StripePaymentGateway("")


def test_successful_charge_forwards_idempotency_key(gateway, monkeypatch) -> None:
    calls = _patch_create(monkeypatch, {"id": "pi_123", "status": "succeeded"})

    result = gateway.charge("pm_1", 1499, "USD", "attempt-1")

    assert result.succeeded
    assert result.transaction_id == "pi_123"
    assert stripe.api_key == "sk_test_123"
    (kwargs,) = calls
    assert kwargs["amount"] == 1499
    assert kwargs["currency"] == "usd"
    assert kwargs["customer"] == "cus_1"
    assert kwargs["payment_method"] == "pm_1"
    assert kwargs["off_session"] is True
    assert kwargs["confirm"] is True
    assert kwargs["idempotency_key"] == "attempt-1"
    assert kwargs["metadata"] == {"renewal_attempt_id": "attempt-1"}


def test_processing_counts_as_captured(gateway, monkeypatch) -> None:
    _patch_create(monkeypatch, {"id": "pi_123", "status": "processing"})

    assert gateway.charge("pm_1", 1499, "USD", "attempt-1").succeeded


def test_card_error_is_declined(gateway, monkeypatch) -> None:
    _patch_create(monkeypatch, stripe.CardError("Your card was declined.", None, "card_declined"))

    result = gateway.charge("pm_1", 1499, "USD", "attempt-1")

    assert result.status == ChargeStatus.DECLINED
    assert not result.requires_action
    assert "declined" in result.message


def test_authentication_required_is_declined_with_action(gateway, monkeypatch) -> None:
    _patch_create(monkeypatch, stripe.CardError("Authentication required.", None, "authentication_required"))

    result = gateway.charge("pm_1", 1499, "USD", "attempt-1")

    assert result.status == ChargeStatus.DECLINED
    assert result.requires_action


def test_connection_error_is_unavailable(gateway, monkeypatch) -> None:
    _patch_create(monkeypatch, stripe.APIConnectionError("network down"))

    assert gateway.charge("pm_1", 1499, "USD", "attempt-1").status == ChargeStatus.UNAVAILABLE


def test_rate_limit_is_unavailable(gateway, monkeypatch) -> None:
    _patch_create(monkeypatch, stripe.RateLimitError("slow down"))

    assert gateway.charge("pm_1", 1499, "USD", "attempt-1").status == ChargeStatus.UNAVAILABLE


def test_invalid_payment_method_is_declined(gateway, monkeypatch) -> None:
    _patch_create(monkeypatch, stripe.InvalidRequestError("No such PaymentMethod", "payment_method"))

    assert gateway.charge("pm_1", 1499, "USD", "attempt-1").status == ChargeStatus.DECLINED


def test_requires_payment_method_status_is_declined(gateway, monkeypatch) -> None:
    _patch_create(monkeypatch, {"id": "pi_9", "status": "requires_payment_method"})

    result = gateway.charge("pm_1", 1499, "USD", "attempt-1")

    assert result.status == ChargeStatus.DECLINED
    assert "requires_payment_method" in result.message
