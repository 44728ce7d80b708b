"""
Stripe payment gateway.

Charges a customer's saved payment method off-session with a confirmed
PaymentIntent. The caller's idempotency key is forwarded to Stripe, so a retried
charge for the same renewal attempt returns the original PaymentIntent instead
of billing twice.
"""

from __future__ import annotations

import logging
from typing import Optional

import stripe

from services.gateways import ChargeResult

logger = logging.getLogger(__name__)

# PaymentIntent statuses that mean money moved (or is moving) for this intent.
_SETTLED_STATUSES = frozenset({"succeeded", "processing"})


class StripeConfigurationError(RuntimeError):
    """Raised when mandatory Stripe configuration is missing."""


class StripePaymentGateway:
    def __init__(self, secret_key: str, *, api_version: Optional[str] = None, max_network_retries: int = 2) -> None:
        if not secret_key:
            raise StripeConfigurationError("STRIPE_SECRET_KEY is not configured.")

        stripe.api_key = secret_key
        stripe.max_network_retries = max_network_retries
        if api_version:
            stripe.api_version = api_version

    def _customer_for(self, payment_method_ref: str) -> Optional[str]:
        payment_method = stripe.PaymentMethod.retrieve(payment_method_ref)
        customer = payment_method.get("customer")
        if isinstance(customer, str) or customer is None:
            return customer
        return customer.get("id")

    def charge(
        self,
        payment_method_ref: str,
        amount_minor_units: int,
        currency: str,
        idempotency_key: str,
    ) -> ChargeResult:
        try:
            customer = self._customer_for(payment_method_ref)
            intent = stripe.PaymentIntent.create(
                amount=amount_minor_units,
                currency=currency.lower(),
                customer=customer,
                payment_method=payment_method_ref,
                off_session=True,
                confirm=True,
                description="Domain auto-renewal",
                metadata={"renewal_attempt_id": idempotency_key},
                idempotency_key=idempotency_key,
            )
        except stripe.CardError as exc:
            code = getattr(exc, "code", None)
            logger.info("Stripe declined renewal charge %s: %s (%s)", idempotency_key, exc.user_message, code)
            return ChargeResult.declined(
                exc.user_message or str(exc),
                requires_action=code == "authentication_required",
            )
        except stripe.InvalidRequestError as exc:
            # Detached or unknown payment method: only the customer can fix it.
            logger.warning("Stripe rejected renewal charge %s: %s", idempotency_key, exc)
            return ChargeResult.declined(str(exc))
        except (stripe.APIConnectionError, stripe.RateLimitError, stripe.APIError) as exc:
            logger.warning("Stripe unavailable for renewal charge %s: %s", idempotency_key, exc)
            return ChargeResult.unavailable(str(exc))
        except stripe.StripeError as exc:
            logger.error("Stripe error for renewal charge %s: %s", idempotency_key, exc)
            return ChargeResult.unavailable(str(exc))

        status = intent.get("status")
        if status in _SETTLED_STATUSES:
            if status == "processing":
                logger.info("PaymentIntent %s is still processing; treating as captured", intent.get("id"))
            return ChargeResult.success(intent["id"])

        # requires_action / requires_payment_method / canceled
        return ChargeResult.declined(
            f"PaymentIntent {intent.get('id')} ended in status {status}",
            requires_action=status == "requires_action",
        )


__all__ = [
    "StripeConfigurationError",
    "StripePaymentGateway",
]
