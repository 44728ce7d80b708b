"""
Domain: renewal notification events.

A failed auto-renewal must tell the account holder *which* remediation applies:
- payment failed: update the payment method
- payment captured but the registrar extension did not complete: support is handling it
- no payment method on file: add one
These messages must never be conflated.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID

from .renewal_attempt import FailureReason
from .time import require_utc_timestamp

PAYMENT_METHOD_MISSING = "payment_method_missing"


class RenewalOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True, slots=True)
class RenewalEvent:
    domain_ref: str
    outcome: RenewalOutcome
    entitlement_id: str
    occurred_at: datetime
    reason: Optional[str] = None
    attempt_id: Optional[UUID] = None
    account_email: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    expires_at: Optional[datetime] = None
    new_expires_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        require_utc_timestamp("occurred_at", self.occurred_at)
        if self.outcome == RenewalOutcome.FAILURE and not self.reason:
            raise ValueError("failure events require a reason")

    @property
    def is_failure(self) -> bool:
        return self.outcome == RenewalOutcome.FAILURE

    @property
    def subject(self) -> str:
        if not self.is_failure:
            return f"{self.domain_ref} has been renewed"
        if self.reason == FailureReason.REGISTRAR_EXTEND_FAILED.value:
            return f"Renewal of {self.domain_ref} is being completed by support"
        return f"Action needed: automatic renewal of {self.domain_ref} failed"

    def customer_message(self) -> str:
        """Account-holder facing text for this event."""

        if not self.is_failure:
            until = self.new_expires_at.date().isoformat() if self.new_expires_at else "N/A"
            return f"Your domain {self.domain_ref} was renewed automatically. New expiration: {until}."

        if self.reason == FailureReason.PAYMENT_DECLINED.value:
            return (
                f"We could not charge your saved payment method to renew {self.domain_ref}. "
                "Please update your payment method to keep the domain active."
            )
        if self.reason == FailureReason.REGISTRAR_EXTEND_FAILED.value:
            return (
                f"Your payment for {self.domain_ref} succeeded, but the renewal could not "
                "complete. Our support team has been notified and will finish it for you."
            )
        if self.reason == PAYMENT_METHOD_MISSING:
            return (
                f"{self.domain_ref} is set to renew automatically but no payment method is on file. "
                "Please add a payment method to enable auto-renewal."
            )
        return f"Automatic renewal of {self.domain_ref} failed ({self.reason})."
