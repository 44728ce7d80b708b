"""
Domain: Entitlement (a renewable domain registration).

Contract excerpts implemented here:
- An Entitlement is eligible for automatic renewal iff it is active, has auto-renew
  enabled, has a payment method on file, and expires within the lookahead window.
- The expiration timestamp only moves forward, and only after the registrar has
  confirmed an extension.
- The renewal cycle key is derived from the current expiration, so every renewal
  due around one expiration date shares a single key.

This module contains only pure domain entities/value objects: no I/O, no database, no frameworks.
All timestamps must be passed explicitly.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from .time import require_utc_timestamp

DEFAULT_LOOKAHEAD = timedelta(days=30)

ACTIVE_STATUS = "active"


def to_minor_units(amount: Decimal) -> int:
    """Amount in cents, rounded half-up."""

    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def renewal_cycle_key(expires_at: datetime) -> str:
    """Deterministic key for "the renewal due around this expiration"."""

    require_utc_timestamp("expires_at", expires_at)
    return f"renew-before-{expires_at.date().isoformat()}"


@dataclass(frozen=True, slots=True)
class Entitlement:
    """
    Immutable snapshot of a domain registration as seen by the renewal core.

    Lock and privacy flags are carried for completeness; the renewal core never
    changes them.
    """

    entitlement_id: str
    account_id: str
    domain_name: str  # full name, e.g. "example.com"
    expires_at: datetime
    auto_renew: bool
    payment_method_ref: Optional[str]
    renewal_price: Decimal
    currency: str = "USD"
    term_years: int = 1
    status: str = ACTIVE_STATUS  # active, pending, expired, transferred
    account_email: Optional[str] = None
    locked: bool = False
    privacy_enabled: bool = False

    def __post_init__(self) -> None:
        require_utc_timestamp("expires_at", self.expires_at)
        if self.renewal_price < 0:
            raise ValueError("renewal_price must not be negative")
        if self.term_years < 1:
            raise ValueError("term_years must be at least 1")
        if not self.domain_name:
            raise ValueError("domain_name is required")

    @property
    def sld(self) -> str:
        return self.domain_name.split(".", 1)[0]

    @property
    def tld(self) -> str:
        parts = self.domain_name.split(".", 1)
        return parts[1] if len(parts) == 2 else ""

    @property
    def cycle_key(self) -> str:
        return renewal_cycle_key(self.expires_at)

    @property
    def amount_minor_units(self) -> int:
        return to_minor_units(self.renewal_price)

    @property
    def has_payment_method(self) -> bool:
        return bool(self.payment_method_ref)

    def is_due(self, now: datetime, lookahead: timedelta = DEFAULT_LOOKAHEAD) -> bool:
        require_utc_timestamp("now", now)
        return self.expires_at <= now + lookahead

    def is_eligible_for_auto_renew(
        self, now: datetime, lookahead: timedelta = DEFAULT_LOOKAHEAD
    ) -> bool:
        return (
            self.status == ACTIVE_STATUS
            and self.auto_renew
            and self.has_payment_method
            and self.is_due(now, lookahead)
        )

    def days_until_expiration(self, now: datetime) -> int:
        require_utc_timestamp("now", now)
        return (self.expires_at.date() - now.date()).days

    def with_expiration(self, new_expires_at: datetime) -> "Entitlement":
        """
        Return a copy with the expiration moved forward.

        Raises ValueError if new_expires_at does not lie after the current expiration.
        """

        require_utc_timestamp("new_expires_at", new_expires_at)
        if new_expires_at <= self.expires_at:
            raise ValueError("expires_at can only advance forward")
        return replace(self, expires_at=new_expires_at)

    def without_auto_renew(self) -> "Entitlement":
        return replace(self, auto_renew=False)
