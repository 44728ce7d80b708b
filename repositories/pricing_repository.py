"""
Pricing repository for querying TLD renewal prices.

Fetches the customer-facing renewal price from the tld_pricing table. TLDs with
no pricing row fall back to a configured default price.
"""

from __future__ import annotations

import threading
from decimal import Decimal
from typing import Dict, Optional

from supabase import Client  # type: ignore[import-not-found]

from repositories.client import raise_for_error, response_rows

_PRICING_TABLE: str = "tld_pricing"

DEFAULT_RENEWAL_PRICE = Decimal("15.00")


class SupabasePricingRepository:
    """
    Renewal prices per TLD, cached for the lifetime of the repository (one job run).
    """

    def __init__(self, client: Client, default_price: Decimal = DEFAULT_RENEWAL_PRICE) -> None:
        self._client = client
        self._default_price = default_price
        self._cache: Dict[str, Decimal] = {}
        self._lock = threading.Lock()

    def get_active_price(self, tld: str) -> Optional[Decimal]:
        """
        Get the current renewal price for a TLD.

        Returns:
            Decimal price or None if no pricing row exists

        Example:
            price = pricing.get_active_price("com")
            # Returns Decimal('14.99')
        """
        response = (
            self._client.table(_PRICING_TABLE)
            .select("price_renew")
            .eq("tld", tld.lower())
            .limit(1)
            .execute()
        )
        raise_for_error(response, "fetch TLD pricing")

        rows = response_rows(response)
        if not rows or rows[0].get("price_renew") is None:
            return None

        return Decimal(str(rows[0]["price_renew"]))

    def get_renewal_price(self, tld: str) -> Decimal:
        """Renewal price for the TLD, or the default when none is configured."""

        key = tld.lower()
        with self._lock:
            cached = self._cache.get(key)
        if cached is not None:
            return cached

        price = self.get_active_price(key)
        if price is None:
            price = self._default_price

        with self._lock:
            self._cache[key] = price
        return price


__all__ = [
    "DEFAULT_RENEWAL_PRICE",
    "SupabasePricingRepository",
]
