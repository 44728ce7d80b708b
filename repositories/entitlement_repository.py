"""
Entitlement repository (persistence).

Reads domain registrations from the `domains` table (joined with the owning
`users` row for email and default payment method) and maps them to Entitlement
domain objects. It enforces only persistence constraints: expiration updates are
conditional on the stored value being earlier, so the expiration never moves back.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, List, Mapping, Optional

from supabase import Client  # type: ignore[import-not-found]

from domain.entitlement import Entitlement
from domain.time import parse_utc_datetime, require_utc_timestamp
from repositories.client import raise_for_error, response_rows
from repositories.pricing_repository import SupabasePricingRepository

logger = logging.getLogger(__name__)

# Supabase table names.
# Keep these aligned with your database schema.
_DOMAINS_TABLE: str = "domains"
_SELECT: str = "*, users(email, default_payment_method_id)"

ENOM_MODES = ("test", "live")


def _expiration_value(dt: datetime) -> str:
    """expiration_date is a DATE column."""

    require_utc_timestamp("expires_at", dt)
    return dt.astimezone(timezone.utc).date().isoformat()


class SupabaseEntitlementRepository:
    def __init__(
        self,
        client: Client,
        pricing: SupabasePricingRepository,
        currency: str = "USD",
        enom_mode: Optional[str] = None,
    ) -> None:
        if enom_mode is not None and enom_mode not in ENOM_MODES:
            raise ValueError(f"enom_mode must be one of {ENOM_MODES}, got {enom_mode!r}")
        self._client = client
        self._pricing = pricing
        self._currency = currency
        self._enom_mode = enom_mode

    def _row_to_entitlement(self, row: Mapping[str, Any]) -> Entitlement:
        """Convert a Supabase domains row (with embedded user) into an Entitlement."""

        user = row.get("users") or {}
        tld = str(row["tld"]).lower()
        # The domain-level method wins; the account default is the fallback.
        payment_method = row.get("auto_renew_payment_method_id") or user.get("default_payment_method_id")

        return Entitlement(
            entitlement_id=str(row["id"]),
            account_id=str(row["user_id"]),
            domain_name=f"{row['domain_name']}.{tld}",
            expires_at=parse_utc_datetime(row["expiration_date"]),
            auto_renew=bool(row.get("auto_renew")),
            payment_method_ref=payment_method,
            renewal_price=self._pricing.get_renewal_price(tld),
            currency=self._currency,
            term_years=int(row.get("renewal_years") or 1),
            status=str(row.get("status") or "active"),
            account_email=user.get("email"),
            locked=bool(row.get("lock_status")),
            privacy_enabled=bool(row.get("privacy_enabled")),
        )

    def list_renewal_candidates(self, horizon: datetime) -> List[Entitlement]:
        """
        Fetch active auto-renew domains expiring on or before horizon.

        Rows without a payment method are included; the scanner decides what to do with them.
        With an eNom mode set, only domains registered in that mode (or with no mode) are returned.
        A row that cannot be mapped (bad data, price lookup failure) is logged and left out.
        """

        query = (
            self._client.table(_DOMAINS_TABLE)
            .select(_SELECT)
            .eq("status", "active")
            .eq("auto_renew", True)
            .lte("expiration_date", _expiration_value(horizon))
        )
        if self._enom_mode is not None:
            query = query.or_(f"enom_mode.eq.{self._enom_mode},enom_mode.is.null")
        response = query.order("expiration_date").execute()
        raise_for_error(response, "list renewal candidates")

        entitlements: List[Entitlement] = []
        for row in response_rows(response):
            try:
                entitlements.append(self._row_to_entitlement(row))
            except Exception as e:
                logger.exception("Skipping renewal candidate domain id=%s: %s", row.get("id"), e)
        return entitlements

    def get_entitlement(self, entitlement_id: str) -> Optional[Entitlement]:
        response = (
            self._client.table(_DOMAINS_TABLE)
            .select(_SELECT)
            .eq("id", entitlement_id)
            .limit(1)
            .execute()
        )
        raise_for_error(response, "get domain")

        rows = response_rows(response)
        if not rows:
            return None
        return self._row_to_entitlement(rows[0])

    def advance_expiration(self, entitlement_id: str, new_expires_at: datetime) -> Optional[Entitlement]:
        """
        Set expiration_date to new_expires_at.

        Requirements:
        - Must only update if the stored expiration_date is earlier (forward-only).
        """

        new_value = _expiration_value(new_expires_at)
        response = (
            self._client.table(_DOMAINS_TABLE)
            .update(
                {
                    "expiration_date": new_value,
                    "updated_at": datetime.now(timezone.utc).isoformat(),
                }
            )
            .eq("id", entitlement_id)
            .lt("expiration_date", new_value)
            .execute()
        )
        raise_for_error(response, "advance domain expiration")

        # No updated rows means the stored date was already at or past new_value.
        return self.get_entitlement(entitlement_id)

    def disable_auto_renew(self, entitlement_id: str) -> None:
        response = (
            self._client.table(_DOMAINS_TABLE)
            .update(
                {
                    "auto_renew": False,
                    "updated_at": datetime.now(timezone.utc).isoformat(),
                }
            )
            .eq("id", entitlement_id)
            .execute()
        )
        raise_for_error(response, "disable auto-renew")


__all__ = [
    "ENOM_MODES",
    "SupabaseEntitlementRepository",
]
