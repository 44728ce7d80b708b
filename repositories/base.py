"""
Persistence contracts for the renewal core.

Services depend on these protocols, never on a concrete store, so the Supabase
repositories and the in-memory stores are interchangeable.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, List, Mapping, Optional, Protocol
from uuid import UUID

from domain.entitlement import Entitlement
from domain.renewal_attempt import RenewalAttempt, RenewalState


class LedgerWriteConflict(Exception):
    """
    Raised when a conditional ledger write finds a different state/version than
    expected, or when a live attempt already exists for the cycle.

    Callers must re-read and retry the step; never overwrite blindly.
    """


class EntitlementStore(Protocol):
    def list_renewal_candidates(self, horizon: datetime) -> List[Entitlement]:
        """Active auto-renew entitlements expiring at or before horizon (with or without payment method)."""
        ...

    def get_entitlement(self, entitlement_id: str) -> Optional[Entitlement]:
        ...

    def advance_expiration(self, entitlement_id: str, new_expires_at: datetime) -> Optional[Entitlement]:
        """Move expires_at forward; a no-op if the stored value is already at or past new_expires_at."""
        ...

    def disable_auto_renew(self, entitlement_id: str) -> None:
        ...


class RenewalLedger(Protocol):
    def ping(self) -> None:
        """Raise if the ledger store cannot be reached."""
        ...

    def get_attempt(self, attempt_id: UUID) -> Optional[RenewalAttempt]:
        ...

    def get_open_attempt(self, entitlement_id: str, cycle_key: str) -> Optional[RenewalAttempt]:
        """The live (non-failed) attempt for the cycle, if any."""
        ...

    def list_cycle_attempts(self, entitlement_id: str, cycle_key: str) -> List[RenewalAttempt]:
        ...

    def create_attempt(self, attempt: RenewalAttempt) -> RenewalAttempt:
        """Persist a new attempt; raises LedgerWriteConflict if a live one exists for the cycle."""
        ...

    def update_state(
        self,
        attempt_id: UUID,
        new_state: RenewalState,
        fields: Mapping[str, Any],
        *,
        expected_state: RenewalState,
        expected_version: int,
    ) -> RenewalAttempt:
        """Conditional update; raises LedgerWriteConflict when state/version do not match."""
        ...

    def list_attempts(
        self, states: Optional[Iterable[RenewalState]] = None, limit: Optional[int] = 100
    ) -> List[RenewalAttempt]:
        """Newest first; limit=None returns every matching attempt."""
        ...

    def list_reconciliation_required(self) -> List[RenewalAttempt]:
        ...

    def list_for_entitlement(self, entitlement_id: str) -> List[RenewalAttempt]:
        ...


__all__ = [
    "EntitlementStore",
    "LedgerWriteConflict",
    "RenewalLedger",
]
