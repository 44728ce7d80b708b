"""
In-memory stores (persistence stand-ins).

Implements the EntitlementStore and RenewalLedger contracts in process, with the
same constraints the database enforces: one live attempt per
(entitlement_id, cycle_key), and conditional updates on (state, version).
All operations are guarded by a lock so a worker pool can share one instance.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional
from uuid import UUID

from domain.entitlement import Entitlement
from domain.renewal_attempt import RenewalAttempt, RenewalState, check_transition
from domain.time import require_utc_timestamp, utcnow
from repositories.base import LedgerWriteConflict


class InMemoryEntitlementStore:
    def __init__(self, entitlements: Iterable[Entitlement] = ()) -> None:
        self._lock = threading.Lock()
        self._by_id: Dict[str, Entitlement] = {e.entitlement_id: e for e in entitlements}

    def add(self, entitlement: Entitlement) -> None:
        with self._lock:
            self._by_id[entitlement.entitlement_id] = entitlement

    def list_renewal_candidates(self, horizon: datetime) -> List[Entitlement]:
        require_utc_timestamp("horizon", horizon)
        with self._lock:
            rows = [
                e
                for e in self._by_id.values()
                if e.status == "active" and e.auto_renew and e.expires_at <= horizon
            ]
        return sorted(rows, key=lambda e: e.expires_at)

    def get_entitlement(self, entitlement_id: str) -> Optional[Entitlement]:
        with self._lock:
            return self._by_id.get(entitlement_id)

    def advance_expiration(self, entitlement_id: str, new_expires_at: datetime) -> Optional[Entitlement]:
        require_utc_timestamp("new_expires_at", new_expires_at)
        with self._lock:
            current = self._by_id.get(entitlement_id)
            if current is None:
                return None
            if new_expires_at > current.expires_at:
                current = current.with_expiration(new_expires_at)
                self._by_id[entitlement_id] = current
            return current

    def disable_auto_renew(self, entitlement_id: str) -> None:
        with self._lock:
            current = self._by_id.get(entitlement_id)
            if current is not None:
                self._by_id[entitlement_id] = current.without_auto_renew()


class InMemoryRenewalLedger:
    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._lock = threading.Lock()
        self._clock = clock
        self._attempts: Dict[UUID, RenewalAttempt] = {}

    def ping(self) -> None:
        return None

    def get_attempt(self, attempt_id: UUID) -> Optional[RenewalAttempt]:
        with self._lock:
            return self._attempts.get(attempt_id)

    def _cycle(self, entitlement_id: str, cycle_key: str) -> List[RenewalAttempt]:
        rows = [
            a
            for a in self._attempts.values()
            if a.entitlement_id == entitlement_id and a.cycle_key == cycle_key
        ]
        return sorted(rows, key=lambda a: a.created_at)

    def get_open_attempt(self, entitlement_id: str, cycle_key: str) -> Optional[RenewalAttempt]:
        with self._lock:
            for attempt in self._cycle(entitlement_id, cycle_key):
                if attempt.is_live:
                    return attempt
        return None

    def list_cycle_attempts(self, entitlement_id: str, cycle_key: str) -> List[RenewalAttempt]:
        with self._lock:
            return self._cycle(entitlement_id, cycle_key)

    def create_attempt(self, attempt: RenewalAttempt) -> RenewalAttempt:
        with self._lock:
            if attempt.attempt_id in self._attempts:
                raise LedgerWriteConflict(f"Attempt {attempt.attempt_id} already exists")
            if attempt.is_live and any(
                a.is_live for a in self._cycle(attempt.entitlement_id, attempt.cycle_key)
            ):
                raise LedgerWriteConflict(
                    f"Live renewal attempt already exists for ({attempt.entitlement_id}, {attempt.cycle_key})"
                )
            self._attempts[attempt.attempt_id] = attempt
            return attempt

    def update_state(
        self,
        attempt_id: UUID,
        new_state: RenewalState,
        fields: Mapping[str, Any],
        *,
        expected_state: RenewalState,
        expected_version: int,
    ) -> RenewalAttempt:
        check_transition(expected_state, new_state)
        with self._lock:
            current = self._attempts.get(attempt_id)
            if current is None:
                raise LedgerWriteConflict(f"Attempt {attempt_id} not found")
            if current.state != expected_state or current.version != expected_version:
                raise LedgerWriteConflict(
                    f"Attempt {attempt_id} is {current.state.value}/v{current.version}, "
                    f"expected {expected_state.value}/v{expected_version}"
                )
            updated = current.advance(new_state, self._clock(), **dict(fields))
            updated = replace(updated, version=current.version + 1)
            self._attempts[attempt_id] = updated
            return updated

    def list_attempts(
        self, states: Optional[Iterable[RenewalState]] = None, limit: Optional[int] = 100
    ) -> List[RenewalAttempt]:
        wanted = set(states) if states is not None else None
        with self._lock:
            rows = [a for a in self._attempts.values() if wanted is None or a.state in wanted]
        rows.sort(key=lambda a: a.created_at, reverse=True)
        return rows if limit is None else rows[:limit]

    def list_reconciliation_required(self) -> List[RenewalAttempt]:
        with self._lock:
            rows = [a for a in self._attempts.values() if a.needs_reconciliation]
        return sorted(rows, key=lambda a: a.created_at)

    def list_for_entitlement(self, entitlement_id: str) -> List[RenewalAttempt]:
        with self._lock:
            rows = [a for a in self._attempts.values() if a.entitlement_id == entitlement_id]
        return sorted(rows, key=lambda a: a.created_at, reverse=True)


__all__ = [
    "InMemoryEntitlementStore",
    "InMemoryRenewalLedger",
]
