"""
Domain: RenewalAttempt (renewal ledger entry).

Contract excerpts implemented here:
- One RenewalAttempt tracks a single renewal of one entitlement for one renewal cycle.
- At most one non-failed attempt may exist per (entitlement_id, cycle_key).
- States advance pending -> charged -> extended -> completed; pending and charged may
  fall to failed. Completed and failed are terminal.
- Once charged, the payment transaction id is never discarded, including on failure.
- A failure after a captured payment is flagged for manual reconciliation.

This module contains only pure domain entities/value objects: no I/O, no database, no frameworks.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Mapping, Optional
from uuid import UUID, uuid4

from .entitlement import Entitlement
from .time import require_utc_timestamp


class RenewalState(str, Enum):
    PENDING = "pending"
    CHARGED = "charged"
    EXTENDED = "extended"
    COMPLETED = "completed"
    FAILED = "failed"


class FailureReason(str, Enum):
    PAYMENT_DECLINED = "payment_declined"
    PAYMENT_GATEWAY_UNAVAILABLE = "payment_gateway_unavailable"
    REGISTRAR_EXTEND_FAILED = "registrar_extend_failed"
    ENTITLEMENT_INELIGIBLE = "entitlement_ineligible"


TERMINAL_STATES = frozenset({RenewalState.COMPLETED, RenewalState.FAILED})
IN_FLIGHT_STATES = frozenset({RenewalState.PENDING, RenewalState.CHARGED, RenewalState.EXTENDED})

_ALLOWED_TRANSITIONS: Mapping[RenewalState, frozenset[RenewalState]] = {
    RenewalState.PENDING: frozenset({RenewalState.CHARGED, RenewalState.FAILED}),
    RenewalState.CHARGED: frozenset({RenewalState.EXTENDED, RenewalState.FAILED}),
    RenewalState.EXTENDED: frozenset({RenewalState.COMPLETED}),
    RenewalState.COMPLETED: frozenset(),
    RenewalState.FAILED: frozenset(),
}

_STATE_TIMESTAMP_FIELD: Mapping[RenewalState, str] = {
    RenewalState.CHARGED: "charged_at",
    RenewalState.EXTENDED: "extended_at",
    RenewalState.COMPLETED: "completed_at",
    RenewalState.FAILED: "failed_at",
}

_TIMESTAMP_FIELDS = (
    "created_at",
    "updated_at",
    "charged_at",
    "extended_at",
    "completed_at",
    "failed_at",
    "new_expires_at",
    "reconciled_at",
    "lease_expires_at",
)


def check_transition(current: RenewalState, new: RenewalState) -> None:
    """
    Validate a state change.

    Same-state writes are allowed (lease claims, reconciliation notes).
    """

    if current == new:
        return
    if new not in _ALLOWED_TRANSITIONS[current]:
        raise ValueError(f"Illegal renewal transition {current.value} -> {new.value}")


def state_timestamp_field(state: RenewalState) -> Optional[str]:
    return _STATE_TIMESTAMP_FIELD.get(state)


@dataclass(frozen=True, slots=True)
class RenewalAttempt:
    """
    Immutable ledger entry for one renewal of one entitlement in one cycle.

    version is the optimistic-concurrency counter: every persisted update bumps it,
    and every update is conditional on the version the writer last read.

    lease_owner / lease_expires_at mark which job run is currently driving the
    attempt. An expired lease belongs to nobody.
    """

    attempt_id: UUID
    entitlement_id: str
    cycle_key: str
    state: RenewalState
    amount: Decimal
    currency: str
    created_at: datetime
    updated_at: datetime
    version: int = 1

    payment_transaction_id: Optional[str] = None
    registrar_confirmation_id: Optional[str] = None
    new_expires_at: Optional[datetime] = None

    charged_at: Optional[datetime] = None
    extended_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None

    failure_reason: Optional[FailureReason] = None
    failure_detail: Optional[str] = None
    requires_reconciliation: bool = False
    reconciled_at: Optional[datetime] = None
    reconciliation_note: Optional[str] = None

    lease_owner: Optional[str] = None
    lease_expires_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        for name in _TIMESTAMP_FIELDS:
            value = getattr(self, name)
            if value is not None:
                require_utc_timestamp(name, value)

        if self.version < 1:
            raise ValueError("version must be >= 1")

        if self.state in (RenewalState.CHARGED, RenewalState.EXTENDED, RenewalState.COMPLETED):
            if not self.payment_transaction_id:
                raise ValueError(f"{self.state.value} attempt requires payment_transaction_id")

        if self.state == RenewalState.FAILED and self.failure_reason is None:
            raise ValueError("failed attempt requires failure_reason")

        if self.failure_reason == FailureReason.REGISTRAR_EXTEND_FAILED:
            if not self.payment_transaction_id:
                raise ValueError("registrar_extend_failed must keep the payment_transaction_id")

        if self.reconciled_at is not None and not self.requires_reconciliation:
            raise ValueError("reconciled_at set on an attempt that never required reconciliation")

    @staticmethod
    def new(entitlement: Entitlement, now: datetime) -> "RenewalAttempt":
        """Create the pending attempt for the entitlement's current renewal cycle."""

        require_utc_timestamp("now", now)
        return RenewalAttempt(
            attempt_id=uuid4(),
            entitlement_id=entitlement.entitlement_id,
            cycle_key=entitlement.cycle_key,
            state=RenewalState.PENDING,
            amount=entitlement.renewal_price,
            currency=entitlement.currency,
            created_at=now,
            updated_at=now,
        )

    @property
    def idempotency_key(self) -> str:
        return str(self.attempt_id)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def is_live(self) -> bool:
        """Live attempts count against the one-per-cycle rule."""

        return self.state != RenewalState.FAILED

    @property
    def needs_reconciliation(self) -> bool:
        return self.requires_reconciliation and self.reconciled_at is None

    def is_leased_by_other(self, owner: str, now: datetime) -> bool:
        if self.lease_owner is None or self.lease_owner == owner:
            return False
        return self.lease_expires_at is not None and self.lease_expires_at > now

    def advance(self, new_state: RenewalState, at: datetime, **changes) -> "RenewalAttempt":
        """
        Return the attempt moved to new_state (validated), stamping the state's
        transition timestamp. Does not bump version; the ledger does.
        """

        check_transition(self.state, new_state)
        require_utc_timestamp("at", at)
        fields = dict(changes)
        ts_field = state_timestamp_field(new_state)
        if ts_field is not None and new_state != self.state:
            fields.setdefault(ts_field, at)
        fields["updated_at"] = at
        return replace(self, state=new_state, **fields)
