"""
Manual reconciliation of captured-but-unfulfilled renewals.

When the registrar refuses an extension after the payment was captured, the
attempt ends failed with requires_reconciliation set, and its cycle is blocked
from new attempts. Support settles it out of band (refund or manual extension)
and then records the resolution here, which unblocks the cycle.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from domain.renewal_attempt import RenewalAttempt, RenewalState
from domain.time import require_utc_timestamp, utcnow
from repositories.base import LedgerWriteConflict, RenewalLedger

logger = logging.getLogger(__name__)


class ReconciliationError(Exception):
    """Raised when an attempt cannot be marked as reconciled."""


def list_pending_reconciliation(ledger: RenewalLedger) -> List[RenewalAttempt]:
    return ledger.list_reconciliation_required()


def resolve_reconciliation(
    ledger: RenewalLedger,
    attempt_id: UUID,
    note: str,
    now: Optional[datetime] = None,
) -> RenewalAttempt:
    """
    Record that support settled the attempt.

    Raises ReconciliationError when the attempt does not exist, never needed
    reconciliation, was already reconciled, or changed underneath us.
    """

    if not note or not note.strip():
        raise ReconciliationError("A reconciliation note is required")

    ts = now or utcnow()
    require_utc_timestamp("now", ts)

    attempt = ledger.get_attempt(attempt_id)
    if attempt is None:
        raise ReconciliationError(f"Renewal attempt {attempt_id} not found")
    if not attempt.requires_reconciliation:
        raise ReconciliationError(f"Renewal attempt {attempt_id} does not require reconciliation")
    if attempt.reconciled_at is not None:
        raise ReconciliationError(f"Renewal attempt {attempt_id} was already reconciled")

    try:
        resolved = ledger.update_state(
            attempt.attempt_id,
            RenewalState.FAILED,
            {"reconciled_at": ts, "reconciliation_note": note.strip()},
            expected_state=attempt.state,
            expected_version=attempt.version,
        )
    except LedgerWriteConflict as e:
        raise ReconciliationError(f"Renewal attempt {attempt_id} changed concurrently; retry") from e

    logger.info(
        "Reconciled renewal attempt %s (entitlement %s, transaction %s)",
        resolved.attempt_id,
        resolved.entitlement_id,
        resolved.payment_transaction_id,
    )
    return resolved


__all__ = [
    "ReconciliationError",
    "list_pending_reconciliation",
    "resolve_reconciliation",
]
