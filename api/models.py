"""
API Request and Response Models.

Pydantic models for validating API requests and serializing responses.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from domain.renewal_attempt import RenewalAttempt


# ============================================================================
# Renewal Attempt Models
# ============================================================================

class RenewalAttemptResponse(BaseModel):
    """Single renewal attempt in API response."""
    attempt_id: UUID
    entitlement_id: str
    cycle_key: str
    state: str  # "pending", "charged", "extended", "completed", "failed"
    amount: Decimal
    currency: str
    version: int
    created_at: datetime
    updated_at: datetime
    payment_transaction_id: Optional[str] = None
    registrar_confirmation_id: Optional[str] = None
    new_expires_at: Optional[datetime] = None
    charged_at: Optional[datetime] = None
    extended_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    failure_detail: Optional[str] = None
    requires_reconciliation: bool = False
    reconciled_at: Optional[datetime] = None
    reconciliation_note: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "attempt_id": "123e4567-e89b-12d3-a456-426614174000",
                "entitlement_id": "42",
                "cycle_key": "renew-before-2025-03-01",
                "state": "failed",
                "amount": "14.99",
                "currency": "USD",
                "version": 4,
                "created_at": "2025-02-01T06:00:00Z",
                "updated_at": "2025-02-01T06:00:09Z",
                "payment_transaction_id": "pi_3Nx...",
                "failure_reason": "registrar_extend_failed",
                "failure_detail": "Domain is locked at the registry",
                "requires_reconciliation": True,
            }
        }

    @classmethod
    def from_attempt(cls, attempt: RenewalAttempt) -> "RenewalAttemptResponse":
        return cls(
            attempt_id=attempt.attempt_id,
            entitlement_id=attempt.entitlement_id,
            cycle_key=attempt.cycle_key,
            state=attempt.state.value,
            amount=attempt.amount,
            currency=attempt.currency,
            version=attempt.version,
            created_at=attempt.created_at,
            updated_at=attempt.updated_at,
            payment_transaction_id=attempt.payment_transaction_id,
            registrar_confirmation_id=attempt.registrar_confirmation_id,
            new_expires_at=attempt.new_expires_at,
            charged_at=attempt.charged_at,
            extended_at=attempt.extended_at,
            completed_at=attempt.completed_at,
            failed_at=attempt.failed_at,
            failure_reason=attempt.failure_reason.value if attempt.failure_reason else None,
            failure_detail=attempt.failure_detail,
            requires_reconciliation=attempt.requires_reconciliation,
            reconciled_at=attempt.reconciled_at,
            reconciliation_note=attempt.reconciliation_note,
        )


class AttemptListResponse(BaseModel):
    """Response for renewal attempt listings."""
    items: List[RenewalAttemptResponse]
    total_count: int

    class Config:
        json_schema_extra = {
            "example": {
                "items": [],
                "total_count": 0
            }
        }


# ============================================================================
# Reconciliation Models
# ============================================================================

class ReconcileRequest(BaseModel):
    """Record how support settled a captured-but-unfulfilled renewal."""
    note: str = Field(
        ...,
        min_length=1,
        max_length=2000,
        description="What was done (refund issued, domain extended manually, ...)"
    )

    class Config:
        json_schema_extra = {
            "example": {
                "note": "Refunded pi_3Nx... in Stripe; customer informed"
            }
        }
