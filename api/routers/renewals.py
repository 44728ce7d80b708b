"""
Renewals API Endpoints.

Read access to the renewal ledger and resolution of reconciliation cases.
"""

from functools import lru_cache
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query

from api.models import AttemptListResponse, ReconcileRequest, RenewalAttemptResponse
from domain.renewal_attempt import RenewalState
from repositories.base import RenewalLedger
from services.bootstrap import build_ledger
from services.reconciliation_service import (
    ReconciliationError,
    list_pending_reconciliation,
    resolve_reconciliation,
)
from services.settings import RenewalSettings

router = APIRouter()


@lru_cache(maxsize=1)
def get_ledger() -> RenewalLedger:
    """Ledger dependency; overridden in tests."""
    return build_ledger(RenewalSettings.from_env())


def _list_response(attempts) -> AttemptListResponse:
    items = [RenewalAttemptResponse.from_attempt(a) for a in attempts]
    return AttemptListResponse(items=items, total_count=len(items))


@router.get(
    "/renewals/attempts",
    response_model=AttemptListResponse,
    summary="List Renewal Attempts",
    description="Most recent renewal attempts, optionally filtered by state."
)
def list_renewal_attempts(
    state: Optional[str] = Query(None, description="Filter by state (e.g., 'failed', 'pending')"),
    limit: int = Query(100, ge=1, le=1000, description="Maximum number of results to return"),
    ledger: RenewalLedger = Depends(get_ledger),
):
    """
    **Example usage:**
    - All recent attempts: `GET /api/v1/renewals/attempts`
    - Only failures: `GET /api/v1/renewals/attempts?state=failed&limit=50`
    """
    states = None
    if state:
        try:
            states = [RenewalState(state)]
        except ValueError:
            allowed = ", ".join(s.value for s in RenewalState)
            raise HTTPException(
                status_code=400,
                detail=f"Invalid state. Must be one of {allowed}, got '{state}'"
            )

    try:
        return _list_response(ledger.list_attempts(states=states, limit=limit))
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to list renewal attempts: {str(e)}"
        )


@router.get(
    "/renewals/reconciliation",
    response_model=AttemptListResponse,
    summary="List Reconciliation Cases",
    description="Renewals whose payment was captured but whose registrar extension failed."
)
def list_reconciliation_cases(ledger: RenewalLedger = Depends(get_ledger)):
    try:
        return _list_response(list_pending_reconciliation(ledger))
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to list reconciliation cases: {str(e)}"
        )


@router.get(
    "/renewals/entitlements/{entitlement_id}/attempts",
    response_model=AttemptListResponse,
    summary="Renewal History",
    description="Every renewal attempt recorded for one domain, newest first."
)
def list_entitlement_attempts(entitlement_id: str, ledger: RenewalLedger = Depends(get_ledger)):
    try:
        return _list_response(ledger.list_for_entitlement(entitlement_id))
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to list renewal attempts: {str(e)}"
        )


@router.post(
    "/renewals/attempts/{attempt_id}/reconcile",
    response_model=RenewalAttemptResponse,
    summary="Resolve Reconciliation Case",
    description="Record that support settled a captured-but-unfulfilled renewal."
)
def reconcile_attempt(
    attempt_id: str,
    request: ReconcileRequest,
    ledger: RenewalLedger = Depends(get_ledger),
):
    """
    Marks the attempt as reconciled, which lets the next renewal run open a new
    attempt for the same cycle.

    **Errors:**
    - 400: malformed attempt id
    - 404: attempt not found
    - 409: attempt does not need (or already had) reconciliation
    """
    try:
        attempt_uuid = UUID(attempt_id)
    except ValueError:
        raise HTTPException(
            status_code=400,
            detail="Invalid UUID format for attempt_id"
        )

    try:
        if ledger.get_attempt(attempt_uuid) is None:
            raise HTTPException(
                status_code=404,
                detail=f"Renewal attempt not found: {attempt_id}"
            )
        resolved = resolve_reconciliation(ledger, attempt_uuid, request.note)
        return RenewalAttemptResponse.from_attempt(resolved)

    except HTTPException:
        raise
    except ReconciliationError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to reconcile attempt: {str(e)}"
        )
