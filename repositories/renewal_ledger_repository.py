"""
Renewal ledger repository (persistence).

This module provides *only* persistence operations for the RenewalAttempt domain
entity. It enforces persistence constraints, not renewal policy:
- uniqueness of the live attempt per (entitlement_id, cycle_key), backed by the
  partial unique index in sql/renewal_attempts.sql
- conditional updates: every write matches on the state and version the caller
  last read, so two job runs can never both advance the same attempt.
"""

from __future__ import annotations

from dataclasses import fields as dataclass_fields
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable, List, Mapping, Optional
from uuid import UUID

from postgrest.exceptions import APIError  # type: ignore[import-not-found]
from supabase import Client  # type: ignore[import-not-found]

from domain.renewal_attempt import (
    FailureReason,
    RenewalAttempt,
    RenewalState,
    check_transition,
    state_timestamp_field,
)
from domain.time import parse_utc_datetime, to_iso_utc
from repositories.base import LedgerWriteConflict
from repositories.client import raise_for_error, response_rows

# Supabase table name for renewal attempts.
# Keep this aligned with sql/renewal_attempts.sql.
_ATTEMPTS_TABLE: str = "renewal_attempts"

_UNIQUE_VIOLATION = "23505"

_TIMESTAMP_FIELDS = frozenset(
    {
        "created_at",
        "updated_at",
        "charged_at",
        "extended_at",
        "completed_at",
        "failed_at",
        "new_expires_at",
        "reconciled_at",
        "lease_expires_at",
    }
)

# Identity columns never change after insert.
_IMMUTABLE_FIELDS = frozenset({"attempt_id", "entitlement_id", "cycle_key", "created_at", "state", "version"})

_UPDATABLE_FIELDS = frozenset(
    f.name for f in dataclass_fields(RenewalAttempt) if f.name not in _IMMUTABLE_FIELDS
)


def _column(field_name: str) -> str:
    """Timestamp columns carry a _utc suffix."""

    return f"{field_name}_utc" if field_name in _TIMESTAMP_FIELDS else field_name


def _serialize(field_name: str, value: Any) -> Any:
    if value is None:
        return None
    if field_name in _TIMESTAMP_FIELDS:
        return to_iso_utc(value, name=field_name)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    return value


def _attempt_to_row(attempt: RenewalAttempt) -> dict[str, Any]:
    return {
        _column(f.name): _serialize(f.name, getattr(attempt, f.name))
        for f in dataclass_fields(RenewalAttempt)
    }


def _optional_ts(row: Mapping[str, Any], field_name: str) -> Optional[datetime]:
    value = row.get(_column(field_name))
    return parse_utc_datetime(value) if value is not None else None


def _row_to_attempt(row: Mapping[str, Any]) -> RenewalAttempt:
    """Convert a Supabase row into a RenewalAttempt."""

    reason = row.get("failure_reason")
    return RenewalAttempt(
        attempt_id=UUID(str(row["attempt_id"])),
        entitlement_id=str(row["entitlement_id"]),
        cycle_key=str(row["cycle_key"]),
        state=RenewalState(str(row["state"])),
        amount=Decimal(str(row["amount"])),
        currency=str(row.get("currency") or "USD"),
        created_at=parse_utc_datetime(row["created_at_utc"]),
        updated_at=parse_utc_datetime(row["updated_at_utc"]),
        version=int(row["version"]),
        payment_transaction_id=row.get("payment_transaction_id"),
        registrar_confirmation_id=row.get("registrar_confirmation_id"),
        new_expires_at=_optional_ts(row, "new_expires_at"),
        charged_at=_optional_ts(row, "charged_at"),
        extended_at=_optional_ts(row, "extended_at"),
        completed_at=_optional_ts(row, "completed_at"),
        failed_at=_optional_ts(row, "failed_at"),
        failure_reason=FailureReason(str(reason)) if reason else None,
        failure_detail=row.get("failure_detail"),
        requires_reconciliation=bool(row.get("requires_reconciliation")),
        reconciled_at=_optional_ts(row, "reconciled_at"),
        reconciliation_note=row.get("reconciliation_note"),
        lease_owner=row.get("lease_owner"),
        lease_expires_at=_optional_ts(row, "lease_expires_at"),
    )


class SupabaseRenewalLedger:
    def __init__(self, client: Client) -> None:
        self._client = client

    def _table(self):
        return self._client.table(_ATTEMPTS_TABLE)

    def ping(self) -> None:
        response = self._table().select("attempt_id").limit(1).execute()
        raise_for_error(response, "reach renewal ledger")

    def get_attempt(self, attempt_id: UUID) -> Optional[RenewalAttempt]:
        response = self._table().select("*").eq("attempt_id", str(attempt_id)).limit(1).execute()
        raise_for_error(response, "get renewal attempt")

        rows = response_rows(response)
        if not rows:
            return None
        return _row_to_attempt(rows[0])

    def list_cycle_attempts(self, entitlement_id: str, cycle_key: str) -> List[RenewalAttempt]:
        response = (
            self._table()
            .select("*")
            .eq("entitlement_id", entitlement_id)
            .eq("cycle_key", cycle_key)
            .order("created_at_utc")
            .execute()
        )
        raise_for_error(response, "list cycle attempts")

        return [_row_to_attempt(row) for row in response_rows(response)]

    def get_open_attempt(self, entitlement_id: str, cycle_key: str) -> Optional[RenewalAttempt]:
        response = (
            self._table()
            .select("*")
            .eq("entitlement_id", entitlement_id)
            .eq("cycle_key", cycle_key)
            .neq("state", RenewalState.FAILED.value)
            .limit(1)
            .execute()
        )
        raise_for_error(response, "get open renewal attempt")

        rows = response_rows(response)
        if not rows:
            return None
        return _row_to_attempt(rows[0])

    def create_attempt(self, attempt: RenewalAttempt) -> RenewalAttempt:
        """
        Insert a new RenewalAttempt.

        Enforces:
        - At most one live attempt per (entitlement_id, cycle_key); a duplicate
          surfaces as LedgerWriteConflict.
        """

        try:
            response = self._table().insert(_attempt_to_row(attempt)).execute()
        except APIError as e:
            if str(getattr(e, "code", "")) == _UNIQUE_VIOLATION:
                raise LedgerWriteConflict(
                    f"Live renewal attempt already exists for ({attempt.entitlement_id}, {attempt.cycle_key})"
                ) from None
            raise RuntimeError(f"Failed to create renewal attempt: {e}") from e

        error = getattr(response, "error", None)
        if error:
            code = getattr(error, "code", None)
            if str(code) == _UNIQUE_VIOLATION:
                raise LedgerWriteConflict(
                    f"Live renewal attempt already exists for ({attempt.entitlement_id}, {attempt.cycle_key})"
                )
            raise RuntimeError(f"Failed to create renewal attempt: {error}")

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
        """
        Conditionally update an attempt.

        Requirements:
        - Must only update if state and version still match what the caller read.
        """

        check_transition(expected_state, new_state)
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update renewal attempt fields: {sorted(unknown)}")

        now = datetime.now(timezone.utc)
        payload: dict[str, Any] = {_column(k): _serialize(k, v) for k, v in fields.items()}
        payload["state"] = new_state.value
        payload["version"] = expected_version + 1
        payload["updated_at_utc"] = now.isoformat()

        ts_field = state_timestamp_field(new_state)
        if ts_field is not None and new_state != expected_state and ts_field not in fields:
            payload[_column(ts_field)] = now.isoformat()

        response = (
            self._table()
            .update(payload)
            .eq("attempt_id", str(attempt_id))
            .eq("state", expected_state.value)
            .eq("version", expected_version)
            .execute()
        )
        raise_for_error(response, "update renewal attempt")

        updated_rows = response_rows(response)
        if not updated_rows:
            # Either the attempt does not exist, or another writer got there first.
            raise LedgerWriteConflict(
                f"Attempt {attempt_id} is no longer {expected_state.value}/v{expected_version}"
            )

        return _row_to_attempt(updated_rows[0])

    def list_attempts(
        self, states: Optional[Iterable[RenewalState]] = None, limit: Optional[int] = 100
    ) -> List[RenewalAttempt]:
        query = self._table().select("*")
        if states is not None:
            query = query.in_("state", [s.value for s in states])
        query = query.order("created_at_utc", desc=True)
        if limit is not None:
            query = query.limit(limit)
        response = query.execute()
        raise_for_error(response, "list renewal attempts")

        return [_row_to_attempt(row) for row in response_rows(response)]

    def list_reconciliation_required(self) -> List[RenewalAttempt]:
        response = (
            self._table()
            .select("*")
            .eq("requires_reconciliation", True)
            .is_("reconciled_at_utc", "null")
            .order("created_at_utc")
            .execute()
        )
        raise_for_error(response, "list attempts needing reconciliation")

        return [_row_to_attempt(row) for row in response_rows(response)]

    def list_for_entitlement(self, entitlement_id: str) -> List[RenewalAttempt]:
        response = (
            self._table()
            .select("*")
            .eq("entitlement_id", entitlement_id)
            .order("created_at_utc", desc=True)
            .execute()
        )
        raise_for_error(response, "list renewal attempts for domain")

        return [_row_to_attempt(row) for row in response_rows(response)]


__all__ = [
    "SupabaseRenewalLedger",
]
