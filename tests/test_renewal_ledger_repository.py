"""
Tests for `repositories/renewal_ledger_repository.py` against a fake Supabase client.
"""

from __future__ import annotations

from datetime import timedelta
from uuid import UUID

import pytest
from postgrest.exceptions import APIError

from domain.renewal_attempt import FailureReason, RenewalAttempt, RenewalState
from repositories.base import LedgerWriteConflict
from repositories.renewal_ledger_repository import SupabaseRenewalLedger
from fakes import NOW, FakeResponse, FakeSupabaseClient, make_entitlement

ATTEMPT_ID = UUID("00000000-0000-0000-0000-000000000abc")


def _row(**overrides) -> dict:
    row = {
        "attempt_id": str(ATTEMPT_ID),
        "entitlement_id": "dom-1",
        "cycle_key": "renew-before-2025-02-11",
        "state": "pending",
        "amount": "14.99",
        "currency": "USD",
        "created_at_utc": "2025-02-01T06:00:00+00:00",
        "updated_at_utc": "2025-02-01T06:00:00Z",
        "version": 1,
        "requires_reconciliation": False,
    }
    row.update(overrides)
    return row


def test_get_attempt_maps_row() -> None:
    client = FakeSupabaseClient(
        FakeResponse(
            data=[
                _row(
                    state="failed",
                    version=4,
                    payment_transaction_id="tx123",
                    failure_reason="registrar_extend_failed",
                    failed_at_utc="2025-02-01T06:01:00Z",
                    requires_reconciliation=True,
                )
            ]
        )
    )
    ledger = SupabaseRenewalLedger(client)

    attempt = ledger.get_attempt(ATTEMPT_ID)

    assert client.tables == ["renewal_attempts"]
    assert attempt.attempt_id == ATTEMPT_ID
    assert attempt.state == RenewalState.FAILED
    assert attempt.failure_reason == FailureReason.REGISTRAR_EXTEND_FAILED
    assert attempt.failed_at == NOW + timedelta(minutes=1)
    assert attempt.needs_reconciliation


def test_get_attempt_missing_returns_none() -> None:
    ledger = SupabaseRenewalLedger(FakeSupabaseClient(FakeResponse(data=[])))

    assert ledger.get_attempt(ATTEMPT_ID) is None


def test_error_response_raises_runtime_error() -> None:
    ledger = SupabaseRenewalLedger(FakeSupabaseClient(FakeResponse(error="permission denied")))

    with pytest.raises(RuntimeError, match="Failed to get renewal attempt: permission denied"):
        ledger.get_attempt(ATTEMPT_ID)


def test_create_attempt_serializes_row() -> None:
    client = FakeSupabaseClient(FakeResponse(data=[{}]))
    attempt = RenewalAttempt.new(make_entitlement(), NOW)

    SupabaseRenewalLedger(client).create_attempt(attempt)

    (args, _), = client.query.called("insert")
    row = args[0]
    assert row["attempt_id"] == str(attempt.attempt_id)
    assert row["state"] == "pending"
    assert row["amount"] == "14.99"
    assert row["created_at_utc"] == "2025-02-01T06:00:00+00:00"
    assert row["failure_reason"] is None


def test_create_duplicate_raises_conflict() -> None:
    client = FakeSupabaseClient(APIError({"code": "23505", "message": "duplicate key value"}))

    with pytest.raises(LedgerWriteConflict):
        SupabaseRenewalLedger(client).create_attempt(RenewalAttempt.new(make_entitlement(), NOW))


def test_create_other_api_error_raises_runtime_error() -> None:
    client = FakeSupabaseClient(APIError({"code": "42501", "message": "permission denied"}))

    with pytest.raises(RuntimeError):
        SupabaseRenewalLedger(client).create_attempt(RenewalAttempt.new(make_entitlement(), NOW))


def test_update_state_is_conditional_on_state_and_version() -> None:
    client = FakeSupabaseClient(
        FakeResponse(data=[_row(state="charged", version=3, payment_transaction_id="tx123", charged_at_utc="2025-02-01T06:00:05Z")])
    )

    updated = SupabaseRenewalLedger(client).update_state(
        ATTEMPT_ID,
        RenewalState.CHARGED,
        {"payment_transaction_id": "tx123"},
        expected_state=RenewalState.PENDING,
        expected_version=2,
    )

    assert updated.state == RenewalState.CHARGED
    assert updated.version == 3
    (args, _), = client.query.called("update")
    payload = args[0]
    assert payload["state"] == "charged"
    assert payload["version"] == 3
    assert payload["payment_transaction_id"] == "tx123"
    assert "charged_at_utc" in payload
    assert "updated_at_utc" in payload
    eqs = [args for args, _ in client.query.called("eq")]
    assert ("attempt_id", str(ATTEMPT_ID)) in eqs
    assert ("state", "pending") in eqs
    assert ("version", 2) in eqs


def test_update_state_serializes_enum_and_timestamps() -> None:
    client = FakeSupabaseClient(FakeResponse(data=[_row(state="pending", version=2, lease_owner="w1")]))

    SupabaseRenewalLedger(client).update_state(
        ATTEMPT_ID,
        RenewalState.PENDING,
        {"lease_owner": "w1", "lease_expires_at": NOW},
        expected_state=RenewalState.PENDING,
        expected_version=1,
    )

    (args, _), = client.query.called("update")
    assert args[0]["lease_expires_at_utc"] == "2025-02-01T06:00:00+00:00"
    assert "charged_at_utc" not in args[0]


def test_update_state_no_rows_is_conflict() -> None:
    client = FakeSupabaseClient(FakeResponse(data=[]))

    with pytest.raises(LedgerWriteConflict):
        SupabaseRenewalLedger(client).update_state(
            ATTEMPT_ID,
            RenewalState.CHARGED,
            {"payment_transaction_id": "tx123"},
            expected_state=RenewalState.PENDING,
            expected_version=1,
        )


def test_update_state_rejects_identity_fields() -> None:
    client = FakeSupabaseClient()

    with pytest.raises(ValueError):
        SupabaseRenewalLedger(client).update_state(
            ATTEMPT_ID,
            RenewalState.PENDING,
            {"cycle_key": "other"},
            expected_state=RenewalState.PENDING,
            expected_version=1,
        )


def test_list_reconciliation_required_filters_unreconciled() -> None:
    client = FakeSupabaseClient(FakeResponse(data=[]))

    assert SupabaseRenewalLedger(client).list_reconciliation_required() == []
    assert (("requires_reconciliation", True), {}) in client.query.called("eq")
    assert (("reconciled_at_utc", "null"), {}) in client.query.called("is_")


def test_list_attempts_filters_by_state() -> None:
    client = FakeSupabaseClient(FakeResponse(data=[_row()]))

    attempts = SupabaseRenewalLedger(client).list_attempts(states=[RenewalState.PENDING], limit=5)

    assert len(attempts) == 1
    assert client.query.called("in_") == [(("state", ["pending"]), {})]
    assert client.query.called("limit") == [((5,), {})]


def test_list_attempts_without_limit_reads_every_row() -> None:
    client = FakeSupabaseClient(FakeResponse(data=[_row()]))

    SupabaseRenewalLedger(client).list_attempts(states=[RenewalState.CHARGED], limit=None)

    assert client.query.called("limit") == []


def test_ping_reads_attempts_table() -> None:
    client = FakeSupabaseClient(FakeResponse(data=[]))

    SupabaseRenewalLedger(client).ping()

    assert client.tables == ["renewal_attempts"]
    assert client.query.called("limit")


def test_ping_reports_unreachable_ledger() -> None:
    client = FakeSupabaseClient(FakeResponse(error="connection refused"))

    with pytest.raises(RuntimeError, match="reach renewal ledger"):
        SupabaseRenewalLedger(client).ping()
