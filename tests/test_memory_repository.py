"""
Tests for `repositories/memory_repository.py`.

The in-memory stores must enforce the same constraints as the database:
one live attempt per cycle, conditional (state, version) updates and a
forward-only expiration.
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from domain.renewal_attempt import FailureReason, RenewalAttempt, RenewalState
from repositories.base import LedgerWriteConflict
from repositories.memory_repository import InMemoryEntitlementStore, InMemoryRenewalLedger
from fakes import NOW, FixedClock, make_entitlement


def _ledger() -> InMemoryRenewalLedger:
    return InMemoryRenewalLedger(clock=FixedClock())


def test_create_rejects_second_live_attempt_for_cycle() -> None:
    ledger = _ledger()
    entitlement = make_entitlement()
    ledger.create_attempt(RenewalAttempt.new(entitlement, NOW))

    with pytest.raises(LedgerWriteConflict):
        ledger.create_attempt(RenewalAttempt.new(entitlement, NOW))


def test_failed_attempt_does_not_block_new_live_attempt() -> None:
    ledger = _ledger()
    entitlement = make_entitlement()
    first = ledger.create_attempt(RenewalAttempt.new(entitlement, NOW))
    ledger.update_state(
        first.attempt_id,
        RenewalState.FAILED,
        {"failure_reason": FailureReason.PAYMENT_GATEWAY_UNAVAILABLE},
        expected_state=RenewalState.PENDING,
        expected_version=1,
    )

    second = ledger.create_attempt(RenewalAttempt.new(entitlement, NOW))

    assert ledger.get_open_attempt(entitlement.entitlement_id, entitlement.cycle_key) == second
    assert len(ledger.list_cycle_attempts(entitlement.entitlement_id, entitlement.cycle_key)) == 2


def test_update_bumps_version_and_stamps_timestamp() -> None:
    ledger = _ledger()
    attempt = ledger.create_attempt(RenewalAttempt.new(make_entitlement(), NOW))

    charged = ledger.update_state(
        attempt.attempt_id,
        RenewalState.CHARGED,
        {"payment_transaction_id": "tx123"},
        expected_state=RenewalState.PENDING,
        expected_version=1,
    )

    assert charged.version == 2
    assert charged.charged_at == NOW
    assert ledger.get_attempt(attempt.attempt_id) == charged


def test_stale_version_conflicts() -> None:
    ledger = _ledger()
    attempt = ledger.create_attempt(RenewalAttempt.new(make_entitlement(), NOW))
    ledger.update_state(
        attempt.attempt_id,
        RenewalState.PENDING,
        {"lease_owner": "w1"},
        expected_state=RenewalState.PENDING,
        expected_version=1,
    )

    with pytest.raises(LedgerWriteConflict):
        ledger.update_state(
            attempt.attempt_id,
            RenewalState.CHARGED,
            {"payment_transaction_id": "tx123"},
            expected_state=RenewalState.PENDING,
            expected_version=1,
        )


def test_stale_state_conflicts() -> None:
    ledger = _ledger()
    attempt = ledger.create_attempt(RenewalAttempt.new(make_entitlement(), NOW))

    with pytest.raises(LedgerWriteConflict):
        ledger.update_state(
            attempt.attempt_id,
            RenewalState.EXTENDED,
            {},
            expected_state=RenewalState.CHARGED,
            expected_version=1,
        )


def test_illegal_transition_is_rejected_before_write() -> None:
    ledger = _ledger()
    attempt = ledger.create_attempt(RenewalAttempt.new(make_entitlement(), NOW))

    with pytest.raises(ValueError):
        ledger.update_state(
            attempt.attempt_id,
            RenewalState.COMPLETED,
            {},
            expected_state=RenewalState.PENDING,
            expected_version=1,
        )
    assert ledger.get_attempt(attempt.attempt_id) == attempt


def test_list_reconciliation_required_excludes_reconciled() -> None:
    ledger = _ledger()
    attempt = ledger.create_attempt(RenewalAttempt.new(make_entitlement(), NOW))
    charged = ledger.update_state(
        attempt.attempt_id,
        RenewalState.CHARGED,
        {"payment_transaction_id": "tx123"},
        expected_state=RenewalState.PENDING,
        expected_version=1,
    )
    failed = ledger.update_state(
        attempt.attempt_id,
        RenewalState.FAILED,
        {"failure_reason": FailureReason.REGISTRAR_EXTEND_FAILED, "requires_reconciliation": True},
        expected_state=RenewalState.CHARGED,
        expected_version=charged.version,
    )
    assert ledger.list_reconciliation_required() == [failed]

    ledger.update_state(
        attempt.attempt_id,
        RenewalState.FAILED,
        {"reconciled_at": NOW, "reconciliation_note": "refunded"},
        expected_state=RenewalState.FAILED,
        expected_version=failed.version,
    )
    assert ledger.list_reconciliation_required() == []


def test_list_attempts_filters_and_orders_newest_first() -> None:
    ledger = _ledger()
    older = ledger.create_attempt(RenewalAttempt.new(make_entitlement(entitlement_id="a"), NOW))
    newer = ledger.create_attempt(
        RenewalAttempt.new(make_entitlement(entitlement_id="b"), NOW + timedelta(minutes=5))
    )

    assert ledger.list_attempts() == [newer, older]
    assert ledger.list_attempts(limit=1) == [newer]
    assert ledger.list_attempts(limit=None) == [newer, older]
    assert ledger.list_attempts(states=[RenewalState.COMPLETED]) == []
    assert ledger.list_for_entitlement("a") == [older]


def test_candidates_filter_and_sort() -> None:
    soon = make_entitlement(entitlement_id="soon", expires_at=NOW + timedelta(days=3))
    later = make_entitlement(entitlement_id="later", expires_at=NOW + timedelta(days=20))
    far = make_entitlement(entitlement_id="far", expires_at=NOW + timedelta(days=90))
    off = make_entitlement(entitlement_id="off", auto_renew=False)
    expired = make_entitlement(entitlement_id="expired", status="expired")
    store = InMemoryEntitlementStore([later, far, off, soon, expired])

    candidates = store.list_renewal_candidates(NOW + timedelta(days=30))

    assert [e.entitlement_id for e in candidates] == ["soon", "later"]


def test_advance_expiration_is_forward_only() -> None:
    entitlement = make_entitlement()
    store = InMemoryEntitlementStore([entitlement])
    later = entitlement.expires_at + timedelta(days=365)

    assert store.advance_expiration("dom-1", later).expires_at == later
    assert store.advance_expiration("dom-1", entitlement.expires_at).expires_at == later
    assert store.advance_expiration("missing", later) is None


def test_disable_auto_renew() -> None:
    store = InMemoryEntitlementStore([make_entitlement()])

    store.disable_auto_renew("dom-1")

    assert store.get_entitlement("dom-1").auto_renew is False
