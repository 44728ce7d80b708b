"""
Renewal orchestrator: drives one RenewalAttempt through its state machine.

    pending  --(charge succeeds)-------> charged
    pending  --(charge declined)-------> failed (payment_declined)
    pending  --(gateway unavailable)---> failed (payment_gateway_unavailable), after retries
    charged  --(extend succeeds)-------> extended
    charged  --(extend fails)----------> failed (registrar_extend_failed), after retries;
                                          payment stays recorded, flagged for reconciliation
    extended --(final write)-----------> completed

Guarantees:
- The registrar is never called for an attempt without a recorded charge.
- Every state change is a conditional ledger write; on conflict the attempt is
  re-read and processing continues from whatever state is recorded.
- Before any external call the processor holds the attempt's lease, so two
  overlapping job runs never drive the same attempt at the same time.
- Completed and failed attempts are never touched again.
"""

from __future__ import annotations

import logging
import os
import socket
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional
from uuid import uuid4

from domain.entitlement import Entitlement, to_minor_units
from domain.renewal_attempt import FailureReason, RenewalAttempt, RenewalState
from domain.renewal_event import RenewalEvent, RenewalOutcome
from domain.time import add_years, utcnow
from repositories.base import EntitlementStore, LedgerWriteConflict, RenewalLedger
from services.gateways import (
    ChargeResult,
    ChargeStatus,
    ExtensionResult,
    Notifier,
    PaymentGateway,
    Registrar,
)
from services.retry import RetryPolicy

logger = logging.getLogger(__name__)

DEFAULT_LEASE_DURATION = timedelta(minutes=15)
DEFAULT_MAX_CONFLICT_RETRIES = 3

_RELEASE_LEASE: Dict[str, Any] = {"lease_owner": None, "lease_expires_at": None}


def default_worker_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid4().hex[:8]}"


class RenewalOrchestrator:
    def __init__(
        self,
        ledger: RenewalLedger,
        entitlements: EntitlementStore,
        payment_gateway: PaymentGateway,
        registrar: Registrar,
        notifier: Notifier,
        *,
        payment_retry: Optional[RetryPolicy] = None,
        registrar_retry: Optional[RetryPolicy] = None,
        lease_duration: timedelta = DEFAULT_LEASE_DURATION,
        max_conflict_retries: int = DEFAULT_MAX_CONFLICT_RETRIES,
        disable_auto_renew_on_decline: bool = True,
        worker_id: Optional[str] = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._ledger = ledger
        self._entitlements = entitlements
        self._payment_gateway = payment_gateway
        self._registrar = registrar
        self._notifier = notifier
        self._payment_retry = payment_retry or RetryPolicy()
        self._registrar_retry = registrar_retry or RetryPolicy()
        self._lease_duration = lease_duration
        self._max_conflict_retries = max_conflict_retries
        self._disable_auto_renew_on_decline = disable_auto_renew_on_decline
        self._worker_id = worker_id or default_worker_id()
        self._clock = clock
        self._sleep = sleep

    @property
    def worker_id(self) -> str:
        return self._worker_id

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def process_attempt(self, attempt: RenewalAttempt) -> RenewalAttempt:
        """
        Advance the attempt as far as it can go and return its latest recorded form.

        Returns the attempt unchanged when it is already terminal, or when another
        worker holds its lease.
        """

        if attempt.is_terminal:
            logger.debug("Attempt %s already %s; nothing to do", attempt.attempt_id, attempt.state.value)
            return attempt

        current = attempt
        conflicts = 0
        while not current.is_terminal:
            try:
                if not self._holds_lease(current):
                    if current.is_leased_by_other(self._worker_id, self._clock()):
                        logger.info(
                            "Attempt %s is being processed by %s; skipping",
                            current.attempt_id,
                            current.lease_owner,
                        )
                        return current
                    current = self._claim(current)
                current = self._step(current)
            except LedgerWriteConflict as e:
                conflicts += 1
                if conflicts > self._max_conflict_retries:
                    logger.error("Giving up on attempt %s after %s ledger conflicts", current.attempt_id, conflicts)
                    raise
                latest = self._ledger.get_attempt(current.attempt_id)
                if latest is None:
                    raise RuntimeError(f"Renewal attempt {current.attempt_id} disappeared from the ledger") from e
                logger.info(
                    "Ledger conflict on attempt %s (%s); re-read as %s/v%s",
                    current.attempt_id,
                    e,
                    latest.state.value,
                    latest.version,
                )
                current = latest
        return current

    # ------------------------------------------------------------------
    # Ledger helpers
    # ------------------------------------------------------------------

    def _holds_lease(self, attempt: RenewalAttempt) -> bool:
        return (
            attempt.lease_owner == self._worker_id
            and attempt.lease_expires_at is not None
            and attempt.lease_expires_at > self._clock()
        )

    def _claim(self, attempt: RenewalAttempt) -> RenewalAttempt:
        return self._write(
            attempt,
            attempt.state,
            {
                "lease_owner": self._worker_id,
                "lease_expires_at": self._clock() + self._lease_duration,
            },
        )

    def _write(self, attempt: RenewalAttempt, new_state: RenewalState, fields: Dict[str, Any]) -> RenewalAttempt:
        return self._ledger.update_state(
            attempt.attempt_id,
            new_state,
            fields,
            expected_state=attempt.state,
            expected_version=attempt.version,
        )

    def _step(self, attempt: RenewalAttempt) -> RenewalAttempt:
        if attempt.state == RenewalState.PENDING:
            return self._charge(attempt)
        if attempt.state == RenewalState.CHARGED:
            return self._extend(attempt)
        if attempt.state == RenewalState.EXTENDED:
            return self._complete(attempt)
        return attempt

    # ------------------------------------------------------------------
    # pending -> charged | failed
    # ------------------------------------------------------------------

    def _charge(self, attempt: RenewalAttempt) -> RenewalAttempt:
        entitlement = self._entitlements.get_entitlement(attempt.entitlement_id)
        if entitlement is None:
            return self._fail_ineligible(attempt, "entitlement no longer exists")
        problem = self._ineligibility(entitlement, attempt)
        if problem is not None:
            return self._fail_ineligible(attempt, problem)

        result = self._charge_with_retry(entitlement, attempt)

        if result.succeeded:
            charged = self._write(
                attempt,
                RenewalState.CHARGED,
                {"payment_transaction_id": result.transaction_id, "charged_at": self._clock()},
            )
            logger.info(
                "Charged %s %s for %s (attempt %s, transaction %s)",
                attempt.amount,
                attempt.currency,
                entitlement.domain_name,
                attempt.attempt_id,
                result.transaction_id,
            )
            return charged

        if result.status == ChargeStatus.DECLINED:
            failed = self._fail(attempt, FailureReason.PAYMENT_DECLINED, result.message)
            logger.warning("Payment declined for %s (attempt %s): %s", entitlement.domain_name, attempt.attempt_id, result.message)
            if self._disable_auto_renew_on_decline:
                self._disable_auto_renew(entitlement)
            self._notify_failure(failed, entitlement, FailureReason.PAYMENT_DECLINED)
            return failed

        failed = self._fail(attempt, FailureReason.PAYMENT_GATEWAY_UNAVAILABLE, result.message)
        logger.warning(
            "Payment gateway unavailable for %s (attempt %s) after %s tries: %s",
            entitlement.domain_name,
            attempt.attempt_id,
            self._payment_retry.max_attempts,
            result.message,
        )
        return failed

    def _ineligibility(self, entitlement: Entitlement, attempt: RenewalAttempt) -> Optional[str]:
        if not entitlement.auto_renew:
            return "auto-renew was switched off"
        if not entitlement.has_payment_method:
            return "no payment method on file"
        if entitlement.status != "active":
            return f"entitlement status is {entitlement.status}"
        if entitlement.cycle_key != attempt.cycle_key:
            return f"entitlement already moved to cycle {entitlement.cycle_key}"
        return None

    def _fail_ineligible(self, attempt: RenewalAttempt, problem: str) -> RenewalAttempt:
        logger.info("Attempt %s not charged: %s", attempt.attempt_id, problem)
        return self._fail(attempt, FailureReason.ENTITLEMENT_INELIGIBLE, problem)

    def _charge_with_retry(self, entitlement: Entitlement, attempt: RenewalAttempt) -> ChargeResult:
        delays = iter(self._payment_retry.delays())
        while True:
            try:
                result = self._payment_gateway.charge(
                    entitlement.payment_method_ref or "",
                    to_minor_units(attempt.amount),
                    attempt.currency,
                    attempt.idempotency_key,
                )
            except Exception as e:
                logger.warning("Charge call raised for attempt %s: %s", attempt.attempt_id, e)
                result = ChargeResult.unavailable(str(e))

            if result.status != ChargeStatus.UNAVAILABLE:
                return result

            delay = next(delays, None)
            if delay is None:
                return result
            logger.info("Retrying charge for attempt %s in %.1fs", attempt.attempt_id, delay)
            self._sleep(delay)

    # ------------------------------------------------------------------
    # charged -> extended | failed
    # ------------------------------------------------------------------

    def _extend(self, attempt: RenewalAttempt) -> RenewalAttempt:
        entitlement = self._entitlements.get_entitlement(attempt.entitlement_id)
        if entitlement is None:
            return self._fail_after_charge(attempt, None, "entitlement no longer exists")

        if entitlement.cycle_key != attempt.cycle_key:
            # Expiration only moves after a confirmed extension, so a previous run
            # got this far and stopped before recording it.
            logger.info(
                "Attempt %s: %s already extended to %s; recording extension",
                attempt.attempt_id,
                entitlement.domain_name,
                entitlement.expires_at.isoformat(),
            )
            return self._write(
                attempt,
                RenewalState.EXTENDED,
                {"new_expires_at": entitlement.expires_at, "extended_at": self._clock()},
            )

        result = self._extend_with_retry(entitlement, attempt)
        if not result.success:
            return self._fail_after_charge(attempt, entitlement, result.message)

        new_expires_at = result.new_expires_at or add_years(entitlement.expires_at, entitlement.term_years)
        if new_expires_at <= entitlement.expires_at:
            logger.warning(
                "Registrar reported expiration %s for %s, not after stored %s",
                new_expires_at.isoformat(),
                entitlement.domain_name,
                entitlement.expires_at.isoformat(),
            )
        self._entitlements.advance_expiration(entitlement.entitlement_id, new_expires_at)

        extended = self._write(
            attempt,
            RenewalState.EXTENDED,
            {
                "registrar_confirmation_id": result.confirmation_id,
                "new_expires_at": new_expires_at,
                "extended_at": self._clock(),
            },
        )
        logger.info(
            "Extended %s to %s (attempt %s, confirmation %s)",
            entitlement.domain_name,
            new_expires_at.isoformat(),
            attempt.attempt_id,
            result.confirmation_id,
        )
        return extended

    def _extend_with_retry(self, entitlement: Entitlement, attempt: RenewalAttempt) -> ExtensionResult:
        delays = iter(self._registrar_retry.delays())
        while True:
            try:
                result = self._registrar.extend(
                    entitlement.domain_name,
                    entitlement.term_years,
                    attempt.idempotency_key,
                )
            except Exception as e:
                logger.warning("Registrar call raised for attempt %s: %s", attempt.attempt_id, e)
                result = ExtensionResult.failure(str(e))

            if result.success:
                return result

            delay = next(delays, None)
            if delay is None:
                return result
            logger.info("Retrying registrar extension for attempt %s in %.1fs", attempt.attempt_id, delay)
            self._sleep(delay)

    def _fail_after_charge(
        self, attempt: RenewalAttempt, entitlement: Optional[Entitlement], detail: Optional[str]
    ) -> RenewalAttempt:
        failed = self._write(
            attempt,
            RenewalState.FAILED,
            {
                "failure_reason": FailureReason.REGISTRAR_EXTEND_FAILED,
                "failure_detail": detail,
                "requires_reconciliation": True,
                "failed_at": self._clock(),
                **_RELEASE_LEASE,
            },
        )
        logger.error(
            "Renewal of %s failed after payment %s was captured (attempt %s): %s. Manual reconciliation required.",
            entitlement.domain_name if entitlement else attempt.entitlement_id,
            attempt.payment_transaction_id,
            attempt.attempt_id,
            detail,
        )
        self._notify_failure(failed, entitlement, FailureReason.REGISTRAR_EXTEND_FAILED)
        return failed

    # ------------------------------------------------------------------
    # extended -> completed
    # ------------------------------------------------------------------

    def _complete(self, attempt: RenewalAttempt) -> RenewalAttempt:
        if attempt.new_expires_at is not None:
            # Repeats the step-3 advance in case the previous run died before writing it.
            self._entitlements.advance_expiration(attempt.entitlement_id, attempt.new_expires_at)

        completed = self._write(
            attempt,
            RenewalState.COMPLETED,
            {"completed_at": self._clock(), **_RELEASE_LEASE},
        )

        entitlement = self._entitlements.get_entitlement(attempt.entitlement_id)
        logger.info(
            "Renewal completed for %s (attempt %s)",
            entitlement.domain_name if entitlement else attempt.entitlement_id,
            attempt.attempt_id,
        )
        self._notify(
            RenewalEvent(
                domain_ref=entitlement.domain_name if entitlement else attempt.entitlement_id,
                outcome=RenewalOutcome.SUCCESS,
                entitlement_id=attempt.entitlement_id,
                occurred_at=self._clock(),
                attempt_id=attempt.attempt_id,
                account_email=entitlement.account_email if entitlement else None,
                amount=attempt.amount,
                currency=attempt.currency,
                new_expires_at=completed.new_expires_at,
            )
        )
        return completed

    # ------------------------------------------------------------------
    # Shared
    # ------------------------------------------------------------------

    def _fail(self, attempt: RenewalAttempt, reason: FailureReason, detail: Optional[str]) -> RenewalAttempt:
        return self._write(
            attempt,
            RenewalState.FAILED,
            {
                "failure_reason": reason,
                "failure_detail": detail,
                "failed_at": self._clock(),
                **_RELEASE_LEASE,
            },
        )

    def _disable_auto_renew(self, entitlement: Entitlement) -> None:
        try:
            self._entitlements.disable_auto_renew(entitlement.entitlement_id)
            logger.info("Disabled auto-renew for %s due to payment failure", entitlement.domain_name)
        except Exception as e:
            logger.error("Failed to disable auto-renew for %s: %s", entitlement.domain_name, e)

    def _notify_failure(
        self, attempt: RenewalAttempt, entitlement: Optional[Entitlement], reason: FailureReason
    ) -> None:
        self._notify(
            RenewalEvent(
                domain_ref=entitlement.domain_name if entitlement else attempt.entitlement_id,
                outcome=RenewalOutcome.FAILURE,
                entitlement_id=attempt.entitlement_id,
                occurred_at=self._clock(),
                reason=reason.value,
                attempt_id=attempt.attempt_id,
                account_email=entitlement.account_email if entitlement else None,
                amount=attempt.amount,
                currency=attempt.currency,
                expires_at=entitlement.expires_at if entitlement else None,
            )
        )

    def _notify(self, event: RenewalEvent) -> None:
        try:
            self._notifier.notify(event)
        except Exception as e:
            logger.error("Failed to send renewal %s notification for %s: %s", event.outcome.value, event.domain_ref, e)


__all__ = [
    "DEFAULT_LEASE_DURATION",
    "RenewalOrchestrator",
    "default_worker_id",
]
