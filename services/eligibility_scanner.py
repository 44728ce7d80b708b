"""
Eligibility scanner for automatic domain renewals.

Handles:
- Selecting entitlements that are due within the lookahead window
- Creating exactly one pending RenewalAttempt per (entitlement, renewal cycle)
- Returning in-flight attempts left behind by an interrupted run so they resume
- Blocking cycles whose captured payment still awaits manual reconciliation
- Reminding account holders who have auto-renew on but no payment method
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence

from domain.entitlement import DEFAULT_LOOKAHEAD, Entitlement
from domain.renewal_attempt import IN_FLIGHT_STATES, RenewalAttempt
from domain.renewal_event import PAYMENT_METHOD_MISSING, RenewalEvent, RenewalOutcome
from domain.time import require_utc_timestamp, utcnow
from repositories.base import EntitlementStore, LedgerWriteConflict, RenewalLedger
from services.gateways import Notifier

logger = logging.getLogger(__name__)

DEFAULT_REMINDER_DAYS: Sequence[int] = (30, 14, 7, 3, 1)


@dataclass
class ScanResult:
    """
    attempts: non-terminal attempts to hand to the orchestrator
    created: new pending attempts created by this scan (in a dry run: that would be created)
    resumed: existing in-flight attempts picked up again, from the window or the ledger
    skipped: candidates with nothing to do (cycle already completed, not eligible)
    blocked: cycles held back by an unreconciled captured payment
    missing_payment_method: auto-renew entitlements without a payment method
    errors: candidates whose lookup or creation failed (left for the next scan)
    """

    scanned_at: datetime
    attempts: List[RenewalAttempt] = field(default_factory=list)
    candidates: int = 0
    created: int = 0
    resumed: int = 0
    skipped: int = 0
    blocked: int = 0
    missing_payment_method: int = 0
    errors: int = 0


class EligibilityScanner:
    def __init__(
        self,
        entitlements: EntitlementStore,
        ledger: RenewalLedger,
        notifier: Optional[Notifier] = None,
        *,
        lookahead: timedelta = DEFAULT_LOOKAHEAD,
        reminder_days: Sequence[int] = DEFAULT_REMINDER_DAYS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._entitlements = entitlements
        self._ledger = ledger
        self._notifier = notifier
        self._lookahead = lookahead
        self._reminder_days = frozenset(reminder_days)
        self._clock = clock

    @property
    def lookahead(self) -> timedelta:
        return self._lookahead

    def scan(self, now: Optional[datetime] = None, *, dry_run: bool = False) -> ScanResult:
        """
        Produce the attempts due for processing.

        Two sources feed the result:
        - entitlements due within the lookahead window (new or existing attempt for the cycle)
        - every pending/charged/extended attempt in the ledger, whatever the entitlement
          looks like now; an interrupted run may already have moved its expiration or
          the owner may have switched auto-renew off after the charge

        dry_run: nothing is written and no reminders are sent; attempts that would be
        created are returned unsaved.

        A failure on one entitlement is logged and counted; the scan continues.
        """

        ts = now or self._clock()
        require_utc_timestamp("now", ts)
        result = ScanResult(scanned_at=ts)

        candidates = self._entitlements.list_renewal_candidates(ts + self._lookahead)
        result.candidates = len(candidates)
        logger.info(
            "Renewal scan start now=%s lookahead_days=%s candidates=%s dry_run=%s",
            ts.isoformat(),
            self._lookahead.days,
            len(candidates),
            dry_run,
        )

        for entitlement in candidates:
            try:
                self._scan_one(entitlement, ts, result, dry_run)
            except Exception as e:
                result.errors += 1
                logger.exception(
                    "Renewal scan failed for entitlement=%s domain=%s: %s",
                    entitlement.entitlement_id,
                    entitlement.domain_name,
                    e,
                )

        self._collect_in_flight(result)

        logger.info(
            "Renewal scan end created=%s resumed=%s skipped=%s blocked=%s missing_payment_method=%s errors=%s",
            result.created,
            result.resumed,
            result.skipped,
            result.blocked,
            result.missing_payment_method,
            result.errors,
        )
        return result

    def _collect_in_flight(self, result: ScanResult) -> None:
        try:
            in_flight = self._ledger.list_attempts(states=IN_FLIGHT_STATES, limit=None)
        except Exception as e:
            result.errors += 1
            logger.exception("Renewal scan could not list in-flight attempts: %s", e)
            return

        seen = {a.attempt_id for a in result.attempts}
        for attempt in sorted(in_flight, key=lambda a: a.created_at):
            if attempt.attempt_id in seen:
                continue
            seen.add(attempt.attempt_id)
            result.resumed += 1
            result.attempts.append(attempt)
            logger.info(
                "Resuming %s renewal attempt %s for entitlement %s (%s)",
                attempt.state.value,
                attempt.attempt_id,
                attempt.entitlement_id,
                attempt.cycle_key,
            )

    def _scan_one(self, entitlement: Entitlement, now: datetime, result: ScanResult, dry_run: bool) -> None:
        if entitlement.auto_renew and entitlement.status == "active" and not entitlement.has_payment_method:
            result.missing_payment_method += 1
            if not dry_run:
                self._remind_missing_payment_method(entitlement, now)
            return

        if not entitlement.is_eligible_for_auto_renew(now, self._lookahead):
            result.skipped += 1
            return

        cycle_key = entitlement.cycle_key
        attempts = self._ledger.list_cycle_attempts(entitlement.entitlement_id, cycle_key)

        live = next((a for a in attempts if a.is_live), None)
        if live is not None:
            self._collect_existing(live, result)
            return

        if any(a.needs_reconciliation for a in attempts):
            result.blocked += 1
            logger.warning(
                "Renewal of %s (%s) blocked: captured payment awaits reconciliation",
                entitlement.domain_name,
                cycle_key,
            )
            return

        attempt = RenewalAttempt.new(entitlement, now)
        if dry_run:
            result.created += 1
            result.attempts.append(attempt)
            logger.info("Dry run: would create renewal attempt for %s (%s)", entitlement.domain_name, cycle_key)
            return

        try:
            created = self._ledger.create_attempt(attempt)
        except LedgerWriteConflict:
            # Another run created the attempt between our read and our insert.
            existing = self._ledger.get_open_attempt(entitlement.entitlement_id, cycle_key)
            if existing is None:
                raise
            self._collect_existing(existing, result)
            return

        result.created += 1
        result.attempts.append(created)
        logger.info(
            "Created renewal attempt %s for %s (%s)",
            created.attempt_id,
            entitlement.domain_name,
            cycle_key,
        )

    @staticmethod
    def _collect_existing(attempt: RenewalAttempt, result: ScanResult) -> None:
        if attempt.is_terminal:
            result.skipped += 1
            return
        result.resumed += 1
        result.attempts.append(attempt)

    def _remind_missing_payment_method(self, entitlement: Entitlement, now: datetime) -> None:
        days_left = entitlement.days_until_expiration(now)
        if self._notifier is None or days_left not in self._reminder_days:
            return

        event = RenewalEvent(
            domain_ref=entitlement.domain_name,
            outcome=RenewalOutcome.FAILURE,
            entitlement_id=entitlement.entitlement_id,
            occurred_at=now,
            reason=PAYMENT_METHOD_MISSING,
            account_email=entitlement.account_email,
            expires_at=entitlement.expires_at,
        )
        try:
            self._notifier.notify(event)
        except Exception as e:
            logger.error(
                "Failed to send missing-payment-method notice for %s: %s",
                entitlement.domain_name,
                e,
            )


__all__ = [
    "DEFAULT_REMINDER_DAYS",
    "EligibilityScanner",
    "ScanResult",
]
