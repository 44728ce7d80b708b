"""
Renewal job: one batch run of automatic domain renewals.

scan -> fan the attempts out to a worker pool -> aggregate counters.

A failure while processing one attempt is logged, counted and never aborts the
batch. Attempts left non-terminal (exceptions, leases held elsewhere, interrupted
runs) are resumed by the next run.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from domain.renewal_attempt import FailureReason, RenewalAttempt, RenewalState
from services.eligibility_scanner import EligibilityScanner, ScanResult
from services.renewal_orchestrator import RenewalOrchestrator

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 4


@dataclass
class RenewalJobCounters:
    candidates: int = 0
    created: int = 0
    resumed: int = 0
    blocked: int = 0
    missing_payment_method: int = 0
    processed: int = 0
    renewed: int = 0
    declined: int = 0
    gateway_unavailable: int = 0
    registrar_failed: int = 0
    ineligible: int = 0
    deferred: int = 0
    skipped: int = 0
    errors: int = 0


@dataclass
class RenewalJobResult:
    started_at: datetime
    dry_run: bool
    counters: RenewalJobCounters = field(default_factory=RenewalJobCounters)
    attempts: List[RenewalAttempt] = field(default_factory=list)

    @property
    def reconciliation_required(self) -> List[RenewalAttempt]:
        return [a for a in self.attempts if a.needs_reconciliation]

    def as_dict(self) -> Dict[str, Any]:
        return {
            "ok": True,
            "started_at": self.started_at.isoformat(),
            "dry_run": self.dry_run,
            "counters": asdict(self.counters),
        }


def _count_outcome(counters: RenewalJobCounters, attempt: RenewalAttempt) -> None:
    if attempt.state == RenewalState.COMPLETED:
        counters.renewed += 1
    elif attempt.state == RenewalState.FAILED:
        if attempt.failure_reason == FailureReason.PAYMENT_DECLINED:
            counters.declined += 1
        elif attempt.failure_reason == FailureReason.PAYMENT_GATEWAY_UNAVAILABLE:
            counters.gateway_unavailable += 1
        elif attempt.failure_reason == FailureReason.REGISTRAR_EXTEND_FAILED:
            counters.registrar_failed += 1
        else:
            counters.ineligible += 1
    else:
        # Leased by another run; left for whoever holds it.
        counters.deferred += 1


def _seed_from_scan(counters: RenewalJobCounters, scan: ScanResult) -> None:
    counters.candidates = scan.candidates
    counters.created = scan.created
    counters.resumed = scan.resumed
    counters.blocked = scan.blocked
    counters.missing_payment_method = scan.missing_payment_method
    counters.skipped = scan.skipped
    counters.errors = scan.errors


def run_renewal_job(
    scanner: EligibilityScanner,
    orchestrator: Optional[RenewalOrchestrator],
    *,
    max_workers: int = DEFAULT_MAX_WORKERS,
    dry_run: bool = False,
    now: Optional[datetime] = None,
) -> RenewalJobResult:
    """
    Run one renewal batch.

    dry_run: scan only. No attempt is written, no reminder is sent, and the payment
    gateway and registrar are never called.
    """

    if max_workers < 1:
        raise ValueError("max_workers must be >= 1")
    if orchestrator is None and not dry_run:
        raise ValueError("an orchestrator is required unless dry_run is set")

    scan = scanner.scan(now, dry_run=dry_run)
    result = RenewalJobResult(started_at=scan.scanned_at, dry_run=dry_run)
    counters = result.counters
    _seed_from_scan(counters, scan)

    logger.info(
        "Renewal job start started_at=%s workers=%s dry_run=%s attempts=%s",
        scan.scanned_at.isoformat(),
        max_workers,
        dry_run,
        len(scan.attempts),
    )

    if dry_run or orchestrator is None:
        result.attempts = list(scan.attempts)
        logger.info("Dry run: %s attempts would be processed", len(scan.attempts))
        return result

    if scan.attempts:
        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="renewal") as pool:
            futures = {pool.submit(orchestrator.process_attempt, a): a for a in scan.attempts}
            for future in as_completed(futures):
                attempt = futures[future]
                try:
                    final = future.result()
                except Exception as e:
                    counters.errors += 1
                    logger.exception(
                        "Renewal job error attempt=%s entitlement=%s: %s",
                        attempt.attempt_id,
                        attempt.entitlement_id,
                        e,
                    )
                    continue
                counters.processed += 1
                result.attempts.append(final)
                _count_outcome(counters, final)

    logger.info(
        "Renewal job end candidates=%s renewed=%s declined=%s gateway_unavailable=%s "
        "registrar_failed=%s ineligible=%s deferred=%s blocked=%s missing_payment_method=%s "
        "skipped=%s errors=%s",
        counters.candidates,
        counters.renewed,
        counters.declined,
        counters.gateway_unavailable,
        counters.registrar_failed,
        counters.ineligible,
        counters.deferred,
        counters.blocked,
        counters.missing_payment_method,
        counters.skipped,
        counters.errors,
    )
    return result


__all__ = [
    "DEFAULT_MAX_WORKERS",
    "RenewalJobCounters",
    "RenewalJobResult",
    "run_renewal_job",
]
