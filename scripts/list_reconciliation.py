#!/usr/bin/env python3
"""
Reconciliation Report

Lists renewals whose payment was captured but whose registrar extension failed,
and optionally records that support has settled one of them.

Usage:
    python list_reconciliation.py
    python list_reconciliation.py --resolve <attempt-id> --note "Refunded in Stripe"
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import List, Optional
from uuid import UUID

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from domain.renewal_attempt import RenewalAttempt
from services.bootstrap import build_ledger
from services.reconciliation_service import (
    ReconciliationError,
    list_pending_reconciliation,
    resolve_reconciliation,
)
from services.settings import RenewalSettings


def format_attempt(attempt: RenewalAttempt) -> str:
    failed_at = attempt.failed_at.isoformat() if attempt.failed_at else "-"
    return (
        f"{attempt.attempt_id}  entitlement={attempt.entitlement_id}  "
        f"cycle={attempt.cycle_key}  amount={attempt.amount} {attempt.currency}  "
        f"transaction={attempt.payment_transaction_id}  failed_at={failed_at}\n"
        f"    reason: {attempt.failure_detail or '-'}"
    )


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="List (and resolve) renewals that need manual reconciliation",
    )
    parser.add_argument("--resolve", metavar="ATTEMPT_ID", help="Mark this attempt as reconciled")
    parser.add_argument("--note", help="What was done to settle the attempt (required with --resolve)")
    args = parser.parse_args(argv)

    if args.resolve and not args.note:
        parser.error("--note is required with --resolve")

    try:
        ledger = build_ledger(RenewalSettings.from_env())

        if args.resolve:
            resolved = resolve_reconciliation(ledger, UUID(args.resolve), args.note)
            print(f"✓ Attempt {resolved.attempt_id} marked as reconciled")
            return 0

        attempts = list_pending_reconciliation(ledger)
        if not attempts:
            print("No renewals awaiting reconciliation")
            return 0

        print("=" * 60)
        print(f"RENEWALS AWAITING RECONCILIATION: {len(attempts)}")
        print("=" * 60)
        for attempt in attempts:
            print(format_attempt(attempt))
        return 0

    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        return 130

    except (ReconciliationError, ValueError) as e:
        print(f"\nERROR: {e}", file=sys.stderr)
        return 1

    except Exception as e:
        print(f"\nERROR: {e}", file=sys.stderr)
        import traceback
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
