#!/usr/bin/env python3
"""
Automatic Renewal Job

Renews every active auto-renew domain expiring within the lookahead window:
charges the saved payment method, extends the registration at the registrar and
records each step in the renewal ledger. Meant to be run from cron (daily).

Usage:
    python run_auto_renew.py
    python run_auto_renew.py --lookahead-days 14 --workers 8
    python run_auto_renew.py --dry-run --verbose

Exit codes:
    0   the run finished (individual domains may still have failed)
    1   startup failure (configuration, ledger unreachable) or the scan itself failed
    130 interrupted
"""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from services.bootstrap import build_components
from services.renewal_job import RenewalJobResult, run_renewal_job
from services.settings import RenewalSettings

logger = logging.getLogger("run_auto_renew")


def print_summary(result: RenewalJobResult) -> None:
    c = result.counters
    print()
    print("=" * 60)
    print("AUTO-RENEW SUMMARY" + (" (DRY RUN)" if result.dry_run else ""))
    print("=" * 60)
    print(f"Started at:              {result.started_at.isoformat()}")
    print(f"Candidates:              {c.candidates}")
    print(f"  New attempts:          {c.created}")
    print(f"  Resumed attempts:      {c.resumed}")
    print(f"  Blocked (reconcile):   {c.blocked}")
    print(f"  No payment method:     {c.missing_payment_method}")
    print(f"  Skipped:               {c.skipped}")
    if not result.dry_run:
        print(f"Renewed:                 {c.renewed}")
        print(f"Payment declined:        {c.declined}")
        print(f"Gateway unavailable:     {c.gateway_unavailable}")
        print(f"Registrar failed:        {c.registrar_failed}")
        print(f"Ineligible at charge:    {c.ineligible}")
        print(f"Deferred (other run):    {c.deferred}")
    print(f"Errors:                  {c.errors}")

    pending = result.reconciliation_required
    if pending:
        print()
        print("Payments captured without an extension (manual reconciliation required):")
        for attempt in pending:
            print(
                f"  attempt={attempt.attempt_id} entitlement={attempt.entitlement_id} "
                f"transaction={attempt.payment_transaction_id}"
            )
    print("=" * 60)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Renew domains with auto-renew enabled that expire soon",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Daily cron run with configured defaults
  python run_auto_renew.py

  # Look further ahead and use more workers
  python run_auto_renew.py --lookahead-days 45 --workers 8

  # See what would be renewed without charging anyone
  python run_auto_renew.py --dry-run
        """,
    )

    parser.add_argument(
        "--lookahead-days",
        type=int,
        help="Renew domains expiring within this many days (default: RENEWAL_LOOKAHEAD_DAYS or 30)",
    )

    parser.add_argument(
        "--workers",
        type=int,
        help="Number of attempts processed concurrently (default: RENEWAL_WORKERS or 4)",
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Scan only: report what would be renewed without writing attempts, charging or extending",
    )

    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging",
    )

    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    args = parse_args(argv)

    try:
        settings = RenewalSettings.from_env()
        overrides = {}
        if args.lookahead_days is not None:
            overrides["lookahead_days"] = args.lookahead_days
        if args.workers is not None:
            overrides["workers"] = args.workers
        if overrides:
            settings = replace(settings, **overrides)

        logging.basicConfig(
            level=logging.DEBUG if args.verbose else getattr(logging, settings.log_level, logging.INFO),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )

        print("Starting auto-renew run...")
        print(f"  Lookahead: {settings.lookahead_days} days")
        print(f"  Workers:   {settings.workers}")
        print(f"  Dry run:   {'yes' if args.dry_run else 'no'}")

        components = build_components(settings, dry_run=args.dry_run)
    except KeyboardInterrupt:
        print("\n\nAuto-renew interrupted by user")
        return 130
    except Exception as e:
        print(f"\nERROR: startup failed: {e}", file=sys.stderr)
        return 1

    try:
        result = run_renewal_job(
            components.scanner,
            components.orchestrator,
            max_workers=settings.workers,
            dry_run=args.dry_run,
        )
    except KeyboardInterrupt:
        print("\n\nAuto-renew interrupted by user; unfinished attempts resume on the next run")
        return 130
    except Exception as e:
        logger.exception("Auto-renew run failed: %s", e)
        print(f"\nERROR: {e}", file=sys.stderr)
        return 1

    print_summary(result)
    return 0


if __name__ == "__main__":
    sys.exit(main())
