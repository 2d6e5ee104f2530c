#!/usr/bin/env python3
"""
Re-run commission reconciliation for captured purchases.

Repair job for commissions that were missed (for example when the reconciler
logged "Commission reconciliation failed"). Safe to run any number of times:
purchases that already belong to a ledger are skipped.

Usage:
    python scripts/reconcile_commissions.py --start 2025-03-01 --end 2025-03-31
    python scripts/reconcile_commissions.py --start 2025-03-01 --end 2025-03-31 --dry-run
"""

from __future__ import annotations

import argparse
import logging
import sys
from collections import Counter
from datetime import datetime, time, timezone
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from repositories import commission_ledger_repository
from repositories.purchase_repository import list_captured_purchases
from services.commission_reconciler import ReconcileOutcome, update_commission_for_purchase


def _parse_date(value: str, end_of_day: bool) -> datetime:
    day = datetime.strptime(value, "%Y-%m-%d").date()
    clock = time.max if end_of_day else time.min
    return datetime.combine(day, clock, tzinfo=timezone.utc)


def main() -> int:
    parser = argparse.ArgumentParser(description="Backfill missing partner commissions")
    parser.add_argument("--start", required=True, help="First capture date (YYYY-MM-DD, UTC)")
    parser.add_argument("--end", required=True, help="Last capture date (YYYY-MM-DD, UTC)")
    parser.add_argument("--dry-run", action="store_true", help="Only report uncommissioned purchases")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    start = _parse_date(args.start, end_of_day=False)
    end = _parse_date(args.end, end_of_day=True)
    if end < start:
        parser.error("--end must not be before --start")

    purchases = list_captured_purchases(start, end)
    print(f"Found {len(purchases)} captured purchase(s) between {args.start} and {args.end}")

    outcomes: Counter[str] = Counter()
    for purchase in purchases:
        if args.dry_run:
            ledger = commission_ledger_repository.find_ledger_containing_purchase(purchase.purchase_id)
            state = f"ledger {ledger.ledger_id}" if ledger else "NOT COMMISSIONED"
            print(f"  {purchase.purchase_id}  {purchase.amount} {purchase.currency}  {state}")
            continue

        result = update_commission_for_purchase(purchase)
        outcomes[result.outcome.value] += 1
        if result.outcome in (ReconcileOutcome.CREATED, ReconcileOutcome.MERGED):
            print(f"  {purchase.purchase_id}: {result.outcome.value} -> ledger {result.ledger_id} "
                  f"(commission {result.commission_amount})")
        elif result.outcome is ReconcileOutcome.FAILED:
            print(f"  {purchase.purchase_id}: FAILED ({result.error})")

    if not args.dry_run:
        print("-" * 50)
        for outcome in ReconcileOutcome:
            print(f"{outcome.value:<22} {outcomes.get(outcome.value, 0)}")

    return 1 if outcomes.get(ReconcileOutcome.FAILED.value) else 0


if __name__ == "__main__":
    sys.exit(main())
