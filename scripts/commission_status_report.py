"""
Commission status report - counts and amounts by ledger status.
"""

import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from domain.commission import LedgerStatus
from services.commission_query_service import get_commission_summary, list_commission_ledgers


def commission_status_report():
    """Print the commission summary and the open ledgers."""

    summary = get_commission_summary()

    print("=" * 50)
    print("COMMISSION STATUS")
    print("=" * 50)
    for status in LedgerStatus:
        totals = summary.totals(status)
        print(f"{status.value:<12} {totals.count:>6} ledger(s)   {totals.amount:>12}")
    print("-" * 50)
    print(f"Owed (pending + processed): {summary.total_pending_amount}")
    print(f"Paid:                       {summary.total_paid_amount}")
    print("=" * 50)

    print("\nOpen ledgers (pending):")
    print("-" * 50)
    page = list_commission_ledgers(status=LedgerStatus.PENDING, limit=100)
    for ledger in page.ledgers:
        print(
            f"{ledger.organization_id}  {ledger.period.start:%Y-%m-%d}..{ledger.period.end:%Y-%m-%d}  "
            f"{ledger.line_item_count} purchase(s)  {ledger.final_amount}"
        )
    if page.total > len(page.ledgers):
        print(f"... and {page.total - len(page.ledgers)} more")
    print("-" * 50)


if __name__ == "__main__":
    commission_status_report()
