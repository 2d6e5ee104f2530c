"""
Tests for `services/commission_query_service.py`.

Covers contract rules:
- Pending and processed ledgers count as owed, paid ledgers as paid.
- Disputed ledgers are reported per status but left out of the totals.
- An organization summary only sees that organization's ledgers.
- Unknown organizations are rejected.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID, uuid4

import pytest

from domain.commission import LedgerStatus
from services.commission_query_service import (
    OrganizationNotFoundError,
    get_commission_summary,
    get_organization_commission_summary,
)
from services.commission_reconciler import reconcile_purchase
from services.payout_service import mark_ledger_paid, update_ledger_status

ADMIN_ID = UUID("00000000-0000-0000-0000-0000000000ad")


def _commission(backend, buyer, amount: str, month: int):
    return reconcile_purchase(
        backend.add_purchase(buyer, amount, captured_at=datetime(2025, month, 5, tzinfo=timezone.utc))
    ).ledger_id


def test_organization_summary_splits_owed_paid_and_disputed(backend) -> None:
    org = backend.add_organization(rate="10", name="Northside Academy")
    buyer = backend.add_member(org)
    january = _commission(backend, buyer, "1000", 1)
    february = _commission(backend, buyer, "2000", 2)
    march = _commission(backend, buyer, "500", 3)
    _commission(backend, buyer, "4000", 4)
    mark_ledger_paid(january, ADMIN_ID, transaction_ref="UTR11")
    update_ledger_status(february, LedgerStatus.PROCESSED, ADMIN_ID)
    update_ledger_status(march, LedgerStatus.DISPUTED, ADMIN_ID)

    other = backend.add_organization(rate="20")
    _commission(backend, backend.add_member(other), "1000", 1)

    result = get_organization_commission_summary(org.organization_id)

    summary = result.summary
    assert result.organization.name == "Northside Academy"
    assert [summary.totals(s).count for s in LedgerStatus] == [1, 1, 1, 1]
    assert summary.totals(LedgerStatus.DISPUTED).amount == Decimal("50.00")
    assert summary.total_pending_amount == Decimal("600.00")
    assert summary.total_paid_amount == Decimal("100.00")
    assert summary.total_amount == Decimal("700.00")

    assert get_commission_summary().total_pending_amount == Decimal("800.00")


def test_organization_without_ledgers_has_zero_totals(backend) -> None:
    org = backend.add_organization()

    summary = get_organization_commission_summary(org.organization_id).summary

    assert summary.total_amount == Decimal("0")
    assert all(summary.totals(s).count == 0 for s in LedgerStatus)


def test_unknown_organization_is_rejected(backend) -> None:
    with pytest.raises(OrganizationNotFoundError):
        get_organization_commission_summary(uuid4())
