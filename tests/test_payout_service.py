"""
Tests for `services/payout_service.py`.

Covers contract rules:
- mark_ledger_paid pays every payout with the same transaction metadata.
- A second payout is rejected and leaves the first payment details intact.
- Status changes follow the allowed transitions and are audited.
- A disputed ledger cannot reopen while another open ledger holds its period.
"""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import UUID, uuid4

import pytest

from domain.commission import LedgerStatus, LedgerTransitionError, PayoutStatus
from services.commission_reconciler import reconcile_purchase
from services.payout_service import LedgerNotFoundError, mark_ledger_paid, update_ledger_status

ADMIN_ID = UUID("00000000-0000-0000-0000-0000000000ad")


def _ledger_with_purchases(backend, *amounts: str):
    org = backend.add_organization(rate="10")
    buyer = backend.add_member(org)
    result = None
    for day, amount in enumerate(amounts, start=1):
        result = reconcile_purchase(
            backend.add_purchase(buyer, amount, captured_at=datetime(2025, 3, day, 9, 0, tzinfo=timezone.utc))
        )
    return org, buyer, result.ledger_id


def test_mark_paid_pays_every_payout(backend) -> None:
    org, _, ledger_id = _ledger_with_purchases(backend, "1000", "500", "2000")

    paid = mark_ledger_paid(
        ledger_id,
        ADMIN_ID,
        transaction_ref="UTR778899",
        payment_method="bank_transfer",
        notes="March settlement",
    )

    assert paid.status is LedgerStatus.PAID
    assert len(paid.payouts) == 3
    assert {p.status for p in paid.payouts} == {PayoutStatus.PAID}
    assert {p.transaction_ref for p in paid.payouts} == {"UTR778899"}
    assert {p.payment_method for p in paid.payouts} == {"bank_transfer"}
    assert {p.notes for p in paid.payouts} == {"March settlement"}
    assert backend.ledgers[ledger_id] == paid

    [event] = backend.audit_events
    assert event["action"] == "COMMISSION_PAID"
    assert event["performed_by"] == ADMIN_ID
    assert event["target_entity"] == "CommissionLedger"
    assert event["target_id"] == ledger_id
    assert event["organization_id"] == org.organization_id
    assert event["details"]["old_status"] == "pending"
    assert event["details"]["new_status"] == "paid"
    assert event["details"]["payout_count"] == 3
    assert event["details"]["transaction_ref"] == "UTR778899"


def test_second_mark_paid_is_rejected_and_keeps_first_details(backend) -> None:
    _, _, ledger_id = _ledger_with_purchases(backend, "1000")
    first = mark_ledger_paid(ledger_id, ADMIN_ID, transaction_ref="UTR-FIRST")

    with pytest.raises(LedgerTransitionError, match="already marked as paid"):
        mark_ledger_paid(ledger_id, ADMIN_ID, transaction_ref="UTR-SECOND")

    stored = backend.ledgers[ledger_id]
    assert stored == first
    assert stored.payouts[0].transaction_ref == "UTR-FIRST"
    assert len(backend.audit_events) == 1


def test_mark_paid_unknown_ledger_raises_not_found(backend) -> None:
    with pytest.raises(LedgerNotFoundError):
        mark_ledger_paid(uuid4(), ADMIN_ID)


def test_status_workflow_processed_then_paid(backend) -> None:
    _, _, ledger_id = _ledger_with_purchases(backend, "1000")

    processed = update_ledger_status(ledger_id, LedgerStatus.PROCESSED, ADMIN_ID, notes="Verified")
    paid = mark_ledger_paid(ledger_id, ADMIN_ID, transaction_ref="UTR1")

    assert processed.status is LedgerStatus.PROCESSED
    assert processed.notes == "Verified"
    assert paid.status is LedgerStatus.PAID
    assert [e["action"] for e in backend.audit_events] == ["COMMISSION_STATUS_UPDATED", "COMMISSION_PAID"]
    assert backend.audit_events[0]["details"]["old_status"] == "pending"
    assert backend.audit_events[0]["details"]["new_status"] == "processed"


def test_update_status_rejects_disallowed_transition(backend) -> None:
    _, _, ledger_id = _ledger_with_purchases(backend, "1000")
    update_ledger_status(ledger_id, LedgerStatus.DISPUTED, ADMIN_ID)

    with pytest.raises(LedgerTransitionError):
        update_ledger_status(ledger_id, LedgerStatus.DISPUTED, ADMIN_ID)

    with pytest.raises(LedgerTransitionError):
        update_ledger_status(ledger_id, LedgerStatus.PAID, ADMIN_ID)

    with pytest.raises(LedgerTransitionError):
        mark_ledger_paid(ledger_id, ADMIN_ID)

    assert backend.ledgers[ledger_id].status is LedgerStatus.DISPUTED


def test_disputing_paid_ledger_disputes_its_payouts(backend) -> None:
    _, _, ledger_id = _ledger_with_purchases(backend, "1000", "500")
    mark_ledger_paid(ledger_id, ADMIN_ID, transaction_ref="UTR1")

    disputed = update_ledger_status(ledger_id, LedgerStatus.DISPUTED, ADMIN_ID, notes="Chargeback")

    assert disputed.status is LedgerStatus.DISPUTED
    assert {p.status for p in disputed.payouts} == {PayoutStatus.DISPUTED}


def test_disputed_ledger_cannot_reopen_over_another_open_ledger(backend) -> None:
    org, buyer, ledger_id = _ledger_with_purchases(backend, "1000")
    update_ledger_status(ledger_id, LedgerStatus.DISPUTED, ADMIN_ID)

    # A new purchase in the same period opens a fresh ledger.
    later = reconcile_purchase(
        backend.add_purchase(buyer, "500", captured_at=datetime(2025, 3, 20, tzinfo=timezone.utc))
    )
    assert later.ledger_id != ledger_id

    with pytest.raises(LedgerTransitionError, match="Another open commission ledger"):
        update_ledger_status(ledger_id, LedgerStatus.PENDING, ADMIN_ID)

    assert backend.ledgers[ledger_id].status is LedgerStatus.DISPUTED
