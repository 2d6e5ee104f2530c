"""
Payout finalizer.

Administrative transitions of a commission ledger:
- mark_ledger_paid: close the ledger and pay every embedded payout with the
  same transaction metadata.
- update_ledger_status: processed/disputed workflows outside the paid path.

Allowed transitions live in domain.commission.ALLOWED_TRANSITIONS. Writes are
conditional on the revision and status that were read, so a payout can never
close a ledger while a purchase is being appended to it: one of the two
writes loses, re-reads, and acts on the new state.

Every transition is recorded in the audit log.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional
from uuid import UUID

from domain.commission import CommissionLedger, LedgerStatus, LedgerTransitionError
from domain.time import utc_now
from repositories import audit_log_repository
from repositories import commission_ledger_repository as ledger_repository
from repositories.commission_ledger_repository import LedgerWriteConflict

logger = logging.getLogger(__name__)

_MAX_ATTEMPTS: int = 5


class LedgerNotFoundError(Exception):
    """Raised when a commission ledger does not exist."""
    pass


def _load(ledger_id: UUID) -> CommissionLedger:
    ledger = ledger_repository.get_ledger_by_id(ledger_id)
    if ledger is None:
        raise LedgerNotFoundError(f"Commission record not found: {ledger_id}")
    return ledger


def _apply(
    ledger_id: UUID,
    transition: Callable[[CommissionLedger], CommissionLedger],
) -> tuple[CommissionLedger, CommissionLedger]:
    """
    Apply `transition` with optimistic concurrency.

    Returns:
        (ledger as read, ledger as persisted)
    """

    for _ in range(_MAX_ATTEMPTS):
        current = _load(ledger_id)
        updated = transition(current)
        try:
            stored = ledger_repository.compare_and_swap_ledger(current, updated)
        except LedgerWriteConflict as e:
            raise LedgerTransitionError(
                "Another open commission ledger already exists for this organization and period"
            ) from e
        if stored is not None:
            return current, stored
        logger.info("Ledger %s changed while updating; retrying", ledger_id)

    raise LedgerTransitionError(
        f"Commission ledger {ledger_id} is being modified concurrently; try again"
    )


def mark_ledger_paid(
    ledger_id: UUID,
    paid_by: UUID,
    transaction_ref: Optional[str] = None,
    payment_method: Optional[str] = None,
    notes: Optional[str] = None,
) -> CommissionLedger:
    """
    Mark a ledger and all of its payouts as paid.

    Args:
        ledger_id: Ledger to pay
        paid_by: Admin performing the payout
        transaction_ref: Bank/UPI transaction reference
        payment_method: e.g. "bank_transfer"
        notes: Free-form notes copied onto every payout

    Returns:
        The paid ledger

    Raises:
        LedgerNotFoundError: If the ledger does not exist
        LedgerTransitionError: If the ledger is already paid or cannot be paid
            from its current status (nothing is modified)
    """

    now = utc_now()
    previous, paid = _apply(
        ledger_id,
        lambda ledger: ledger.mark_paid(
            paid_by=paid_by,
            at=now,
            transaction_ref=transaction_ref,
            payment_method=payment_method,
            notes=notes,
        ),
    )

    audit_log_repository.record_audit_event(
        action="COMMISSION_PAID",
        performed_by=paid_by,
        target_entity="CommissionLedger",
        target_id=paid.ledger_id,
        occurred_at=now,
        organization_id=paid.organization_id,
        details={
            "old_status": previous.status.value,
            "new_status": paid.status.value,
            "amount": paid.final_amount,
            "payout_count": len(paid.payouts),
            "transaction_ref": transaction_ref,
            "payment_method": payment_method,
            "notes": notes,
            "period": {
                "start": paid.period.start,
                "end": paid.period.end,
                "type": paid.period.period_type.value,
            },
        },
    )

    logger.info(
        "Ledger %s marked paid by %s (amount %s, %d payouts)",
        paid.ledger_id,
        paid_by,
        paid.final_amount,
        len(paid.payouts),
    )
    return paid


def update_ledger_status(
    ledger_id: UUID,
    new_status: LedgerStatus,
    changed_by: UUID,
    notes: Optional[str] = None,
) -> CommissionLedger:
    """
    Move a ledger to `new_status` (processed, disputed, or back to pending).

    Raises:
        LedgerNotFoundError: If the ledger does not exist
        LedgerTransitionError: If the transition is not allowed
    """

    now = utc_now()
    previous, updated = _apply(
        ledger_id,
        lambda ledger: ledger.with_status(new_status, changed_by=changed_by, at=now, notes=notes),
    )

    audit_log_repository.record_audit_event(
        action="COMMISSION_STATUS_UPDATED",
        performed_by=changed_by,
        target_entity="CommissionLedger",
        target_id=updated.ledger_id,
        occurred_at=now,
        organization_id=updated.organization_id,
        details={
            "old_status": previous.status.value,
            "new_status": updated.status.value,
            "amount": updated.final_amount,
            "notes": notes,
            "period": {
                "start": updated.period.start,
                "end": updated.period.end,
                "type": updated.period.period_type.value,
            },
        },
    )

    logger.info(
        "Ledger %s status %s -> %s by %s",
        updated.ledger_id,
        previous.status.value,
        updated.status.value,
        changed_by,
    )
    return updated


__all__ = ["LedgerNotFoundError", "mark_ledger_paid", "update_ledger_status"]
