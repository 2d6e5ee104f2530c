"""
Commission reconciler.

Turns a captured purchase into commission ledger mutations:

1. Resolve the buyer's organization membership (active/registered only).
2. Claim the purchase in `commission_claims`. The claim's primary key is
   the at-most-once guarantee: a second path (webhook retry, checkout
   callback, repair job) loses the insert and reports ALREADY_COMMISSIONED,
   whatever has happened to the ledgers in the meantime.
3. Skip the purchase if a ledger already contains it.
4. Compute commission = final price x organization rate / 100, preferring
   the discount-audit final price over the raw purchase amount.
5. Place the purchase in the period containing its capture time.
6. Append it to the open ledger for (organization, period), or open a new
   pending ledger snapshotting the organization's current rate, then record
   the ledger on the claim.

Step 6 repeats inside a bounded retry loop. Ledger writes are conditional
(insert guarded by the open-ledger key, update guarded by revision+status),
so two different purchases for the same organization and period never
overwrite each other's line items. If the loop gives up, the claim is
released so the repair job can try again. A claim left without a ledger by
a crashed process is taken over once it is older than
COMMISSION_CLAIM_TIMEOUT_SECONDS.

`update_commission_for_purchase` is the entry point for payment paths: it
never raises, because a missed commission can be repaired later while a
failed payment handler cannot.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from enum import Enum
from typing import Callable, Optional
from uuid import UUID

from config.settings import get_settings
from domain.commission import CommissionLedger, CommissionLineItem, compute_commission
from domain.organization import Organization, OrganizationMembership
from domain.period import CommissionPeriod, PeriodType, period_containing
from domain.purchase import Purchase
from domain.time import utc_now
from repositories import commission_ledger_repository as ledger_repository
from repositories import organization_repository, purchase_repository
from repositories.commission_ledger_repository import LedgerWriteConflict

logger = logging.getLogger(__name__)


class ReconcileOutcome(str, Enum):
    NOT_COMMISSIONABLE = "not_commissionable"
    ALREADY_COMMISSIONED = "already_commissioned"
    MERGED = "merged"
    CREATED = "created"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class ReconcileResult:
    """
    Result of reconciling one purchase.

    ledger_id: ledger now holding the purchase (None when not commissionable
        or failed)
    attempts: number of write attempts made
    """
    purchase_id: UUID
    outcome: ReconcileOutcome
    ledger_id: Optional[UUID] = None
    commission_amount: Optional[Decimal] = None
    attempts: int = 0
    error: Optional[str] = None


class CommissionReconciliationError(Exception):
    """Raised when a purchase could not be merged after all retry attempts."""
    pass


def _resolve_organization(purchase: Purchase) -> Optional[tuple[OrganizationMembership, Organization]]:
    membership = organization_repository.get_commissionable_membership(purchase.buyer_id)
    if membership is None or not membership.generates_commission():
        logger.info(
            "Purchase %s: buyer %s has no commissionable organization membership",
            purchase.purchase_id,
            purchase.buyer_id,
        )
        return None

    organization = organization_repository.get_organization_by_id(membership.organization_id)
    if organization is None:
        logger.warning(
            "Purchase %s: organization %s from membership not found",
            purchase.purchase_id,
            membership.organization_id,
        )
        return None

    return membership, organization


def _build_line_item(
    purchase: Purchase,
    membership: OrganizationMembership,
    organization: Organization,
) -> CommissionLineItem:
    final_price = purchase_repository.get_discounted_final_price(purchase.purchase_id)
    if final_price is None:
        final_price = purchase.amount

    return CommissionLineItem(
        purchase_id=purchase.purchase_id,
        buyer_id=purchase.buyer_id,
        buyer_name=membership.member_name or purchase.buyer_name,
        package_name=purchase.package_name,
        amount=final_price,
        commission_amount=compute_commission(final_price, organization.commission_rate_percent),
        purchase_date=purchase.commission_timestamp,
    )


def _claim_purchase(purchase: Purchase, claim_timeout_seconds: float) -> Optional[ReconcileResult]:
    """
    Take exclusive ownership of commissioning `purchase`.

    Returns:
        None if this call now owns the claim, otherwise the result to report
        (the purchase is commissioned, or being commissioned, by another path)
    """

    now = utc_now()
    if ledger_repository.claim_purchase(purchase.purchase_id, now):
        return None

    claim = ledger_repository.get_claim(purchase.purchase_id)
    if claim is None:
        # Released by a path that gave up between our insert and our read.
        if ledger_repository.claim_purchase(purchase.purchase_id, now):
            return None
        claim = ledger_repository.get_claim(purchase.purchase_id)

    if claim is not None and claim.ledger_id is None:
        stale_before = now - timedelta(seconds=claim_timeout_seconds)
        if claim.claimed_at < stale_before and ledger_repository.take_over_stale_claim(
            purchase.purchase_id, stale_before, now
        ):
            logger.warning(
                "Purchase %s: took over unfinished commission claim from %s",
                purchase.purchase_id,
                claim.claimed_at.isoformat(),
            )
            return None

    ledger_id = claim.ledger_id if claim is not None else None
    logger.info(
        "Purchase %s already claimed for commission (ledger %s)",
        purchase.purchase_id,
        ledger_id,
    )
    return ReconcileResult(
        purchase.purchase_id,
        ReconcileOutcome.ALREADY_COMMISSIONED,
        ledger_id=ledger_id,
    )


def _write_line_item(
    purchase: Purchase,
    organization: Organization,
    line_item: CommissionLineItem,
    period: CommissionPeriod,
    max_attempts: int,
    backoff_seconds: float,
    sleep: Callable[[float], None],
) -> ReconcileResult:
    """Merge `line_item` into the open ledger, or open one, retrying lost races."""

    for attempt in range(1, max_attempts + 1):
        now = utc_now()
        open_ledger = ledger_repository.find_open_ledger(organization.organization_id, period)

        if open_ledger is not None:
            stored = ledger_repository.compare_and_swap_ledger(
                open_ledger, open_ledger.with_line_item(line_item, now)
            )
            outcome = ReconcileOutcome.MERGED
        else:
            ledger = CommissionLedger.open_for(
                organization_id=organization.organization_id,
                period=period,
                commission_rate_percent=organization.commission_rate_percent,
                first_item=line_item,
                calculated_at=now,
                minimum_guarantee=organization.minimum_guarantee,
            )
            try:
                stored = ledger_repository.insert_ledger(ledger)
            except LedgerWriteConflict:
                stored = None
            outcome = ReconcileOutcome.CREATED

        if stored is not None:
            ledger_repository.assign_claim(purchase.purchase_id, stored.ledger_id)
            logger.info(
                "Purchase %s %s ledger %s (commission %s, ledger total %s)",
                purchase.purchase_id,
                "merged into" if outcome is ReconcileOutcome.MERGED else "opened",
                stored.ledger_id,
                line_item.commission_amount,
                stored.final_amount,
                extra={"organization_id": str(organization.organization_id), "period": period.key},
            )
            return ReconcileResult(
                purchase.purchase_id,
                outcome,
                ledger_id=stored.ledger_id,
                commission_amount=line_item.commission_amount,
                attempts=attempt,
            )

        logger.info(
            "Purchase %s: ledger write conflict on attempt %d/%d",
            purchase.purchase_id,
            attempt,
            max_attempts,
        )
        if attempt < max_attempts and backoff_seconds > 0:
            sleep(backoff_seconds * (2 ** (attempt - 1)))

    raise CommissionReconciliationError(
        f"Purchase {purchase.purchase_id}: gave up after {max_attempts} conflicting ledger writes"
    )


def reconcile_purchase(
    purchase: Purchase,
    *,
    period_type: Optional[PeriodType] = None,
    max_attempts: Optional[int] = None,
    backoff_seconds: Optional[float] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> ReconcileResult:
    """
    Record commission for a captured purchase, at most once.

    Args:
        purchase: Captured purchase to reconcile
        period_type: Period granularity (default: COMMISSION_PERIOD_TYPE)
        max_attempts: Write attempts before giving up (default: COMMISSION_MAX_ATTEMPTS)
        backoff_seconds: Base of the exponential backoff between attempts
        sleep: Sleep function (injectable for tests)

    Returns:
        ReconcileResult describing what happened

    Raises:
        CommissionReconciliationError: If every attempt lost a write race
            (the purchase claim is released so a later run can retry)
    """

    settings = get_settings()
    period_type = period_type or settings.commission_period_type
    max_attempts = max_attempts or settings.commission_max_attempts
    if backoff_seconds is None:
        backoff_seconds = settings.commission_retry_backoff_seconds

    if not purchase.is_captured:
        logger.warning(
            "Purchase %s is %s, not captured; skipping commission",
            purchase.purchase_id,
            purchase.status.value,
        )
        return ReconcileResult(purchase.purchase_id, ReconcileOutcome.NOT_COMMISSIONABLE)

    resolved = _resolve_organization(purchase)
    if resolved is None:
        return ReconcileResult(purchase.purchase_id, ReconcileOutcome.NOT_COMMISSIONABLE)
    membership, organization = resolved

    rejected = _claim_purchase(purchase, settings.commission_claim_timeout_seconds)
    if rejected is not None:
        return rejected

    try:
        # Covers ledgers written before claims existed and owners that wrote
        # the ledger but crashed before assigning their claim.
        existing = ledger_repository.find_ledger_containing_purchase(purchase.purchase_id)
        if existing is not None:
            ledger_repository.assign_claim(purchase.purchase_id, existing.ledger_id)
            logger.info(
                "Purchase %s already commissioned in ledger %s",
                purchase.purchase_id,
                existing.ledger_id,
            )
            return ReconcileResult(
                purchase.purchase_id,
                ReconcileOutcome.ALREADY_COMMISSIONED,
                ledger_id=existing.ledger_id,
            )

        return _write_line_item(
            purchase,
            organization,
            _build_line_item(purchase, membership, organization),
            period_containing(purchase.commission_timestamp, period_type),
            max_attempts,
            backoff_seconds,
            sleep,
        )
    except Exception:
        ledger_repository.release_claim(purchase.purchase_id)
        raise


def update_commission_for_purchase(purchase: Purchase) -> ReconcileResult:
    """
    Reconcile a purchase without ever raising.

    Failures are logged for manual reconciliation (see
    scripts/reconcile_commissions.py) and reported as outcome FAILED.
    """

    try:
        return reconcile_purchase(purchase)
    except Exception as e:
        logger.exception(
            "Commission reconciliation failed for purchase %s",
            purchase.purchase_id,
            extra={"purchase_id": str(purchase.purchase_id), "buyer_id": str(purchase.buyer_id)},
        )
        return ReconcileResult(purchase.purchase_id, ReconcileOutcome.FAILED, error=str(e))


__all__ = [
    "ReconcileOutcome",
    "ReconcileResult",
    "CommissionReconciliationError",
    "reconcile_purchase",
    "update_commission_for_purchase",
]
