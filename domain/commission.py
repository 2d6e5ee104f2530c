"""
Domain: Commission ledger (revenue share owed to a partner organization).

Rules implemented here:
- A ledger aggregates commission for one organization and one period.
- Only open ledgers (pending/processed) accept new line items.
- Every line item has exactly one payout, positionally paired by purchase id.
- A purchase appears at most once in a ledger.
- final_amount == max(sum(line item commission) + bonus, minimum_guarantee).
- Once paid, a ledger and its payouts are frozen; only an administrative
  dispute may move it out of PAID.
- A paid ledger never carries a payout that is not paid.

Status transitions are enforced centrally through ALLOWED_TRANSITIONS.

This module contains only pure domain entities: no I/O, no database, no
frameworks. Transitions return new instances and leave the original intact.
All timestamps must be passed explicitly.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Mapping, Optional, Tuple
from uuid import UUID, uuid4

from .period import CommissionPeriod
from .time import require_utc_timestamp

_CENTS = Decimal("0.01")


class LedgerStatus(str, Enum):
    PENDING = "pending"
    PROCESSED = "processed"
    PAID = "paid"
    DISPUTED = "disputed"


class PayoutStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    DISPUTED = "disputed"


OPEN_LEDGER_STATUSES: frozenset[LedgerStatus] = frozenset(
    {LedgerStatus.PENDING, LedgerStatus.PROCESSED}
)

ALLOWED_TRANSITIONS: Mapping[LedgerStatus, frozenset[LedgerStatus]] = {
    LedgerStatus.PENDING: frozenset(
        {LedgerStatus.PROCESSED, LedgerStatus.PAID, LedgerStatus.DISPUTED}
    ),
    LedgerStatus.PROCESSED: frozenset({LedgerStatus.PAID, LedgerStatus.DISPUTED}),
    LedgerStatus.DISPUTED: frozenset({LedgerStatus.PENDING, LedgerStatus.PROCESSED}),
    # Administrative override only.
    LedgerStatus.PAID: frozenset({LedgerStatus.DISPUTED}),
}


class LedgerTransitionError(Exception):
    """Raised when a ledger cannot move to the requested state."""
    pass


def compute_commission(final_price: Decimal, rate_percent: Decimal) -> Decimal:
    """
    Commission owed on a single purchase.

    Example:
        compute_commission(Decimal("1000"), Decimal("10"))  # Decimal("100.00")
    """

    if final_price < 0:
        raise ValueError("final_price must not be negative")
    raw = final_price * rate_percent / Decimal("100")
    return raw.quantize(_CENTS, rounding=ROUND_HALF_UP)


@dataclass(frozen=True, slots=True)
class CommissionLineItem:
    """One purchase's contribution to a ledger."""

    purchase_id: UUID
    buyer_id: UUID
    amount: Decimal  # final (discount-adjusted) purchase price
    commission_amount: Decimal
    purchase_date: datetime
    buyer_name: str = ""
    package_name: str = ""

    def __post_init__(self) -> None:
        require_utc_timestamp("purchase_date", self.purchase_date)


@dataclass(frozen=True, slots=True)
class CommissionPayout:
    """Payable unit mirroring a line item."""

    purchase_id: UUID
    amount: Decimal
    created_at: datetime
    status: PayoutStatus = PayoutStatus.PENDING
    transaction_ref: Optional[str] = None
    paid_at: Optional[datetime] = None
    payment_method: Optional[str] = None
    notes: Optional[str] = None

    def __post_init__(self) -> None:
        require_utc_timestamp("created_at", self.created_at)
        if self.paid_at is not None:
            require_utc_timestamp("paid_at", self.paid_at)


@dataclass(frozen=True, slots=True)
class PaymentDetails:
    """Legacy single-payment view of a ledger (derived from its payouts)."""

    transaction_ref: Optional[str] = None
    paid_at: Optional[datetime] = None
    payment_method: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True, slots=True)
class CommissionLedger:
    """
    Commission owed to one organization for one period.

    `revision` counts persisted writes. Repositories use it to make every
    write conditional on the state that was read.
    """

    ledger_id: UUID
    organization_id: UUID
    period: CommissionPeriod
    commission_rate_percent: Decimal
    calculated_at: datetime
    status: LedgerStatus = LedgerStatus.PENDING
    line_items: Tuple[CommissionLineItem, ...] = ()
    payouts: Tuple[CommissionPayout, ...] = ()
    bonus_commission: Decimal = Decimal("0")
    minimum_guarantee: Decimal = Decimal("0")
    revision: int = 0
    processed_by: Optional[UUID] = None
    processed_at: Optional[datetime] = None
    notes: Optional[str] = None

    def __post_init__(self) -> None:
        require_utc_timestamp("calculated_at", self.calculated_at)
        if self.processed_at is not None:
            require_utc_timestamp("processed_at", self.processed_at)

        if len(self.payouts) != len(self.line_items):
            raise ValueError("every line item must have exactly one payout")
        for item, payout in zip(self.line_items, self.payouts):
            if item.purchase_id != payout.purchase_id:
                raise ValueError("payouts must be paired with line items by purchase_id")

        purchase_ids = [item.purchase_id for item in self.line_items]
        if len(set(purchase_ids)) != len(purchase_ids):
            raise ValueError("a purchase may appear only once in a ledger")

        if self.status is LedgerStatus.PAID and any(
            p.status is not PayoutStatus.PAID for p in self.payouts
        ):
            raise ValueError("a paid ledger cannot carry unpaid payouts")

    @staticmethod
    def open_for(
        organization_id: UUID,
        period: CommissionPeriod,
        commission_rate_percent: Decimal,
        first_item: CommissionLineItem,
        calculated_at: datetime,
        minimum_guarantee: Decimal = Decimal("0"),
    ) -> "CommissionLedger":
        """Start a new pending ledger holding a single purchase."""

        empty = CommissionLedger(
            ledger_id=uuid4(),
            organization_id=organization_id,
            period=period,
            commission_rate_percent=commission_rate_percent,
            calculated_at=calculated_at,
            minimum_guarantee=minimum_guarantee,
        )
        return empty.with_line_item(first_item, calculated_at)

    # ------------------------------------------------------------------
    # Derived aggregates
    # ------------------------------------------------------------------

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_LEDGER_STATUSES

    @property
    def total_sales(self) -> Decimal:
        return sum((item.amount for item in self.line_items), Decimal("0"))

    @property
    def line_item_count(self) -> int:
        return len(self.line_items)

    @property
    def base_commission(self) -> Decimal:
        return sum((item.commission_amount for item in self.line_items), Decimal("0"))

    @property
    def total_commission(self) -> Decimal:
        return self.base_commission + self.bonus_commission

    @property
    def final_amount(self) -> Decimal:
        return max(self.total_commission, self.minimum_guarantee)

    @property
    def payment_details(self) -> PaymentDetails:
        """Mirror of the first payout, kept for consumers of the old shape."""

        if not self.payouts:
            return PaymentDetails()
        first = self.payouts[0]
        return PaymentDetails(
            transaction_ref=first.transaction_ref,
            paid_at=first.paid_at,
            payment_method=first.payment_method,
            notes=first.notes,
        )

    def contains_purchase(self, purchase_id: UUID) -> bool:
        return any(item.purchase_id == purchase_id for item in self.line_items)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def with_line_item(self, item: CommissionLineItem, at: datetime) -> "CommissionLedger":
        """
        Return a new ledger with `item` appended and a pending payout for it.

        Raises:
            LedgerTransitionError: If the ledger is not open.
            ValueError: If the purchase is already part of this ledger.
        """

        require_utc_timestamp("at", at)
        if not self.is_open:
            raise LedgerTransitionError(
                f"Ledger {self.ledger_id} is {self.status.value}; it no longer accepts purchases"
            )
        if self.contains_purchase(item.purchase_id):
            raise ValueError(f"Purchase {item.purchase_id} is already in ledger {self.ledger_id}")

        payout = CommissionPayout(
            purchase_id=item.purchase_id,
            amount=item.commission_amount,
            created_at=item.purchase_date,
        )
        return replace(
            self,
            line_items=self.line_items + (item,),
            payouts=self.payouts + (payout,),
            calculated_at=at,
        )

    def mark_paid(
        self,
        paid_by: UUID,
        at: datetime,
        transaction_ref: Optional[str] = None,
        payment_method: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> "CommissionLedger":
        """
        Return a new ledger in PAID status with every payout paid.

        All payouts share the same transaction metadata; a payout keeps its
        own value for any field not supplied here.
        """

        require_utc_timestamp("at", at)
        if self.status is LedgerStatus.PAID:
            raise LedgerTransitionError("Commission is already marked as paid")
        self._require_transition(LedgerStatus.PAID)

        payouts = tuple(
            replace(
                payout,
                status=PayoutStatus.PAID,
                paid_at=at,
                transaction_ref=transaction_ref or payout.transaction_ref,
                payment_method=payment_method or payout.payment_method,
                notes=notes or payout.notes,
            )
            for payout in self.payouts
        )
        return replace(
            self,
            status=LedgerStatus.PAID,
            payouts=payouts,
            processed_by=paid_by,
            processed_at=at,
        )

    def with_status(
        self,
        new_status: LedgerStatus,
        changed_by: UUID,
        at: datetime,
        notes: Optional[str] = None,
    ) -> "CommissionLedger":
        """
        Return a new ledger moved to `new_status` (any status except PAID).

        Payout statuses follow the ledger:
        - PAID -> DISPUTED marks every payout disputed.
        - DISPUTED -> PENDING/PROCESSED puts disputed payouts back to pending.
        """

        require_utc_timestamp("at", at)
        if new_status is LedgerStatus.PAID:
            raise LedgerTransitionError(
                "Use mark-paid to pay a commission ledger; it records payment details"
            )
        self._require_transition(new_status)

        payouts = self.payouts
        if self.status is LedgerStatus.PAID and new_status is LedgerStatus.DISPUTED:
            payouts = tuple(replace(p, status=PayoutStatus.DISPUTED) for p in payouts)
        elif self.status is LedgerStatus.DISPUTED:
            payouts = tuple(
                replace(p, status=PayoutStatus.PENDING, paid_at=None)
                if p.status is PayoutStatus.DISPUTED
                else p
                for p in payouts
            )

        return replace(
            self,
            status=new_status,
            payouts=payouts,
            processed_by=changed_by,
            processed_at=at,
            notes=notes if notes is not None else self.notes,
        )

    def _require_transition(self, new_status: LedgerStatus) -> None:
        if new_status == self.status:
            raise LedgerTransitionError(f"Commission is already {self.status.value}")
        if new_status not in ALLOWED_TRANSITIONS[self.status]:
            raise LedgerTransitionError(
                f"Cannot move commission from {self.status.value} to {new_status.value}"
            )
