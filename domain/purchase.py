"""
Domain: Package purchases.

A purchase is created when checkout starts and moves to captured or failed
exactly once, driven by the payment gateway. The commission ledger only ever
reads purchases; it never mutates them.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID

from .time import require_utc_timestamp


class PurchaseStatus(str, Enum):
    CREATED = "created"
    AUTHORIZED = "authorized"
    CAPTURED = "captured"
    FAILED = "failed"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True)
class Purchase:
    """
    Immutable snapshot of a purchase record.

    `amount` is the list price charged at checkout. The discount-adjusted
    price, when one was applied, lives in a separate discount-audit record.
    """

    purchase_id: UUID
    buyer_id: UUID
    package_id: UUID
    amount: Decimal
    status: PurchaseStatus
    created_at: datetime
    package_name: str = ""
    buyer_name: str = ""
    currency: str = "INR"
    gateway_order_id: Optional[str] = None
    gateway_payment_id: Optional[str] = None  # Razorpay payment id (pay_...)
    captured_at: Optional[datetime] = None
    failure_reason: Optional[str] = None

    def __post_init__(self) -> None:
        require_utc_timestamp("created_at", self.created_at)
        if self.captured_at is not None:
            require_utc_timestamp("captured_at", self.captured_at)
        if self.amount < 0:
            raise ValueError("amount must not be negative")

    @property
    def is_captured(self) -> bool:
        return self.status is PurchaseStatus.CAPTURED

    @property
    def commission_timestamp(self) -> datetime:
        """Timestamp used to place this purchase in a commission period."""

        return self.captured_at or self.created_at
