"""
API Request and Response Models.

Pydantic models for validating API requests and serializing responses.
"""

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from domain.commission import CommissionLedger, LedgerStatus
from services.commission_query_service import (
    CommissionSummary,
    LedgerPage,
    OrganizationCommissionSummary,
)


# ============================================================================
# Commission Ledger Models
# ============================================================================

class PeriodResponse(BaseModel):
    """Commission period bounds."""
    start_date: datetime
    end_date: datetime
    type: str  # "daily", "weekly" or "monthly"


class LineItemResponse(BaseModel):
    """One purchase's contribution to a ledger."""
    purchase_id: UUID
    buyer_id: UUID
    buyer_name: str
    package_name: str
    amount: Decimal
    commission_amount: Decimal
    purchase_date: datetime


class PayoutResponse(BaseModel):
    """Payable unit mirroring a line item."""
    purchase_id: UUID
    amount: Decimal
    status: str  # "pending", "paid" or "disputed"
    transaction_ref: Optional[str] = None
    paid_at: Optional[datetime] = None
    payment_method: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime


class PaymentDetailsResponse(BaseModel):
    """Legacy single-payment view (mirrors the first payout)."""
    transaction_ref: Optional[str] = None
    paid_at: Optional[datetime] = None
    payment_method: Optional[str] = None
    notes: Optional[str] = None


class LedgerResponse(BaseModel):
    """Full commission ledger."""
    id: UUID
    organization_id: UUID
    period: PeriodResponse
    status: str
    line_items: List[LineItemResponse]
    payouts: List[PayoutResponse]
    total_sales: Decimal
    line_item_count: int
    commission_rate: Decimal
    base_commission: Decimal
    bonus_commission: Decimal
    total_commission: Decimal
    minimum_guarantee: Decimal
    final_amount: Decimal
    payment_details: PaymentDetailsResponse
    calculated_at: datetime
    processed_by: Optional[UUID] = None
    processed_at: Optional[datetime] = None
    notes: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "id": "123e4567-e89b-12d3-a456-426614174010",
                "organization_id": "123e4567-e89b-12d3-a456-426614174011",
                "period": {
                    "start_date": "2025-03-01T00:00:00Z",
                    "end_date": "2025-03-31T23:59:59.999999Z",
                    "type": "monthly"
                },
                "status": "pending",
                "line_items": [],
                "payouts": [],
                "total_sales": "1500.00",
                "line_item_count": 2,
                "commission_rate": "10",
                "base_commission": "150.00",
                "bonus_commission": "0",
                "total_commission": "150.00",
                "minimum_guarantee": "0",
                "final_amount": "150.00",
                "payment_details": {},
                "calculated_at": "2025-03-14T09:30:00Z"
            }
        }

    @classmethod
    def from_ledger(cls, ledger: CommissionLedger) -> "LedgerResponse":
        details = ledger.payment_details
        return cls(
            id=ledger.ledger_id,
            organization_id=ledger.organization_id,
            period=PeriodResponse(
                start_date=ledger.period.start,
                end_date=ledger.period.end,
                type=ledger.period.period_type.value,
            ),
            status=ledger.status.value,
            line_items=[
                LineItemResponse(
                    purchase_id=item.purchase_id,
                    buyer_id=item.buyer_id,
                    buyer_name=item.buyer_name,
                    package_name=item.package_name,
                    amount=item.amount,
                    commission_amount=item.commission_amount,
                    purchase_date=item.purchase_date,
                )
                for item in ledger.line_items
            ],
            payouts=[
                PayoutResponse(
                    purchase_id=p.purchase_id,
                    amount=p.amount,
                    status=p.status.value,
                    transaction_ref=p.transaction_ref,
                    paid_at=p.paid_at,
                    payment_method=p.payment_method,
                    notes=p.notes,
                    created_at=p.created_at,
                )
                for p in ledger.payouts
            ],
            total_sales=ledger.total_sales,
            line_item_count=ledger.line_item_count,
            commission_rate=ledger.commission_rate_percent,
            base_commission=ledger.base_commission,
            bonus_commission=ledger.bonus_commission,
            total_commission=ledger.total_commission,
            minimum_guarantee=ledger.minimum_guarantee,
            final_amount=ledger.final_amount,
            payment_details=PaymentDetailsResponse(
                transaction_ref=details.transaction_ref,
                paid_at=details.paid_at,
                payment_method=details.payment_method,
                notes=details.notes,
            ),
            calculated_at=ledger.calculated_at,
            processed_by=ledger.processed_by,
            processed_at=ledger.processed_at,
            notes=ledger.notes,
        )


class PaginationResponse(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class LedgerListResponse(BaseModel):
    """Paginated ledger listing."""
    commissions: List[LedgerResponse]
    pagination: PaginationResponse
    page_amount: Decimal

    @classmethod
    def from_page(cls, page: LedgerPage) -> "LedgerListResponse":
        return cls(
            commissions=[LedgerResponse.from_ledger(ledger) for ledger in page.ledgers],
            pagination=PaginationResponse(
                page=page.page,
                limit=page.limit,
                total=page.total,
                pages=page.pages,
            ),
            page_amount=page.page_amount,
        )


class StatusTotalsResponse(BaseModel):
    count: int
    amount: Decimal


class CommissionSummaryResponse(BaseModel):
    """Counts and amounts grouped by ledger status."""
    by_status: Dict[str, StatusTotalsResponse]
    total_pending_amount: Decimal
    total_paid_amount: Decimal
    total_amount: Decimal

    class Config:
        json_schema_extra = {
            "example": {
                "by_status": {
                    "pending": {"count": 3, "amount": "450.00"},
                    "processed": {"count": 1, "amount": "120.00"},
                    "paid": {"count": 8, "amount": "2210.00"},
                    "disputed": {"count": 0, "amount": "0"}
                },
                "total_pending_amount": "570.00",
                "total_paid_amount": "2210.00",
                "total_amount": "2780.00"
            }
        }

    @classmethod
    def from_summary(cls, summary: CommissionSummary) -> "CommissionSummaryResponse":
        return cls(
            by_status={
                status.value: StatusTotalsResponse(
                    count=summary.totals(status).count,
                    amount=summary.totals(status).amount,
                )
                for status in LedgerStatus
            },
            total_pending_amount=summary.total_pending_amount,
            total_paid_amount=summary.total_paid_amount,
            total_amount=summary.total_amount,
        )


class OrganizationCommissionSummaryResponse(CommissionSummaryResponse):
    """Commission totals for one partner organization."""
    organization_id: UUID
    organization_name: str

    @classmethod
    def from_organization_summary(
        cls, result: OrganizationCommissionSummary
    ) -> "OrganizationCommissionSummaryResponse":
        totals = CommissionSummaryResponse.from_summary(result.summary)
        return cls(
            organization_id=result.organization.organization_id,
            organization_name=result.organization.name,
            **totals.model_dump(),
        )


class MarkPaidRequest(BaseModel):
    """Request to mark a ledger paid."""
    admin_id: UUID = Field(..., description="Admin performing the payout")
    transaction_ref: Optional[str] = Field(None, max_length=200)
    payment_method: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = Field(None, max_length=2000)

    class Config:
        json_schema_extra = {
            "example": {
                "admin_id": "123e4567-e89b-12d3-a456-426614174099",
                "transaction_ref": "TXN1",
                "payment_method": "bank_transfer",
                "notes": "March payout"
            }
        }


class StatusUpdateRequest(BaseModel):
    """Request to change a ledger's status outside the paid path."""
    status: LedgerStatus
    admin_id: UUID
    notes: Optional[str] = Field(None, max_length=2000)


class LedgerActionResponse(BaseModel):
    message: str
    commission: LedgerResponse


# ============================================================================
# Payment Models
# ============================================================================

class VerifyPaymentRequest(BaseModel):
    """Checkout callback from the payment gateway's client SDK."""
    purchase_id: UUID
    buyer_id: UUID
    razorpay_order_id: str = Field(..., min_length=1)
    razorpay_payment_id: str = Field(..., min_length=1)
    razorpay_signature: str = Field(..., min_length=1)


class VerifyPaymentResponse(BaseModel):
    message: str
    purchase_id: UUID
    status: str
    package_access: str  # "granted"


class WebhookAckResponse(BaseModel):
    status: str


# ============================================================================
# Error Models
# ============================================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str
    detail: Optional[str] = None
    status_code: int

    class Config:
        json_schema_extra = {
            "example": {
                "error": "Conflict",
                "detail": "Commission is already marked as paid",
                "status_code": 409
            }
        }
