"""
Commission API Endpoints.

Admin operations on partner commission ledgers: listing, summary, payout and
status changes.
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, HTTPException, Query

from api.models import (
    CommissionSummaryResponse,
    LedgerActionResponse,
    LedgerListResponse,
    LedgerResponse,
    MarkPaidRequest,
    StatusUpdateRequest,
)
from domain.commission import LedgerStatus, LedgerTransitionError
from services.commission_query_service import (
    MAX_PAGE_SIZE,
    get_commission_ledger,
    get_commission_summary,
    list_commission_ledgers,
)
from services.payout_service import LedgerNotFoundError, mark_ledger_paid, update_ledger_status

router = APIRouter()


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@router.get(
    "/commissions",
    response_model=LedgerListResponse,
    summary="List Commission Ledgers",
    description="List commission ledgers with optional filters, newest period first."
)
def list_commissions(
    status: Optional[LedgerStatus] = Query(None, description="Ledger status"),
    organization_id: Optional[UUID] = Query(None, description="Partner organization"),
    start_date: Optional[datetime] = Query(None, description="Earliest period start"),
    end_date: Optional[datetime] = Query(None, description="Latest period start"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=MAX_PAGE_SIZE),
):
    """
    List commission ledgers.

    **Example:**
    ```
    GET /api/v1/commissions?status=pending&organization_id=...&page=1&limit=20
    ```
    """
    try:
        result = list_commission_ledgers(
            status=status,
            organization_id=organization_id,
            start_date=_as_utc(start_date),
            end_date=_as_utc(end_date),
            page=page,
            limit=limit,
        )
        return LedgerListResponse.from_page(result)

    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to get commissions: {str(e)}"
        )


@router.get(
    "/commissions/summary",
    response_model=CommissionSummaryResponse,
    summary="Commission Summary",
    description="Counts and amounts of commission ledgers grouped by status."
)
def commission_summary(
    organization_id: Optional[UUID] = Query(None, description="Only this organization's ledgers"),
):
    try:
        return CommissionSummaryResponse.from_summary(get_commission_summary(organization_id))
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to get commission summary: {str(e)}"
        )


@router.get(
    "/commissions/{ledger_id}",
    response_model=LedgerResponse,
    summary="Get Commission Ledger",
)
def get_commission(ledger_id: UUID):
    try:
        ledger = get_commission_ledger(ledger_id)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to get commission: {str(e)}"
        )

    if ledger is None:
        raise HTTPException(status_code=404, detail="Commission record not found")
    return LedgerResponse.from_ledger(ledger)


@router.post(
    "/commissions/{ledger_id}/mark-paid",
    response_model=LedgerActionResponse,
    summary="Mark Commission Paid",
    description="Close a commission ledger and mark every payout in it as paid."
)
def mark_commission_paid(ledger_id: UUID, request: MarkPaidRequest):
    """
    Mark a commission ledger as paid.

    All payouts in the ledger receive the same transaction reference, payment
    method and notes. A paid ledger is frozen: purchases arriving later in the
    same period open a new ledger.

    **Errors:**
    - 404 if the ledger does not exist
    - 409 if it is already paid (the original payment details are kept)
    """
    try:
        ledger = mark_ledger_paid(
            ledger_id,
            paid_by=request.admin_id,
            transaction_ref=request.transaction_ref,
            payment_method=request.payment_method,
            notes=request.notes,
        )
    except LedgerNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except LedgerTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to mark commission as paid: {str(e)}"
        )

    return LedgerActionResponse(
        message="Commission marked as paid successfully",
        commission=LedgerResponse.from_ledger(ledger),
    )


@router.patch(
    "/commissions/{ledger_id}/status",
    response_model=LedgerActionResponse,
    summary="Update Commission Status",
    description="Move a ledger to processed or disputed, or back to pending after a dispute."
)
def update_commission_status(ledger_id: UUID, request: StatusUpdateRequest):
    try:
        ledger = update_ledger_status(
            ledger_id,
            request.status,
            changed_by=request.admin_id,
            notes=request.notes,
        )
    except LedgerNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except LedgerTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to update commission status: {str(e)}"
        )

    return LedgerActionResponse(
        message="Commission status updated successfully",
        commission=LedgerResponse.from_ledger(ledger),
    )
