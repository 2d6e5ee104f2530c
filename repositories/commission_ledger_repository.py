"""
Commission ledger repository (persistence).

Stores one row per ledger in `commission_ledgers`, with line items and payouts
embedded as jsonb arrays. This module does not decide *whether* a purchase
should be merged or a ledger paid; it provides the conditional-write
primitives that make those decisions safe under concurrency:

- insert_ledger: fails with LedgerWriteConflict when an open ledger already
  holds the same (organization, period). Uniqueness is tracked by `open_key`,
  which is non-null only while a ledger is pending/processed, so any number
  of paid ledgers may share a period with one open ledger.
- compare_and_swap_ledger: writes a new ledger state only if the row still has
  the revision and status that were read. A lost race returns None and the
  caller re-reads.

- claim_purchase: inserts the purchase id into `commission_claims`, whose
  primary key makes "this purchase is commissioned at most once" a database
  guarantee across all ledgers, open or closed.

find_ledger_containing_purchase relies on a GIN index over `line_items`
(see sql/schema.sql).
"""

from __future__ import annotations

import json
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Tuple
from uuid import UUID

from postgrest.exceptions import APIError

from domain.commission import (
    OPEN_LEDGER_STATUSES,
    CommissionLedger,
    CommissionLineItem,
    CommissionPayout,
    LedgerStatus,
    PayoutStatus,
)
from domain.period import CommissionPeriod, PeriodType
from domain.time import parse_optional_utc_datetime, parse_utc_datetime, to_iso_utc, utc_now
from repositories.client import get_supabase

_LEDGERS_TABLE: str = "commission_ledgers"
_CLAIMS_TABLE: str = "commission_claims"

# PostgreSQL SQLSTATE for unique_violation.
_UNIQUE_VIOLATION: str = "23505"

_SUMMARY_PAGE_SIZE: int = 1000


class LedgerWriteConflict(Exception):
    """Raised when a ledger write loses a race against another writer."""
    pass


@dataclass(frozen=True, slots=True)
class LedgerQueryFilters:
    """
    Filters for listing ledgers.

    start_date/end_date bound the period start (inclusive).
    """
    status: Optional[LedgerStatus] = None
    organization_id: Optional[UUID] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


@dataclass(frozen=True, slots=True)
class PurchaseClaim:
    """
    Ownership of a purchase's commission.

    ledger_id is None while the owner is still writing the ledger.
    """
    purchase_id: UUID
    ledger_id: Optional[UUID]
    claimed_at: datetime


def open_key_for(ledger: CommissionLedger) -> Optional[str]:
    """Key that must be unique among open ledgers; None once a ledger is not open."""

    if ledger.status not in OPEN_LEDGER_STATUSES:
        return None
    return f"{ledger.organization_id}:{ledger.period.key}"


# ----------------------------------------------------------------------
# Row <-> domain mapping
# ----------------------------------------------------------------------

def _line_item_to_json(item: CommissionLineItem) -> Dict[str, Any]:
    return {
        "purchase_id": str(item.purchase_id),
        "buyer_id": str(item.buyer_id),
        "buyer_name": item.buyer_name,
        "package_name": item.package_name,
        "amount": str(item.amount),
        "commission_amount": str(item.commission_amount),
        "purchase_date": to_iso_utc(item.purchase_date, name="purchase_date"),
    }


def _line_item_from_json(data: Mapping[str, Any]) -> CommissionLineItem:
    return CommissionLineItem(
        purchase_id=UUID(str(data["purchase_id"])),
        buyer_id=UUID(str(data["buyer_id"])),
        buyer_name=str(data.get("buyer_name") or ""),
        package_name=str(data.get("package_name") or ""),
        amount=Decimal(str(data["amount"])),
        commission_amount=Decimal(str(data["commission_amount"])),
        purchase_date=parse_utc_datetime(data["purchase_date"]),
    )


def _payout_to_json(payout: CommissionPayout) -> Dict[str, Any]:
    return {
        "purchase_id": str(payout.purchase_id),
        "amount": str(payout.amount),
        "status": payout.status.value,
        "transaction_ref": payout.transaction_ref,
        "paid_at": to_iso_utc(payout.paid_at, name="paid_at") if payout.paid_at else None,
        "payment_method": payout.payment_method,
        "notes": payout.notes,
        "created_at": to_iso_utc(payout.created_at, name="created_at"),
    }


def _payout_from_json(data: Mapping[str, Any]) -> CommissionPayout:
    return CommissionPayout(
        purchase_id=UUID(str(data["purchase_id"])),
        amount=Decimal(str(data["amount"])),
        status=PayoutStatus(str(data.get("status") or PayoutStatus.PENDING.value)),
        transaction_ref=data.get("transaction_ref"),
        paid_at=parse_optional_utc_datetime(data.get("paid_at")),
        payment_method=data.get("payment_method"),
        notes=data.get("notes"),
        created_at=parse_utc_datetime(data["created_at"]),
    )


def _ledger_to_row(ledger: CommissionLedger) -> Dict[str, Any]:
    """
    Serialize a ledger, including its derived aggregates.

    Aggregates are stored so that list/summary queries can filter and sum
    without unpacking the embedded arrays.
    """

    details = ledger.payment_details
    return {
        "ledger_id": str(ledger.ledger_id),
        "organization_id": str(ledger.organization_id),
        "period_start_utc": to_iso_utc(ledger.period.start, name="period_start"),
        "period_end_utc": to_iso_utc(ledger.period.end, name="period_end"),
        "period_type": ledger.period.period_type.value,
        "status": ledger.status.value,
        "line_items": [_line_item_to_json(item) for item in ledger.line_items],
        "payouts": [_payout_to_json(p) for p in ledger.payouts],
        "total_sales": str(ledger.total_sales),
        "line_item_count": ledger.line_item_count,
        "commission_rate": str(ledger.commission_rate_percent),
        "base_commission": str(ledger.base_commission),
        "bonus_commission": str(ledger.bonus_commission),
        "total_commission": str(ledger.total_commission),
        "minimum_guarantee": str(ledger.minimum_guarantee),
        "final_amount": str(ledger.final_amount),
        "payment_details": {
            "transaction_ref": details.transaction_ref,
            "paid_at": to_iso_utc(details.paid_at, name="paid_at") if details.paid_at else None,
            "payment_method": details.payment_method,
            "notes": details.notes,
        },
        "calculated_at_utc": to_iso_utc(ledger.calculated_at, name="calculated_at"),
        "processed_by": str(ledger.processed_by) if ledger.processed_by else None,
        "processed_at_utc": (
            to_iso_utc(ledger.processed_at, name="processed_at") if ledger.processed_at else None
        ),
        "notes": ledger.notes,
        "revision": ledger.revision,
        "open_key": open_key_for(ledger),
    }


def _row_to_ledger(row: Mapping[str, Any]) -> CommissionLedger:
    """Convert a Supabase row into a CommissionLedger."""

    period = CommissionPeriod(
        start=parse_utc_datetime(row["period_start_utc"]),
        end=parse_utc_datetime(row["period_end_utc"]),
        period_type=PeriodType(str(row["period_type"])),
    )
    return CommissionLedger(
        ledger_id=UUID(str(row["ledger_id"])),
        organization_id=UUID(str(row["organization_id"])),
        period=period,
        commission_rate_percent=Decimal(str(row["commission_rate"])),
        calculated_at=parse_utc_datetime(row["calculated_at_utc"]),
        status=LedgerStatus(str(row["status"])),
        line_items=tuple(_line_item_from_json(i) for i in row.get("line_items") or []),
        payouts=tuple(_payout_from_json(p) for p in row.get("payouts") or []),
        bonus_commission=Decimal(str(row.get("bonus_commission") or "0")),
        minimum_guarantee=Decimal(str(row.get("minimum_guarantee") or "0")),
        revision=int(row.get("revision") or 0),
        processed_by=UUID(str(row["processed_by"])) if row.get("processed_by") else None,
        processed_at=parse_optional_utc_datetime(row.get("processed_at_utc")),
        notes=row.get("notes"),
    )


def _rows(response: Any, action: str) -> List[Mapping[str, Any]]:
    error = getattr(response, "error", None)
    if error:
        raise RuntimeError(f"Failed to {action}: {error}")
    return getattr(response, "data", None) or []


def _is_unique_violation(exc: APIError) -> bool:
    return str(getattr(exc, "code", "") or "") == _UNIQUE_VIOLATION


# ----------------------------------------------------------------------
# Queries
# ----------------------------------------------------------------------

def get_ledger_by_id(ledger_id: UUID) -> Optional[CommissionLedger]:
    """
    Retrieve a single ledger by its ID.

    Returns:
        CommissionLedger or None if not found
    """

    response = (
        get_supabase().table(_LEDGERS_TABLE)
        .select("*")
        .eq("ledger_id", str(ledger_id))
        .limit(1)
        .execute()
    )
    rows = _rows(response, "get commission ledger")
    return _row_to_ledger(rows[0]) if rows else None


def find_ledger_containing_purchase(purchase_id: UUID) -> Optional[CommissionLedger]:
    """
    Find the ledger (in any status) whose line items include `purchase_id`.

    Returns:
        CommissionLedger or None if the purchase has not been commissioned
    """

    needle = json.dumps([{"purchase_id": str(purchase_id)}])
    response = (
        get_supabase().table(_LEDGERS_TABLE)
        .select("*")
        .contains("line_items", needle)
        .limit(1)
        .execute()
    )
    rows = _rows(response, "look up commissioned purchase")
    return _row_to_ledger(rows[0]) if rows else None


def find_open_ledger(organization_id: UUID, period: CommissionPeriod) -> Optional[CommissionLedger]:
    """
    Find the open (pending/processed) ledger for an organization and period.

    Paid and disputed ledgers for the same period are ignored.
    """

    response = (
        get_supabase().table(_LEDGERS_TABLE)
        .select("*")
        .eq("organization_id", str(organization_id))
        .eq("period_type", period.period_type.value)
        .eq("period_start_utc", to_iso_utc(period.start, name="period_start"))
        .eq("period_end_utc", to_iso_utc(period.end, name="period_end"))
        .in_("status", sorted(s.value for s in OPEN_LEDGER_STATUSES))
        .limit(1)
        .execute()
    )
    rows = _rows(response, "find open commission ledger")
    return _row_to_ledger(rows[0]) if rows else None


def list_ledgers(
    filters: LedgerQueryFilters,
    page: int = 1,
    limit: int = 20,
) -> Tuple[List[CommissionLedger], int]:
    """
    List ledgers, newest period first.

    Returns:
        (ledgers on the requested page, total matching count)
    """

    if page < 1 or limit < 1:
        raise ValueError("page and limit must be positive")

    query = get_supabase().table(_LEDGERS_TABLE).select("*", count="exact")

    if filters.status is not None:
        query = query.eq("status", filters.status.value)
    if filters.organization_id is not None:
        query = query.eq("organization_id", str(filters.organization_id))
    if filters.start_date is not None:
        query = query.gte("period_start_utc", to_iso_utc(filters.start_date, name="start_date"))
    if filters.end_date is not None:
        query = query.lte("period_start_utc", to_iso_utc(filters.end_date, name="end_date"))

    offset = (page - 1) * limit
    response = (
        query.order("period_start_utc", desc=True)
        .range(offset, offset + limit - 1)
        .execute()
    )
    rows = _rows(response, "list commission ledgers")
    total = getattr(response, "count", None) or 0
    return [_row_to_ledger(row) for row in rows], int(total)


def list_status_amounts(organization_id: Optional[UUID] = None) -> List[Tuple[LedgerStatus, Decimal]]:
    """(status, final_amount) for every ledger, optionally for one organization."""

    results: List[Tuple[LedgerStatus, Decimal]] = []
    offset = 0
    while True:
        query = get_supabase().table(_LEDGERS_TABLE).select("status, final_amount")
        if organization_id is not None:
            query = query.eq("organization_id", str(organization_id))
        response = (
            query.order("ledger_id")
            .range(offset, offset + _SUMMARY_PAGE_SIZE - 1)
            .execute()
        )
        rows = _rows(response, "summarize commission ledgers")
        results.extend(
            (LedgerStatus(str(row["status"])), Decimal(str(row.get("final_amount") or "0")))
            for row in rows
        )
        if len(rows) < _SUMMARY_PAGE_SIZE:
            return results
        offset += _SUMMARY_PAGE_SIZE


# ----------------------------------------------------------------------
# Conditional writes
# ----------------------------------------------------------------------

def insert_ledger(ledger: CommissionLedger) -> CommissionLedger:
    """
    Insert a new ledger.

    Raises:
        LedgerWriteConflict: If an open ledger already exists for the same
            organization and period.
    """

    now = utc_now()
    payload = _ledger_to_row(ledger)
    payload["created_at_utc"] = now.isoformat()
    payload["updated_at_utc"] = now.isoformat()

    try:
        response = get_supabase().table(_LEDGERS_TABLE).insert(payload).execute()
    except APIError as e:
        if _is_unique_violation(e):
            raise LedgerWriteConflict(
                f"An open ledger already exists for organization {ledger.organization_id} "
                f"period {ledger.period.key}"
            ) from e
        raise

    _rows(response, "insert commission ledger")
    return ledger


def compare_and_swap_ledger(
    current: CommissionLedger,
    updated: CommissionLedger,
) -> Optional[CommissionLedger]:
    """
    Persist `updated` only if the stored row still matches `current`.

    The row must still carry current.revision and current.status; the write
    bumps the revision by one.

    Returns:
        The persisted ledger, or None if another writer got there first.

    Raises:
        LedgerWriteConflict: If the new state would open a second ledger for
            the same organization and period.
    """

    if updated.ledger_id != current.ledger_id:
        raise ValueError("compare_and_swap_ledger requires the same ledger_id")

    persisted = replace(updated, revision=current.revision + 1)
    payload = _ledger_to_row(persisted)
    payload.pop("ledger_id")
    payload["updated_at_utc"] = utc_now().isoformat()

    try:
        response = (
            get_supabase().table(_LEDGERS_TABLE)
            .update(payload)
            .eq("ledger_id", str(current.ledger_id))
            .eq("revision", current.revision)
            .eq("status", current.status.value)
            .execute()
        )
    except APIError as e:
        if _is_unique_violation(e):
            raise LedgerWriteConflict(
                f"Another open ledger exists for organization {current.organization_id} "
                f"period {current.period.key}"
            ) from e
        raise

    rows = _rows(response, "update commission ledger")
    return persisted if rows else None


# ----------------------------------------------------------------------
# Purchase claims
# ----------------------------------------------------------------------
#
# One row per commissioned purchase, keyed by purchase_id. Inserting the
# claim is the only write that is unique across all ledgers, so it is what
# makes commission at-most-once; the ledger rows are written afterwards.

def _row_to_claim(row: Mapping[str, Any]) -> PurchaseClaim:
    return PurchaseClaim(
        purchase_id=UUID(str(row["purchase_id"])),
        ledger_id=UUID(str(row["ledger_id"])) if row.get("ledger_id") else None,
        claimed_at=parse_utc_datetime(row["claimed_at_utc"]),
    )


def claim_purchase(purchase_id: UUID, claimed_at: datetime) -> bool:
    """
    Claim the right to commission a purchase.

    Returns:
        True if this call created the claim, False if the purchase is
        already claimed.
    """

    payload = {
        "purchase_id": str(purchase_id),
        "ledger_id": None,
        "claimed_at_utc": to_iso_utc(claimed_at, name="claimed_at"),
    }
    try:
        response = get_supabase().table(_CLAIMS_TABLE).insert(payload).execute()
    except APIError as e:
        if _is_unique_violation(e):
            return False
        raise

    _rows(response, "claim purchase for commission")
    return True


def get_claim(purchase_id: UUID) -> Optional[PurchaseClaim]:
    response = (
        get_supabase().table(_CLAIMS_TABLE)
        .select("*")
        .eq("purchase_id", str(purchase_id))
        .limit(1)
        .execute()
    )
    rows = _rows(response, "get purchase claim")
    return _row_to_claim(rows[0]) if rows else None


def assign_claim(purchase_id: UUID, ledger_id: UUID) -> None:
    """Record which ledger now holds a claimed purchase."""

    response = (
        get_supabase().table(_CLAIMS_TABLE)
        .update({"ledger_id": str(ledger_id)})
        .eq("purchase_id", str(purchase_id))
        .execute()
    )
    _rows(response, "assign purchase claim")


def take_over_stale_claim(purchase_id: UUID, stale_before: datetime, claimed_at: datetime) -> bool:
    """
    Take over a claim whose owner never recorded a ledger (e.g. it crashed).

    Only claims without a ledger and older than `stale_before` qualify. The
    update refreshes claimed_at, so of several callers exactly one succeeds.
    """

    response = (
        get_supabase().table(_CLAIMS_TABLE)
        .update({"claimed_at_utc": to_iso_utc(claimed_at, name="claimed_at")})
        .eq("purchase_id", str(purchase_id))
        .is_("ledger_id", "null")
        .lt("claimed_at_utc", to_iso_utc(stale_before, name="stale_before"))
        .execute()
    )
    return bool(_rows(response, "take over purchase claim"))


def release_claim(purchase_id: UUID) -> None:
    """Drop an unassigned claim so the purchase can be reconciled again."""

    response = (
        get_supabase().table(_CLAIMS_TABLE)
        .delete()
        .eq("purchase_id", str(purchase_id))
        .is_("ledger_id", "null")
        .execute()
    )
    _rows(response, "release purchase claim")


__all__ = [
    "LedgerQueryFilters",
    "LedgerWriteConflict",
    "open_key_for",
    "get_ledger_by_id",
    "find_ledger_containing_purchase",
    "find_open_ledger",
    "list_ledgers",
    "list_status_amounts",
    "insert_ledger",
    "compare_and_swap_ledger",
    "PurchaseClaim",
    "claim_purchase",
    "get_claim",
    "assign_claim",
    "take_over_stale_claim",
    "release_claim",
]
