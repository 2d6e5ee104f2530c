"""
Purchase repository (persistence).

Reads purchases and applies the gateway-driven status transitions. Every
transition is a conditional update, so two callers racing on the same
purchase cannot both report that they performed it.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, List, Mapping, Optional
from uuid import UUID

from domain.purchase import Purchase, PurchaseStatus
from domain.time import parse_optional_utc_datetime, parse_utc_datetime, to_iso_utc
from repositories.client import get_supabase

# Supabase table names.
# Keep these aligned with sql/schema.sql.
_PURCHASES_TABLE: str = "purchases"
_DISCOUNT_APPLICATIONS_TABLE: str = "discount_applications"


def _row_to_purchase(row: Mapping[str, Any]) -> Purchase:
    """Convert a Supabase row into a Purchase."""

    return Purchase(
        purchase_id=UUID(str(row["purchase_id"])),
        buyer_id=UUID(str(row["buyer_id"])),
        package_id=UUID(str(row["package_id"])),
        amount=Decimal(str(row["amount"])),
        status=PurchaseStatus(str(row["status"])),
        created_at=parse_utc_datetime(row["created_at_utc"]),
        package_name=str(row.get("package_name") or ""),
        buyer_name=str(row.get("buyer_name") or ""),
        currency=str(row.get("currency") or "INR"),
        gateway_order_id=row.get("gateway_order_id"),
        gateway_payment_id=row.get("gateway_payment_id"),
        captured_at=parse_optional_utc_datetime(row.get("captured_at_utc")),
        failure_reason=row.get("failure_reason"),
    )


def _first_or_none(response: Any, action: str) -> Optional[Mapping[str, Any]]:
    error = getattr(response, "error", None)
    if error:
        raise RuntimeError(f"Failed to {action}: {error}")
    rows = getattr(response, "data", None) or []
    return rows[0] if rows else None


def get_purchase_by_id(purchase_id: UUID) -> Optional[Purchase]:
    """
    Retrieve a purchase by its ID.

    Returns:
        Purchase or None if not found
    """

    response = (
        get_supabase().table(_PURCHASES_TABLE)
        .select("*")
        .eq("purchase_id", str(purchase_id))
        .limit(1)
        .execute()
    )
    row = _first_or_none(response, "get purchase")
    return _row_to_purchase(row) if row else None


def get_purchase_by_gateway_payment_id(gateway_payment_id: str) -> Optional[Purchase]:
    """
    Retrieve a purchase by the payment gateway's payment identifier.

    Returns:
        Purchase or None if no purchase carries this payment id
    """

    response = (
        get_supabase().table(_PURCHASES_TABLE)
        .select("*")
        .eq("gateway_payment_id", gateway_payment_id)
        .limit(1)
        .execute()
    )
    row = _first_or_none(response, "get purchase by payment id")
    return _row_to_purchase(row) if row else None


def get_purchase_by_gateway_order_id(gateway_order_id: str) -> Optional[Purchase]:
    """Retrieve a purchase by the gateway order it was created for."""

    response = (
        get_supabase().table(_PURCHASES_TABLE)
        .select("*")
        .eq("gateway_order_id", gateway_order_id)
        .order("created_at_utc", desc=True)
        .limit(1)
        .execute()
    )
    row = _first_or_none(response, "get purchase by order id")
    return _row_to_purchase(row) if row else None


def mark_purchase_captured(
    purchase_id: UUID,
    captured_at: datetime,
    gateway_payment_id: Optional[str] = None,
    gateway_signature: Optional[str] = None,
) -> bool:
    """
    Transition a purchase to CAPTURED unless it already is.

    Returns:
        True if this call performed the transition, False if the purchase was
        already captured (or does not exist).
    """

    payload: dict[str, Any] = {
        "status": PurchaseStatus.CAPTURED.value,
        "captured_at_utc": to_iso_utc(captured_at, name="captured_at"),
        "failure_reason": None,
    }
    if gateway_payment_id is not None:
        payload["gateway_payment_id"] = gateway_payment_id
    if gateway_signature is not None:
        payload["gateway_signature"] = gateway_signature

    response = (
        get_supabase().table(_PURCHASES_TABLE)
        .update(payload)
        .eq("purchase_id", str(purchase_id))
        .neq("status", PurchaseStatus.CAPTURED.value)
        .execute()
    )
    error = getattr(response, "error", None)
    if error:
        raise RuntimeError(f"Failed to mark purchase captured: {error}")

    return bool(getattr(response, "data", None))


def mark_purchase_failed(purchase_id: UUID, failure_reason: str) -> bool:
    """
    Transition a purchase to FAILED.

    A captured purchase is never moved back to FAILED by a late event.

    Returns:
        True if this call performed the transition.
    """

    response = (
        get_supabase().table(_PURCHASES_TABLE)
        .update({"status": PurchaseStatus.FAILED.value, "failure_reason": failure_reason})
        .eq("purchase_id", str(purchase_id))
        .not_.in_("status", [PurchaseStatus.FAILED.value, PurchaseStatus.CAPTURED.value])
        .execute()
    )
    error = getattr(response, "error", None)
    if error:
        raise RuntimeError(f"Failed to mark purchase failed: {error}")

    return bool(getattr(response, "data", None))


def mark_purchase_authorized(purchase_id: UUID) -> bool:
    """
    Transition a purchase from CREATED to AUTHORIZED.

    Returns:
        True if this call performed the transition.
    """

    response = (
        get_supabase().table(_PURCHASES_TABLE)
        .update({"status": PurchaseStatus.AUTHORIZED.value})
        .eq("purchase_id", str(purchase_id))
        .eq("status", PurchaseStatus.CREATED.value)
        .execute()
    )
    error = getattr(response, "error", None)
    if error:
        raise RuntimeError(f"Failed to mark purchase authorized: {error}")

    return bool(getattr(response, "data", None))


def get_discounted_final_price(purchase_id: UUID) -> Optional[Decimal]:
    """
    Final price recorded by the checkout discount audit for a purchase.

    Returns:
        Decimal final price, or None if no discount was applied
    """

    response = (
        get_supabase().table(_DISCOUNT_APPLICATIONS_TABLE)
        .select("final_price")
        .eq("purchase_id", str(purchase_id))
        .limit(1)
        .execute()
    )
    row = _first_or_none(response, "get discount application")
    if row is None or row.get("final_price") is None:
        return None
    return Decimal(str(row["final_price"]))


def list_captured_purchases(start: datetime, end: datetime) -> List[Purchase]:
    """
    List captured purchases whose capture time falls in [start, end].

    Used by repair jobs that re-run commission reconciliation.
    """

    response = (
        get_supabase().table(_PURCHASES_TABLE)
        .select("*")
        .eq("status", PurchaseStatus.CAPTURED.value)
        .gte("captured_at_utc", to_iso_utc(start, name="start"))
        .lte("captured_at_utc", to_iso_utc(end, name="end"))
        .order("captured_at_utc")
        .execute()
    )
    error = getattr(response, "error", None)
    if error:
        raise RuntimeError(f"Failed to list captured purchases: {error}")

    rows = getattr(response, "data", None) or []
    return [_row_to_purchase(row) for row in rows]


__all__ = [
    "get_purchase_by_id",
    "get_purchase_by_gateway_payment_id",
    "get_purchase_by_gateway_order_id",
    "mark_purchase_captured",
    "mark_purchase_failed",
    "mark_purchase_authorized",
    "get_discounted_final_price",
    "list_captured_purchases",
]
