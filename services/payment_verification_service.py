"""
Checkout payment verification (synchronous path).

After checkout the client posts back the gateway's order id, payment id and
signature. A valid signature captures the purchase immediately, without
waiting for the webhook. Both paths can run for the same payment at nearly
the same time; capture is a conditional update and the commission reconciler
guarantees at-most-once commission, so the race is harmless.

Signature: HMAC-SHA256 of "{order_id}|{payment_id}" with the API key secret.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from domain.purchase import Purchase
from repositories import purchase_repository
from services.commission_reconciler import ReconcileResult, update_commission_for_purchase
from services.payment_webhook_service import capture_purchase

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PaymentVerificationRequest:
    purchase_id: UUID
    buyer_id: UUID
    gateway_order_id: str
    gateway_payment_id: str
    gateway_signature: str


@dataclass(frozen=True, slots=True)
class VerificationResult:
    """
    Result of a checkout verification.

    error_code is one of PURCHASE_NOT_FOUND, FORBIDDEN, ORDER_MISMATCH,
    INVALID_SIGNATURE, NOT_CONFIGURED (None on success).
    """
    success: bool
    purchase: Optional[Purchase] = None
    commission: Optional[ReconcileResult] = None
    error_code: Optional[str] = None
    message: Optional[str] = None


def verify_checkout_signature(order_id: str, payment_id: str, signature: str, key_secret: str) -> bool:
    expected = hmac.new(
        key_secret.encode("utf-8"),
        f"{order_id}|{payment_id}".encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
    return hmac.compare_digest(expected, signature or "")


def verify_payment(request: PaymentVerificationRequest, key_secret: Optional[str]) -> VerificationResult:
    """
    Verify a checkout callback and capture the purchase.

    Process:
    1. Load the purchase and check it belongs to the buyer
    2. Check the order id matches the purchase
    3. Verify the checkout signature
    4. Capture the purchase and grant the package (once)
    5. Reconcile commission (contained; never fails verification)

    An invalid signature marks the purchase failed.
    """

    if not key_secret:
        return VerificationResult(False, error_code="NOT_CONFIGURED", message="Payment gateway not configured")

    purchase = purchase_repository.get_purchase_by_id(request.purchase_id)
    if purchase is None:
        return VerificationResult(False, error_code="PURCHASE_NOT_FOUND", message="Purchase record not found")

    if purchase.buyer_id != request.buyer_id:
        return VerificationResult(False, error_code="FORBIDDEN", message="Unauthorized purchase verification")

    if purchase.gateway_order_id != request.gateway_order_id:
        return VerificationResult(False, error_code="ORDER_MISMATCH", message="Order ID mismatch")

    if not verify_checkout_signature(
        request.gateway_order_id,
        request.gateway_payment_id,
        request.gateway_signature,
        key_secret,
    ):
        purchase_repository.mark_purchase_failed(purchase.purchase_id, "Signature verification failed")
        logger.warning("Checkout signature mismatch for purchase %s", purchase.purchase_id)
        return VerificationResult(False, error_code="INVALID_SIGNATURE", message="Payment verification failed")

    captured, _ = capture_purchase(
        purchase,
        gateway_payment_id=request.gateway_payment_id,
        gateway_signature=request.gateway_signature,
    )
    commission = update_commission_for_purchase(captured) if captured.is_captured else None

    return VerificationResult(
        True,
        purchase=captured,
        commission=commission,
        message="Payment verified successfully",
    )


__all__ = [
    "PaymentVerificationRequest",
    "VerificationResult",
    "verify_checkout_signature",
    "verify_payment",
]
