"""
Payment gateway webhook ingestion.

Handles Razorpay webhook deliveries:
- Authentication: HMAC-SHA256 of the exact raw body with the webhook secret,
  compared in constant time against the X-Razorpay-Signature header.
- payment.captured: capture the purchase once, grant the package, and always
  hand the purchase to the commission reconciler.
- payment.failed / payment.authorized: status bookkeeping only.

Deliveries are at-least-once. Duplicates are expected and safe: capture is a
conditional update, package grants are idempotent, and the reconciler is the
idempotency boundary for commission.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass, replace
from typing import Any, Mapping, Optional

from domain.purchase import Purchase, PurchaseStatus
from domain.time import utc_now
from repositories import purchase_repository, student_repository
from services.commission_reconciler import ReconcileResult, update_commission_for_purchase

logger = logging.getLogger(__name__)


class WebhookAuthenticationError(Exception):
    """Raised when a webhook signature is missing or does not match."""
    pass


class WebhookConfigurationError(Exception):
    """Raised when the webhook secret is not configured."""
    pass


@dataclass(frozen=True, slots=True)
class CaptureResult:
    """
    Outcome of handling a captured payment.

    newly_captured: True if this delivery moved the purchase to captured
    commission: reconciler result (None if the purchase was not found)
    """
    payment_id: str
    purchase_found: bool
    newly_captured: bool = False
    commission: Optional[ReconcileResult] = None


def compute_signature(raw_body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_webhook_signature(raw_body: bytes, signature: Optional[str], secret: str) -> bool:
    """
    Check a webhook signature.

    The signature must be computed over the exact bytes received; re-serialized
    JSON will not match.
    """

    if not signature:
        return False
    expected = compute_signature(raw_body, secret)
    return hmac.compare_digest(expected, signature.strip())


def capture_purchase(purchase: Purchase, gateway_payment_id: Optional[str] = None,
                     gateway_signature: Optional[str] = None) -> tuple[Purchase, bool]:
    """
    Capture a purchase and grant its package if this call captured it.

    Shared by the webhook and the checkout verification path.

    Returns:
        (purchase as captured, whether this call performed the capture)
    """

    if purchase.is_captured:
        return purchase, False

    now = utc_now()
    transitioned = purchase_repository.mark_purchase_captured(
        purchase.purchase_id,
        captured_at=now,
        gateway_payment_id=gateway_payment_id,
        gateway_signature=gateway_signature,
    )
    if not transitioned:
        # Another path captured it between our read and our write.
        latest = purchase_repository.get_purchase_by_id(purchase.purchase_id)
        return (latest or purchase), False

    captured = replace(
        purchase,
        status=PurchaseStatus.CAPTURED,
        captured_at=now,
        gateway_payment_id=gateway_payment_id or purchase.gateway_payment_id,
        failure_reason=None,
    )
    student_repository.grant_package_access(captured.buyer_id, captured.package_id, granted_at=now)
    logger.info(
        "Purchase %s captured; package %s granted to %s",
        captured.purchase_id,
        captured.package_id,
        captured.buyer_id,
    )
    return captured, True


def on_payment_captured(payment: Mapping[str, Any]) -> CaptureResult:
    """
    Handle a payment.captured entity.

    A missing purchase is logged and dropped. The commission reconciler runs
    even when the purchase was already captured, since the checkout callback
    may have captured it without reconciling yet.
    """

    payment_id = str(payment.get("id") or "")
    purchase = purchase_repository.get_purchase_by_gateway_payment_id(payment_id) if payment_id else None
    if purchase is None:
        order_id = payment.get("order_id")
        if order_id:
            purchase = purchase_repository.get_purchase_by_gateway_order_id(str(order_id))

    if purchase is None:
        logger.warning("Purchase not found for captured payment %s", payment_id)
        return CaptureResult(payment_id=payment_id, purchase_found=False)

    captured, newly_captured = capture_purchase(purchase, gateway_payment_id=payment_id or None)
    if not captured.is_captured:
        logger.warning(
            "Purchase %s is %s after capture attempt; skipping commission",
            captured.purchase_id,
            captured.status.value,
        )
        return CaptureResult(payment_id=payment_id, purchase_found=True, newly_captured=newly_captured)

    commission = update_commission_for_purchase(captured)
    return CaptureResult(
        payment_id=payment_id,
        purchase_found=True,
        newly_captured=newly_captured,
        commission=commission,
    )


def on_payment_failed(payment: Mapping[str, Any]) -> None:
    payment_id = str(payment.get("id") or "")
    purchase = purchase_repository.get_purchase_by_gateway_payment_id(payment_id) if payment_id else None
    if purchase is None:
        logger.info("Purchase not found for failed payment %s", payment_id)
        return

    reason = str(payment.get("error_description") or "Payment failed")
    if purchase_repository.mark_purchase_failed(purchase.purchase_id, reason):
        logger.info("Purchase %s marked failed: %s", purchase.purchase_id, reason)


def on_payment_authorized(payment: Mapping[str, Any]) -> None:
    payment_id = str(payment.get("id") or "")
    purchase = purchase_repository.get_purchase_by_gateway_payment_id(payment_id) if payment_id else None
    if purchase is None:
        logger.info("Purchase not found for authorized payment %s", payment_id)
        return

    if purchase_repository.mark_purchase_authorized(purchase.purchase_id):
        logger.info("Purchase %s authorized", purchase.purchase_id)


def handle_webhook(raw_body: bytes, signature: Optional[str], secret: Optional[str]) -> str:
    """
    Authenticate and dispatch a webhook delivery.

    Args:
        raw_body: Exact request body bytes
        signature: Value of the X-Razorpay-Signature header
        secret: Shared webhook secret

    Returns:
        The event name that was handled (or ignored)

    Raises:
        WebhookConfigurationError: If no secret is configured
        WebhookAuthenticationError: If the signature does not match
        ValueError: If the body is not a JSON event envelope
    """

    if not secret:
        raise WebhookConfigurationError("Webhook secret not configured")

    if not verify_webhook_signature(raw_body, signature, secret):
        logger.warning("Rejected webhook with invalid signature")
        raise WebhookAuthenticationError("Invalid signature")

    try:
        envelope = json.loads(raw_body)
    except json.JSONDecodeError as e:
        raise ValueError(f"Webhook body is not valid JSON: {e}") from e
    if not isinstance(envelope, dict):
        raise ValueError("Webhook body must be a JSON object")

    event = str(envelope.get("event") or "")
    payment = ((envelope.get("payload") or {}).get("payment") or {}).get("entity") or {}
    logger.info("Received webhook event %s for payment %s", event, payment.get("id"))

    if event == "payment.captured":
        on_payment_captured(payment)
    elif event == "payment.failed":
        on_payment_failed(payment)
    elif event == "payment.authorized":
        on_payment_authorized(payment)
    else:
        logger.info("Unhandled webhook event: %s", event)

    return event


__all__ = [
    "CaptureResult",
    "WebhookAuthenticationError",
    "WebhookConfigurationError",
    "capture_purchase",
    "compute_signature",
    "handle_webhook",
    "on_payment_captured",
    "verify_webhook_signature",
]
