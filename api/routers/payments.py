"""
Payments API Endpoints.

Synchronous checkout verification, the counterpart of the payment.captured
webhook.
"""

from fastapi import APIRouter, HTTPException

from api.models import VerifyPaymentRequest, VerifyPaymentResponse
from config.settings import get_settings
from services.payment_verification_service import PaymentVerificationRequest, verify_payment

router = APIRouter()

_ERROR_STATUS = {
    "PURCHASE_NOT_FOUND": 404,
    "FORBIDDEN": 403,
    "ORDER_MISMATCH": 400,
    "INVALID_SIGNATURE": 400,
    "NOT_CONFIGURED": 500,
}


@router.post(
    "/payments/verify",
    response_model=VerifyPaymentResponse,
    summary="Verify Checkout Payment",
    description="Verify the gateway checkout signature and grant package access."
)
def verify_checkout_payment(request: VerifyPaymentRequest):
    """
    Verify a completed checkout.

    **Process:**
    1. Checks the purchase exists and belongs to `buyer_id`
    2. Checks the gateway order id matches the purchase
    3. Verifies the checkout signature
    4. Captures the purchase and grants the package
    5. Records partner commission (failures here never fail verification)
    """
    try:
        result = verify_payment(
            PaymentVerificationRequest(
                purchase_id=request.purchase_id,
                buyer_id=request.buyer_id,
                gateway_order_id=request.razorpay_order_id,
                gateway_payment_id=request.razorpay_payment_id,
                gateway_signature=request.razorpay_signature,
            ),
            get_settings().razorpay_key_secret,
        )
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to verify payment: {str(e)}"
        )

    if not result.success:
        raise HTTPException(
            status_code=_ERROR_STATUS.get(result.error_code or "", 400),
            detail=result.message,
        )

    return VerifyPaymentResponse(
        message=result.message or "Payment verified successfully",
        purchase_id=result.purchase.purchase_id,
        status=result.purchase.status.value,
        package_access="granted",
    )
