"""
Webhook API Endpoints.

Receives payment gateway notifications. No user authentication: requests are
authenticated by their HMAC signature instead.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Header, HTTPException, Request
from starlette.concurrency import run_in_threadpool

from api.models import WebhookAckResponse
from config.settings import get_settings
from services.payment_webhook_service import (
    WebhookAuthenticationError,
    WebhookConfigurationError,
    handle_webhook,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/webhooks/razorpay",
    response_model=WebhookAckResponse,
    summary="Razorpay Webhook",
    description="Handle payment.captured, payment.failed and payment.authorized events."
)
async def razorpay_webhook(
    request: Request,
    x_razorpay_signature: Optional[str] = Header(default=None),
):
    """
    Handle a Razorpay webhook delivery.

    **Authentication:**
    The `X-Razorpay-Signature` header must be the hex HMAC-SHA256 of the raw
    request body, keyed with the webhook secret. Anything else is rejected
    with 400 before the body is even parsed.

    **Delivery semantics:**
    Razorpay retries deliveries, so the same event may arrive more than once.
    Every handler is idempotent and duplicates are acknowledged with 200.
    Commission processing never turns a delivery into an error.
    """
    raw_body = await request.body()
    settings = get_settings()

    try:
        await run_in_threadpool(
            handle_webhook,
            raw_body,
            x_razorpay_signature,
            settings.razorpay_webhook_secret,
        )
    except WebhookConfigurationError:
        logger.error("Webhook secret not configured")
        raise HTTPException(status_code=500, detail="Webhook not configured")
    except WebhookAuthenticationError:
        raise HTTPException(status_code=400, detail="Invalid signature")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception:
        logger.exception("Webhook processing error")
        raise HTTPException(status_code=500, detail="Webhook processing failed")

    return WebhookAckResponse(status="ok")
