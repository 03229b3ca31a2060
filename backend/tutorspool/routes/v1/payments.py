# backend/tutorspool/routes/v1/payments.py
"""
Payment API Routes - API v1

Versioned payment endpoints under /api/v1/payments.

Endpoints:
    POST /webhooks/stripe                → Handle Stripe PaymentIntent webhooks
"""

import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
import stripe

from ...core.config import settings
from ...core.exceptions import ReconciliationError
from ...schemas.payment_event import PaymentEvent, WebhookResponse
from ...services.dependencies import get_payment_reconciler
from ...services.payment_reconciler import PaymentWebhookReconciler

logger = logging.getLogger(__name__)

# V1 router - no prefix here, will be added when mounting in main.py
router = APIRouter(tags=["payments-v1"])


@router.post("/webhooks/stripe", response_model=WebhookResponse)
async def handle_stripe_webhook(
    request: Request,
    reconciler: PaymentWebhookReconciler = Depends(get_payment_reconciler),
) -> WebhookResponse:
    """
    Handle Stripe PaymentIntent events.

    Returns:
        200 once the event is recorded, including duplicates and event types
        the booking core does not handle

    Note:
        This endpoint has no authentication as it uses webhook signature verification.
        Reconciliation failures return 500 so Stripe redelivers the event.
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")

    if not sig_header:
        logger.warning("Webhook received without signature")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No signature")

    if not settings.stripe_webhook_secret:
        logger.error("No webhook secret configured")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Webhook configuration error"
        )

    try:
        event = stripe.Webhook.construct_event(
            payload, sig_header, settings.stripe_webhook_secret.get_secret_value()
        )
    except (ValueError, stripe.SignatureVerificationError) as e:
        logger.error(f"Webhook signature verification failed: {str(e)}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid signature")

    event_type = str(event.get("type", "unknown"))
    payment_event = PaymentEvent.from_stripe_event(event)
    if payment_event is None:
        logger.debug(f"Ignoring unhandled webhook event type: {event_type}")
        return WebhookResponse(
            status="ignored", event_type=event_type, message="Event type not handled"
        )

    try:
        result = await asyncio.to_thread(reconciler.reconcile, payment_event)
    except ReconciliationError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"message": e.message, "code": e.code, "details": e.details},
        )

    logger.info(f"Webhook processed: {event_type} -> {result.outcome}")
    return WebhookResponse(
        status="success",
        event_type=event_type,
        outcome=result.outcome,
        booking_id=result.booking_id,
        message=result.message,
    )


__all__ = ["router"]
