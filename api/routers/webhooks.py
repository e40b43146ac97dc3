"""
Stripe webhook endpoint.

Events only trigger a re-sync of the affected subject; billing state is
always read back from Stripe.
"""

import logging

import stripe
from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from starlette.concurrency import run_in_threadpool

from api.dependencies import get_billing_service
from api.middleware.errors import WebhookConfigurationError
from billsync.services import BillingService, WebhookNotConfiguredError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["Billing"])


@router.post("/webhook")
async def handle_webhook(
    request: Request,
    stripe_signature: str = Header(None, alias="Stripe-Signature"),
    service: BillingService = Depends(get_billing_service),
):
    """
    Handle Stripe webhook events.

    The signature is verified using the webhook secret.
    """
    if not service.webhook_secret:
        raise WebhookConfigurationError()

    if not stripe_signature:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": {"code": "MISSING_SIGNATURE", "message": "Stripe-Signature header required"}},
        )

    # Get raw body for signature verification
    payload = await request.body()

    try:
        event = service.verify_webhook_signature(payload, stripe_signature)
    except WebhookNotConfiguredError:
        raise WebhookConfigurationError()
    except ValueError as e:
        logger.warning(f"Webhook signature verification failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": {"code": "INVALID_SIGNATURE", "message": "Invalid webhook signature"}},
        )

    # Process the event. Provider failures are answered with an error so
    # Stripe redelivers; anything else is acknowledged and left to the next sync.
    try:
        await run_in_threadpool(service.handle_webhook_event, event)
    except stripe.StripeError as e:
        logger.error(f"Stripe error processing webhook event {event.get('id')}: {e}")
        raise
    except Exception as e:
        logger.error(f"Error processing webhook event {event.get('id')}: {e}")

    return {"received": True}
