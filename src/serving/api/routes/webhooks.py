"""
Billing Webhook Endpoint

Verifies the Stripe signature and hands the event to the webhook
processor, which resyncs the affected subscriptions.
"""

import stripe
import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status

from src.config import get_settings
from src.ingestion.webhook_processor import WebhookOutcome, WebhookProcessor
from src.serving.api.dependencies import get_webhook_processor

router = APIRouter()
logger = structlog.get_logger(__name__)


@router.post("/stripe", response_model=WebhookOutcome)
async def stripe_webhook(
    request: Request,
    processor: WebhookProcessor = Depends(get_webhook_processor),
) -> WebhookOutcome:
    secret = get_settings().stripe.webhook_secret
    if secret is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Stripe webhook secret is not configured")

    signature = request.headers.get("stripe-signature")
    if not signature:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing Stripe signature")

    payload = await request.body()
    try:
        event = stripe.Webhook.construct_event(payload, signature, secret.get_secret_value())
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload") from e
    except stripe.SignatureVerificationError as e:
        logger.warning("Rejected webhook with bad signature")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid signature") from e

    return await processor.process(event)
