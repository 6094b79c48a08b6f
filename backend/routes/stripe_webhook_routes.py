"""
Stripe Webhook Handler
Settled checkouts take one unit of inventory. Signature-verified, idempotent
per provider event id.
"""
import json
import logging

import stripe
from fastapi import APIRouter, Depends, Header, Request

from config.settings import Settings
from core.dependencies import get_app_settings, get_purchase_service
from core.errors import UpstreamError, ValidationFailure
from services.purchase_service import PurchaseService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: str = Header(None, alias="Stripe-Signature"),
    settings: Settings = Depends(get_app_settings),
    service: PurchaseService = Depends(get_purchase_service),
):
    """
    Handle checkout.session.completed.

    Anything that passes signature verification is answered 200 with the
    processing outcome; inventory problems are logged for reconciliation.
    """
    if not settings.stripe_webhook_secret:
        logger.error("STRIPE_WEBHOOK_SECRET is not set; refusing webhook")
        raise UpstreamError("Webhook is not configured", code="webhook_not_configured")

    if not stripe_signature:
        raise ValidationFailure("Missing signature", code="invalid_signature")

    payload = await request.body()
    try:
        stripe.Webhook.construct_event(payload, stripe_signature, settings.stripe_webhook_secret)
    except ValueError:
        raise ValidationFailure("Invalid payload", code="invalid_payload")
    except stripe.SignatureVerificationError:
        raise ValidationFailure("Invalid signature", code="invalid_signature")

    event = json.loads(payload)
    logger.info(f"Stripe webhook received: {event.get('type')} ({event.get('id')})")
    result = service.handle_event(event)
    return {"received": True, **result}
