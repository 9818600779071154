"""Stripe webhook route."""

import logging

from fastapi import APIRouter, Depends, Request
from starlette.concurrency import run_in_threadpool

from mealplan_billing.api.deps import get_settings, get_webhook_processor
from mealplan_billing.config import Settings
from mealplan_billing.schemas.billing import WebhookAck
from mealplan_billing.services.billing import WebhookProcessor, require_stripe_keys

logger = logging.getLogger(__name__)
router = APIRouter(tags=["webhooks"])


@router.post("/stripe-webhook", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    processor: WebhookProcessor = Depends(get_webhook_processor),
    config: Settings = Depends(get_settings),
) -> WebhookAck:
    """Handle a Stripe event. No auth; the signature is verified first."""
    require_stripe_keys(config)
    body = await request.body()
    signature = request.headers.get("stripe-signature")
    # The SDK is blocking; keep it off the event loop.
    await run_in_threadpool(processor.handle, body, signature)
    return WebhookAck(received=True)
