"""Browser-facing checkout routes."""

import logging

from fastapi import APIRouter, Depends

from mealplan_billing.api.deps import get_payment_intents, get_subscriptions
from mealplan_billing.schemas.billing import (
    PaymentIntentRequest,
    PaymentIntentResponse,
    SubscriptionCheckoutRequest,
    SubscriptionCheckoutResponse,
)
from mealplan_billing.services.billing import PaymentIntents, Subscriptions

logger = logging.getLogger(__name__)
router = APIRouter(tags=["checkout"])

CHECKOUT_PATHS = ("/create-subscription", "/create-payment-intent")


@router.post("/create-subscription", response_model=SubscriptionCheckoutResponse)
def create_subscription(
    payload: SubscriptionCheckoutRequest,
    subscriptions: Subscriptions = Depends(get_subscriptions),
) -> SubscriptionCheckoutResponse:
    """Create an incomplete weekly subscription and return its client secret."""
    result = subscriptions.create_checkout(payload)
    return SubscriptionCheckoutResponse(
        subscription_id=result.subscription_id,
        client_secret=result.client_secret,
        customer_id=result.customer_id,
    )


@router.post("/create-payment-intent", response_model=PaymentIntentResponse)
def create_payment_intent(
    payload: PaymentIntentRequest,
    payments: PaymentIntents = Depends(get_payment_intents),
) -> PaymentIntentResponse:
    intent = payments.create_one_off(payload)
    return PaymentIntentResponse(
        client_secret=intent.client_secret,
        payment_intent_id=intent.id,
    )
