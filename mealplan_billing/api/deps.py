from fastapi import Depends

from mealplan_billing.config import Settings, settings
from mealplan_billing.services.billing import (
    PaymentIntents,
    Subscriptions,
    WebhookProcessor,
)
from mealplan_billing.services.stripe_gateway import StripeGateway, stripe_gateway


def get_settings() -> Settings:
    return settings


def get_gateway() -> StripeGateway:
    return stripe_gateway


def get_subscriptions(
    gateway: StripeGateway = Depends(get_gateway),
    config: Settings = Depends(get_settings),
) -> Subscriptions:
    return Subscriptions(gateway, config)


def get_payment_intents(
    gateway: StripeGateway = Depends(get_gateway),
    config: Settings = Depends(get_settings),
) -> PaymentIntents:
    return PaymentIntents(gateway, config)


def get_webhook_processor(
    gateway: StripeGateway = Depends(get_gateway),
    config: Settings = Depends(get_settings),
) -> WebhookProcessor:
    return WebhookProcessor(gateway, config)
