from mealplan_billing.config import require_stripe_keys
from mealplan_billing.services.billing.catalog import Catalog, PlanTerms
from mealplan_billing.services.billing.coupons import Coupons
from mealplan_billing.services.billing.customers import Customers
from mealplan_billing.services.billing.payments import PaymentIntents
from mealplan_billing.services.billing.subscriptions import (
    CheckoutResult,
    Subscriptions,
)
from mealplan_billing.services.billing.webhooks import WebhookProcessor, parse_event

__all__ = [
    "Catalog",
    "CheckoutResult",
    "Coupons",
    "Customers",
    "PaymentIntents",
    "PlanTerms",
    "Subscriptions",
    "WebhookProcessor",
    "parse_event",
    "require_stripe_keys",
]
