import logging

from mealplan_billing.config import Settings, require_stripe_keys
from mealplan_billing.schemas.billing import PaymentIntentRequest
from mealplan_billing.services.stripe_gateway import PaymentIntentRecord, StripeGateway

logger = logging.getLogger(__name__)


class PaymentIntents:
    def __init__(self, gateway: StripeGateway, config: Settings) -> None:
        self.gateway = gateway
        self.settings = config

    def create_one_off(self, request: PaymentIntentRequest) -> PaymentIntentRecord:
        """Create a single charge outside any subscription."""
        require_stripe_keys(self.settings)
        email = str(request.customer_email)
        product = request.product or self.settings.payment_intent_default_product
        intent = self.gateway.create_payment_intent(
            amount=request.amount or self.settings.payment_intent_default_amount,
            currency=(request.currency or self.settings.payment_intent_default_currency).lower(),
            receipt_email=email,
            description=f"Weekly Meal Plan - {request.customer_name}",
            metadata={
                "customer_email": email,
                "customer_name": request.customer_name,
                "product": product,
            },
        )
        logger.info("Created payment intent %s for %s", intent.id, email)
        return intent
