import logging
from dataclasses import dataclass

from mealplan_billing.config import Settings, require_stripe_keys
from mealplan_billing.metrics import CHECKOUT_RESULTS
from mealplan_billing.schemas.billing import SubscriptionCheckoutRequest
from mealplan_billing.services.billing.catalog import Catalog, PlanTerms
from mealplan_billing.services.billing.coupons import Coupons
from mealplan_billing.services.billing.customers import Customers
from mealplan_billing.services.exceptions import BillingError, ExternalServiceError
from mealplan_billing.services.billing.promotion import PLAN_TYPE, initial_metadata
from mealplan_billing.services.stripe_gateway import StripeGateway

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckoutResult:
    subscription_id: str
    client_secret: str
    customer_id: str


class Subscriptions:
    def __init__(self, gateway: StripeGateway, config: Settings) -> None:
        self.gateway = gateway
        self.settings = config
        self.customers = Customers(gateway, config)
        self.catalog = Catalog(gateway)
        self.coupons = Coupons(gateway, config)

    def build_metadata(self, email: str, name: str, promotional: bool) -> dict[str, str]:
        metadata = {
            "customer_email": email,
            "customer_name": name,
            PLAN_TYPE: self.settings.plan_type,
        }
        if promotional:
            metadata.update(
                initial_metadata(
                    self.settings.promotional_weeks_total, self.settings.plan_amount
                )
            )
        return metadata

    def subscription_items(self, plan: PlanTerms) -> list[dict]:
        if self.settings.catalog_reuse_enabled:
            price = self.catalog.ensure_price(plan)
            return [{"price": price.id}]
        product = self.catalog.ensure_product(plan)
        return [{"price_data": plan.inline_price_data(product.id)}]

    def create_checkout(self, request: SubscriptionCheckoutRequest) -> CheckoutResult:
        """
        Create an incomplete subscription for a checkout request.

        Stages run in order: customer, catalog, promotion, subscription. The
        promotion stage never fails the checkout; any other stage failure is
        raised as ExternalServiceError naming the stage.
        """
        require_stripe_keys(self.settings)
        email = str(request.customer_email)
        logger.info("Creating subscription for: %s", email)
        try:
            result = self._create(request, email)
        except BillingError as exc:
            CHECKOUT_RESULTS.labels(exc.code).inc()
            raise
        CHECKOUT_RESULTS.labels("created").inc()
        return result

    def _create(self, request: SubscriptionCheckoutRequest, email: str) -> CheckoutResult:
        customer = self.customers.resolve(
            email, request.customer_name, request.payment_method_id
        )
        plan = PlanTerms.from_settings(self.settings)
        items = self.subscription_items(plan)

        coupon_id = None
        if self.settings.promotion_enabled:
            coupon_id = self.coupons.ensure_promotion()

        subscription = self.gateway.create_subscription(
            customer.id,
            items,
            self.build_metadata(email, request.customer_name, coupon_id is not None),
            coupon_id=coupon_id,
        )
        if not subscription.client_secret:
            raise ExternalServiceError(
                f"Subscription {subscription.id} has no payment to confirm",
                stage="subscription_creation",
            )
        logger.info(
            "Subscription created: %s",
            subscription.id,
            extra={"subscription_id": subscription.id, "customer_id": customer.id},
        )
        return CheckoutResult(
            subscription_id=subscription.id,
            client_secret=subscription.client_secret,
            customer_id=customer.id,
        )
