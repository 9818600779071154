import logging
from dataclasses import dataclass

from mealplan_billing.config import Settings
from mealplan_billing.services.stripe_gateway import PriceRecord, ProductRecord, StripeGateway

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlanTerms:
    name: str
    description: str
    plan_type: str
    amount: int
    currency: str
    interval: str

    @classmethod
    def from_settings(cls, config: Settings, amount: int | None = None) -> "PlanTerms":
        return cls(
            name=config.plan_name,
            description=config.plan_description,
            plan_type=config.plan_type,
            amount=config.plan_amount if amount is None else amount,
            currency=config.plan_currency,
            interval=config.plan_interval,
        )

    def inline_price_data(self, product_id: str) -> dict:
        """Terms for a subscription item declared without a catalog price."""
        return {
            "currency": self.currency,
            "product": product_id,
            "unit_amount": self.amount,
            "recurring": {"interval": self.interval, "interval_count": 1},
        }


class Catalog:
    def __init__(self, gateway: StripeGateway) -> None:
        self.gateway = gateway

    def ensure_product(self, plan: PlanTerms) -> ProductRecord:
        products = [
            p
            for p in self.gateway.list_products()
            if p.metadata.get("plan_type") == plan.plan_type or p.name == plan.name
        ]
        if products:
            # Prefer the tagged product, then the oldest.
            products.sort(
                key=lambda p: (p.metadata.get("plan_type") != plan.plan_type, p.created, p.id)
            )
            return products[0]
        product = self.gateway.create_product(
            plan.name, plan.description, {"plan_type": plan.plan_type}
        )
        logger.info("Created plan product %s for %s", product.id, plan.plan_type)
        return product

    def find_price(self, product_id: str, plan: PlanTerms) -> PriceRecord | None:
        matches = [
            p
            for p in self.gateway.list_prices(product_id)
            if p.matches(plan.amount, plan.currency, plan.interval)
        ]
        if not matches:
            return None
        return min(matches, key=lambda p: (p.created, p.id))

    def ensure_price(self, plan: PlanTerms) -> PriceRecord:
        """Return the price for (amount, currency, interval), creating it once."""
        product = self.ensure_product(plan)
        price = self.find_price(product.id, plan)
        if price:
            return price
        created = self.gateway.create_price(
            product.id, plan.amount, plan.currency, plan.interval
        )
        # A concurrent checkout may have created the same price; converge on the oldest.
        canonical = self.find_price(product.id, plan) or created
        if canonical.id != created.id:
            logger.warning(
                "Duplicate price %s created for product %s, using %s",
                created.id,
                product.id,
                canonical.id,
            )
        else:
            logger.info("Created plan price %s", created.id)
        return canonical
