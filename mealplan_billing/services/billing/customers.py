import logging

from mealplan_billing.config import Settings
from mealplan_billing.services.exceptions import ExternalServiceError
from mealplan_billing.services.stripe_gateway import CustomerRecord, StripeGateway

logger = logging.getLogger(__name__)

# Enough to see every duplicate that racing checkouts could create.
_RECONCILE_LIMIT = 10


def _oldest(matches: list[CustomerRecord]) -> CustomerRecord:
    return min(matches, key=lambda c: (c.created, c.id))


class Customers:
    def __init__(self, gateway: StripeGateway, config: Settings) -> None:
        self.gateway = gateway
        self.settings = config

    def resolve(self, email: str, name: str, payment_method_id: str) -> CustomerRecord:
        """Find the customer for this email or create it, then set up the payment method."""
        existing = self.gateway.find_customers(email, limit=_RECONCILE_LIMIT)
        if existing:
            # A duplicate left by a failed reconcile must never win.
            customer = _oldest(existing)
            logger.info(
                "Found existing customer: %s", customer.id, extra={"customer_id": customer.id}
            )
        else:
            customer = self._create_reconciled(email, name)
        return self._attach_payment_method(customer, payment_method_id)

    def _create_reconciled(self, email: str, name: str) -> CustomerRecord:
        """
        Create a customer and converge with any concurrent creation.

        The oldest customer for the email is canonical. The customer is created
        without a payment method so that a losing duplicate holds nothing and
        can be deleted.
        """
        created = self.gateway.create_customer(email, name)
        matches = self.gateway.find_customers(email, limit=_RECONCILE_LIMIT)
        if not any(c.id == created.id for c in matches):
            matches.append(created)
        canonical = _oldest(matches)
        if canonical.id == created.id:
            logger.info("Created new customer: %s", created.id, extra={"customer_id": created.id})
            return created

        logger.warning(
            "Customer %s raced with existing %s for the same email",
            created.id,
            canonical.id,
            extra={"customer_id": canonical.id},
        )
        try:
            self.gateway.delete_customer(created.id)
        except ExternalServiceError:
            logger.exception(
                "Could not delete duplicate customer %s",
                created.id,
                extra={"customer_id": created.id},
            )
        return canonical

    def _attach_payment_method(
        self, customer: CustomerRecord, payment_method_id: str
    ) -> CustomerRecord:
        payment_method = self.gateway.retrieve_payment_method(payment_method_id)
        if payment_method.customer == customer.id:
            logger.info(
                "Payment method %s already attached to %s",
                payment_method_id,
                customer.id,
                extra={"customer_id": customer.id},
            )
        else:
            self.gateway.attach_payment_method(payment_method_id, customer.id)

        if not self._should_set_default(customer, payment_method_id):
            return customer
        return self.gateway.set_default_payment_method(customer.id, payment_method_id)

    def _should_set_default(self, customer: CustomerRecord, payment_method_id: str) -> bool:
        if customer.default_payment_method == payment_method_id:
            return False
        if self.settings.payment_method_policy == "if_missing":
            return customer.default_payment_method is None
        return True
