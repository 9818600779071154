import logging
from typing import Any

from mealplan_billing.config import Settings
from mealplan_billing.metrics import PROMOTION_TRANSITIONS, WEBHOOK_EVENTS
from mealplan_billing.services.billing.catalog import Catalog, PlanTerms
from mealplan_billing.services.exceptions import (
    BillingError,
    SubscriptionStateError,
    WebhookAuthError,
    WebhookProcessingError,
)
from mealplan_billing.services.billing.promotion import (
    BillingEvent,
    BillingEventType,
    SwitchToRegularPrice,
    Transition,
    UpdateMetadata,
    apply_event,
    decode_state,
)
from mealplan_billing.services.stripe_gateway import StripeGateway, SubscriptionRecord

logger = logging.getLogger(__name__)


def _invoice_subscription(invoice: dict[str, Any]) -> str | None:
    subscription = invoice.get("subscription")
    if subscription is None:
        # Newer API versions nest the reference under the invoice parent.
        details = (invoice.get("parent") or {}).get("subscription_details") or {}
        subscription = details.get("subscription")
    if isinstance(subscription, dict):
        return subscription.get("id")
    return subscription


def parse_event(envelope: dict[str, Any]) -> BillingEvent:
    """Build a BillingEvent from a verified Stripe event envelope."""
    event_id = envelope.get("id")
    event_type = envelope.get("type")
    if not event_id or not event_type:
        raise WebhookAuthError("Invalid webhook payload")
    obj = (envelope.get("data") or {}).get("object") or {}
    if event_type == BillingEventType.subscription_deleted.value:
        return BillingEvent(id=event_id, type=event_type, subscription_id=obj.get("id"))
    if event_type.startswith("invoice."):
        return BillingEvent(
            id=event_id,
            type=event_type,
            subscription_id=_invoice_subscription(obj),
            invoice_id=obj.get("id"),
        )
    return BillingEvent(id=event_id, type=event_type)


class WebhookProcessor:
    def __init__(self, gateway: StripeGateway, config: Settings) -> None:
        self.gateway = gateway
        self.settings = config
        self.catalog = Catalog(gateway)

    def verify(self, payload: bytes, signature: str | None) -> BillingEvent:
        envelope = self.gateway.verify_webhook(payload, signature)
        return parse_event(envelope)

    def handle(self, payload: bytes, signature: str | None) -> BillingEvent:
        """Verify then process one delivery. Nothing runs before verification."""
        event = self.verify(payload, signature)
        log_extra = {"event_id": event.id, "event_type": event.type}
        logger.info("Webhook event received: %s", event.type, extra=log_extra)
        try:
            outcome = self.process(event)
        except Exception as exc:
            WEBHOOK_EVENTS.labels(event.type, "failed").inc()
            logger.exception("Webhook processing error", extra=log_extra)
            message = exc.message if isinstance(exc, BillingError) else "Webhook processing failed"
            raise WebhookProcessingError(
                message, event_id=event.id, event_type=event.type
            ) from exc
        WEBHOOK_EVENTS.labels(event.type if event.recognised else "other", outcome).inc()
        return event

    def process(self, event: BillingEvent) -> str:
        if event.type == BillingEventType.payment_succeeded.value:
            return self._payment_succeeded(event)
        if event.type == BillingEventType.payment_failed.value:
            logger.warning(
                "Payment failed for subscription: %s",
                event.subscription_id,
                extra={"event_id": event.id, "subscription_id": event.subscription_id},
            )
            return "acknowledged"
        if event.type == BillingEventType.subscription_deleted.value:
            logger.info(
                "Subscription cancelled: %s",
                event.subscription_id,
                extra={"event_id": event.id, "subscription_id": event.subscription_id},
            )
            return "acknowledged"
        logger.info("Unhandled event type: %s", event.type, extra={"event_id": event.id})
        return "ignored"

    def _payment_succeeded(self, event: BillingEvent) -> str:
        if not event.subscription_id:
            logger.info("Invoice %s is not for a subscription", event.invoice_id)
            return "ignored"
        log_extra = {"event_id": event.id, "subscription_id": event.subscription_id}
        logger.info("Payment succeeded for subscription: %s", event.subscription_id, extra=log_extra)

        # Read-modify-write against the current server-side metadata.
        subscription = self.gateway.retrieve_subscription(event.subscription_id)
        state = decode_state(subscription.metadata, subscription.status, subscription.id)
        transition = apply_event(state, event)
        if not transition.changed:
            logger.info("No promotional change (%s)", state.phase, extra=log_extra)
            return "unchanged"

        self.apply_transition(
            subscription,
            transition,
            idempotency_key=f"promotion:{subscription.id}:{event.invoice_id}:{state.used}",
        )
        PROMOTION_TRANSITIONS.labels(transition.state.phase).inc()
        logger.info("Subscription now %s", transition.state.phase, extra=log_extra)
        return "applied"

    def apply_transition(
        self,
        subscription: SubscriptionRecord,
        transition: Transition,
        idempotency_key: str | None = None,
    ) -> SubscriptionRecord:
        """Execute a transition's effects as a single subscription update."""
        params: dict[str, Any] = {}
        metadata: dict[str, str] = {}
        for effect in transition.effects:
            if isinstance(effect, UpdateMetadata):
                metadata.update(effect.values)
            elif isinstance(effect, SwitchToRegularPrice):
                params.update(self._regular_price_params(subscription, effect.amount))
        if metadata:
            params["metadata"] = metadata
        return self.gateway.modify_subscription(
            subscription.id,
            idempotency_key=idempotency_key,
            **params,
        )

    def _regular_price_params(
        self, subscription: SubscriptionRecord, amount: int
    ) -> dict[str, Any]:
        if not subscription.items:
            raise SubscriptionStateError(
                f"Subscription {subscription.id} has no items", subscription.id
            )
        item = subscription.items[0]
        plan = PlanTerms(
            name=self.settings.plan_name,
            description=self.settings.plan_description,
            plan_type=self.settings.plan_type,
            amount=amount,
            currency=item.price.currency or self.settings.plan_currency,
            interval=item.price.interval or self.settings.plan_interval,
        )
        if self.settings.catalog_reuse_enabled:
            entry: dict[str, Any] = {"id": item.id, "price": self.catalog.ensure_price(plan).id}
        else:
            entry = {"id": item.id, "price_data": plan.inline_price_data(item.price.product)}
        return {
            "items": [entry],
            "discounts": "",
            "proration_behavior": "none",
        }
