"""Tests for webhook verification and promotional transitions."""

from dataclasses import replace

import pytest
from fake_stripe import FakeStripeGateway

from mealplan_billing.services.billing import WebhookProcessor, parse_event
from mealplan_billing.services.billing.promotion import PROMOTIONAL_KEYS, initial_metadata
from mealplan_billing.services.exceptions import (
    ConfigurationError,
    WebhookAuthError,
    WebhookProcessingError,
)


@pytest.fixture()
def processor(fake_stripe, billing_settings) -> WebhookProcessor:
    return WebhookProcessor(fake_stripe, billing_settings)


@pytest.fixture()
def promo_subscription(fake_stripe):
    customer = fake_stripe.add_customer("jane@example.com", "Jane")
    product = fake_stripe.add_product("Weekly Meal Plan", {"plan_type": "weekly-meal-plan"})
    price = fake_stripe.add_price(product.id, 2000)
    return fake_stripe.add_subscription(
        customer.id,
        price,
        metadata={"plan_type": "weekly-meal-plan", **initial_metadata(4, 2000)},
        has_discount=True,
    )


def _pay(processor, signed_event, subscription_id: str, invoice_id: str, event_id: str | None = None):
    body, signature = signed_event(
        "invoice.payment_succeeded",
        {"id": invoice_id, "object": "invoice", "subscription": subscription_id},
        event_id=event_id or f"evt_{invoice_id}",
    )
    return processor.handle(body, signature)


def test_payment_increments_counter(processor, signed_event, promo_subscription, fake_stripe) -> None:
    _pay(processor, signed_event, promo_subscription.id, "in_1")

    metadata = fake_stripe.subscriptions[promo_subscription.id].metadata
    assert metadata["promotional_weeks_used"] == "1"
    assert metadata["promotional_invoices"] == "in_1"
    assert fake_stripe.subscriptions[promo_subscription.id].has_discount


def test_fourth_payment_switches_to_regular_price(
    processor, signed_event, promo_subscription, fake_stripe
) -> None:
    for n in range(1, 5):
        _pay(processor, signed_event, promo_subscription.id, f"in_{n}")

    subscription = fake_stripe.subscriptions[promo_subscription.id]
    assert not subscription.has_discount
    assert not any(key in subscription.metadata for key in PROMOTIONAL_KEYS)
    assert subscription.metadata["plan_type"] == "weekly-meal-plan"
    assert subscription.items[0].price.unit_amount == 2000

    final = fake_stripe.modifications[-1]["params"]
    assert final["discounts"] == ""
    assert final["proration_behavior"] == "none"
    assert final["items"][0]["id"] == promo_subscription.items[0].id


def test_regular_amount_from_metadata_is_used(processor, signed_event, fake_stripe) -> None:
    customer = fake_stripe.add_customer("sam@example.com")
    product = fake_stripe.add_product("Weekly Meal Plan", {"plan_type": "weekly-meal-plan"})
    price = fake_stripe.add_price(product.id, 2000)
    subscription = fake_stripe.add_subscription(
        customer.id,
        price,
        metadata={
            "promotional_weeks_used": "3",
            "promotional_weeks_total": "4",
            "regular_price_amount": "2500",
        },
        has_discount=True,
    )

    _pay(processor, signed_event, subscription.id, "in_4")

    new_price = fake_stripe.subscriptions[subscription.id].items[0].price
    assert new_price.unit_amount == 2500
    assert new_price.product == product.id


def test_transition_after_regular_is_noop(
    processor, signed_event, promo_subscription, fake_stripe
) -> None:
    for n in range(1, 6):
        _pay(processor, signed_event, promo_subscription.id, f"in_{n}")

    assert len(fake_stripe.modifications) == 4


def test_redelivered_event_is_not_double_counted(
    processor, signed_event, promo_subscription, fake_stripe
) -> None:
    _pay(processor, signed_event, promo_subscription.id, "in_1")
    _pay(processor, signed_event, promo_subscription.id, "in_1")
    _pay(processor, signed_event, promo_subscription.id, "in_1", event_id="evt_other")

    assert fake_stripe.subscriptions[promo_subscription.id].metadata["promotional_weeks_used"] == "1"
    assert len(fake_stripe.modifications) == 1


def test_update_uses_idempotency_key(processor, signed_event, promo_subscription, fake_stripe) -> None:
    _pay(processor, signed_event, promo_subscription.id, "in_1")

    key = fake_stripe.modifications[0]["idempotency_key"]
    assert key == f"promotion:{promo_subscription.id}:in_1:0"


def test_invoice_parent_reference_is_understood(
    processor, signed_event, promo_subscription, fake_stripe
) -> None:
    body, signature = signed_event(
        "invoice.payment_succeeded",
        {
            "id": "in_1",
            "object": "invoice",
            "parent": {"subscription_details": {"subscription": promo_subscription.id}},
        },
    )

    processor.handle(body, signature)

    assert fake_stripe.subscriptions[promo_subscription.id].metadata["promotional_weeks_used"] == "1"


@pytest.mark.parametrize(
    ("event_type", "obj"),
    [
        ("invoice.payment_failed", {"id": "in_1", "subscription": "SUB"}),
        ("customer.subscription.deleted", {"id": "SUB", "object": "subscription"}),
        ("customer.created", {"id": "cus_1"}),
        ("invoice.payment_succeeded", {"id": "in_1", "subscription": None}),
    ],
)
def test_events_without_promotional_effect(
    processor, signed_event, promo_subscription, fake_stripe, event_type, obj
) -> None:
    obj = {k: (promo_subscription.id if v == "SUB" else v) for k, v in obj.items()}
    body, signature = signed_event(event_type, obj)

    event = processor.handle(body, signature)

    assert event.type == event_type
    assert fake_stripe.modifications == []
    assert fake_stripe.subscriptions[promo_subscription.id].metadata["promotional_weeks_used"] == "0"


def test_cancelled_subscription_is_not_mutated(processor, signed_event, fake_stripe) -> None:
    customer = fake_stripe.add_customer("jane@example.com")
    product = fake_stripe.add_product("Weekly Meal Plan")
    subscription = fake_stripe.add_subscription(
        customer.id,
        fake_stripe.add_price(product.id, 2000),
        metadata=initial_metadata(4, 2000),
        status="canceled",
    )

    _pay(processor, signed_event, subscription.id, "in_1")

    assert fake_stripe.modifications == []


def test_corrupt_metadata_fails_without_mutation(processor, signed_event, fake_stripe) -> None:
    customer = fake_stripe.add_customer("jane@example.com")
    product = fake_stripe.add_product("Weekly Meal Plan")
    subscription = fake_stripe.add_subscription(
        customer.id,
        fake_stripe.add_price(product.id, 2000),
        metadata={"promotional_weeks_used": "1", "promotional_weeks_total": "4"},
    )

    with pytest.raises(WebhookProcessingError) as exc_info:
        _pay(processor, signed_event, subscription.id, "in_1")

    assert exc_info.value.status_code == 500
    assert exc_info.value.event_id == "evt_in_1"
    assert fake_stripe.modifications == []


def test_invalid_signature_is_rejected_before_any_call(
    processor, signed_event, promo_subscription, fake_stripe
) -> None:
    body, _ = signed_event(
        "invoice.payment_succeeded", {"id": "in_1", "subscription": promo_subscription.id}
    )
    _, forged = signed_event(
        "invoice.payment_succeeded",
        {"id": "in_1", "subscription": promo_subscription.id},
        secret="whsec_wrong",
    )

    with pytest.raises(WebhookAuthError):
        processor.handle(body, forged)
    with pytest.raises(WebhookAuthError):
        processor.handle(body, None)
    assert fake_stripe.calls == []


def test_tampered_body_is_rejected(processor, signed_event, promo_subscription, fake_stripe) -> None:
    body, signature = signed_event(
        "invoice.payment_succeeded", {"id": "in_1", "subscription": promo_subscription.id}
    )

    with pytest.raises(WebhookAuthError):
        processor.handle(body.replace(b"in_1", b"in_2"), signature)
    assert fake_stripe.calls == []


def test_missing_webhook_secret_is_configuration_error(billing_settings, signed_event) -> None:
    config = replace(billing_settings, stripe_webhook_secret="")
    processor = WebhookProcessor(FakeStripeGateway(config), config)
    body, signature = signed_event("invoice.payment_succeeded", {"id": "in_1"})

    with pytest.raises(ConfigurationError):
        processor.handle(body, signature)


def test_parse_event_requires_id_and_type() -> None:
    with pytest.raises(WebhookAuthError):
        parse_event({"data": {"object": {}}})
