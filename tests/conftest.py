import json
from collections.abc import Callable, Iterator
from dataclasses import replace
from typing import Any

import pytest
from fastapi.testclient import TestClient

from fake_stripe import WEBHOOK_SECRET, FakeStripeGateway, sign_payload
from mealplan_billing.config import Settings


@pytest.fixture()
def billing_settings() -> Settings:
    """Settings pinned to known values regardless of the environment."""
    return replace(
        Settings(),
        stripe_secret_key="sk_test_123",
        stripe_webhook_secret=WEBHOOK_SECRET,
        stripe_webhook_tolerance_seconds=300,
        plan_name="Weekly Meal Plan",
        plan_description="Personalized weekly meal plans",
        plan_type="weekly-meal-plan",
        plan_currency="aud",
        plan_amount=2000,
        plan_interval="week",
        promotion_enabled=True,
        promotion_coupon_id="FIRST_4_WEEKS_50_OFF",
        promotion_coupon_name="First 4 Weeks - 50% OFF",
        promotion_percent_off=50,
        promotion_duration_in_months=1,
        promotional_weeks_total=4,
        catalog_reuse_enabled=True,
        payment_method_policy="always",
        payment_intent_default_amount=1000,
        payment_intent_default_currency="aud",
        payment_intent_default_product="weekly-meal-plan",
        cors_origins="*",
    )


@pytest.fixture()
def fake_stripe(billing_settings: Settings) -> FakeStripeGateway:
    return FakeStripeGateway(billing_settings)


@pytest.fixture()
def client(billing_settings: Settings, fake_stripe: FakeStripeGateway) -> Iterator[TestClient]:
    from mealplan_billing.api.deps import get_gateway, get_settings
    from mealplan_billing.main import app

    app.dependency_overrides[get_settings] = lambda: billing_settings
    app.dependency_overrides[get_gateway] = lambda: fake_stripe
    try:
        yield TestClient(app, raise_server_exceptions=False)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture()
def signed_event() -> Callable[..., tuple[bytes, str]]:
    """Factory returning (body, signature header) for a Stripe event."""

    def _build(
        event_type: str,
        obj: dict[str, Any],
        event_id: str = "evt_test_1",
        secret: str = WEBHOOK_SECRET,
    ) -> tuple[bytes, str]:
        body = json.dumps(
            {
                "id": event_id,
                "object": "event",
                "type": event_type,
                "data": {"object": obj},
            }
        ).encode("utf-8")
        return body, sign_payload(body, secret)

    return _build
