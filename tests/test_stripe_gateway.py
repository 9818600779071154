"""Unit tests for the Stripe gateway wrapper."""

import json
from dataclasses import replace
from unittest.mock import MagicMock, patch

import pytest
import stripe
from fake_stripe import sign_payload

from mealplan_billing.services.exceptions import (
    ConfigurationError,
    ExternalServiceError,
    WebhookAuthError,
)
from mealplan_billing.services.stripe_gateway import StripeGateway


@pytest.fixture()
def gateway(billing_settings) -> StripeGateway:
    return StripeGateway(billing_settings)


def _listing(*objects: dict) -> MagicMock:
    result = MagicMock()
    result.data = list(objects)
    result.auto_paging_iter.return_value = iter(objects)
    return result


def test_calls_carry_key_and_api_version(gateway) -> None:
    with patch("stripe.Customer.list", return_value=_listing()) as mock_list:
        assert gateway.find_customers("jane@example.com") == []

    kwargs = mock_list.call_args.kwargs
    assert kwargs["api_key"] == "sk_test_123"
    assert kwargs["stripe_version"] == "2024-06-20"
    assert kwargs["email"] == "jane@example.com"
    assert kwargs["limit"] == 1


def test_customer_records_are_converted(gateway) -> None:
    obj = {
        "id": "cus_1",
        "email": "jane@example.com",
        "name": "Jane",
        "created": 1700000000,
        "invoice_settings": {"default_payment_method": {"id": "pm_1"}},
    }
    with patch("stripe.Customer.list", return_value=_listing(obj)):
        (customer,) = gateway.find_customers("jane@example.com")

    assert customer.id == "cus_1"
    assert customer.default_payment_method == "pm_1"
    assert customer.created == 1700000000


def test_card_error_is_translated_with_stage(gateway) -> None:
    error = stripe.CardError("Your card was declined.", None, "card_declined")
    with patch("stripe.PaymentMethod.attach", side_effect=error):
        with pytest.raises(ExternalServiceError) as exc_info:
            gateway.attach_payment_method("pm_1", "cus_1")

    exc = exc_info.value
    assert exc.stage == "customer_setup"
    assert exc.stripe_code == "card_declined"
    assert exc.message == "Your card was declined."
    assert not exc.retryable
    assert exc.to_dict()["details"]["retryable"] is False


def test_connection_error_is_retryable(gateway) -> None:
    with patch("stripe.Product.list", side_effect=stripe.APIConnectionError("timeout")):
        with pytest.raises(ExternalServiceError) as exc_info:
            gateway.list_products()

    assert exc_info.value.stage == "catalog_setup"
    assert exc_info.value.retryable
    assert exc_info.value.to_dict()["details"] == {"stage": "catalog_setup", "retryable": True}


def test_unconfigured_gateway_makes_no_calls(billing_settings) -> None:
    gateway = StripeGateway(replace(billing_settings, stripe_secret_key=""))
    with patch("stripe.Customer.list") as mock_list:
        with pytest.raises(ConfigurationError):
            gateway.find_customers("jane@example.com")
    mock_list.assert_not_called()


def test_missing_coupon_returns_none(gateway) -> None:
    error = stripe.InvalidRequestError("No such coupon", "id", code="resource_missing")
    with patch("stripe.Coupon.retrieve", side_effect=error):
        assert gateway.retrieve_coupon("FIRST_4_WEEKS_50_OFF") is None


def test_create_subscription_request_shape(gateway) -> None:
    obj = {
        "id": "sub_1",
        "customer": "cus_1",
        "status": "incomplete",
        "items": {
            "data": [
                {
                    "id": "si_1",
                    "price": {
                        "id": "price_1",
                        "product": "prod_1",
                        "unit_amount": 2000,
                        "currency": "aud",
                        "recurring": {"interval": "week", "interval_count": 1},
                    },
                }
            ]
        },
        "metadata": {"plan_type": "weekly-meal-plan"},
        "discounts": ["di_1"],
        "latest_invoice": {"payment_intent": {"client_secret": "pi_1_secret_x"}},
    }
    with patch("stripe.Subscription.create", return_value=obj) as mock_create:
        subscription = gateway.create_subscription(
            "cus_1", [{"price": "price_1"}], {"plan_type": "weekly-meal-plan"}, "COUPON"
        )

    kwargs = mock_create.call_args.kwargs
    assert kwargs["payment_behavior"] == "default_incomplete"
    assert kwargs["expand"] == ["latest_invoice.payment_intent"]
    assert kwargs["discounts"] == [{"coupon": "COUPON"}]
    assert subscription.client_secret == "pi_1_secret_x"
    assert subscription.has_discount
    assert subscription.items[0].price.matches(2000, "aud", "week")


def test_modify_passes_idempotency_key(gateway) -> None:
    obj = {"id": "sub_1", "customer": "cus_1", "status": "active", "items": {"data": []}}
    with patch("stripe.Subscription.modify", return_value=obj) as mock_modify:
        gateway.modify_subscription("sub_1", idempotency_key="promotion:sub_1:in_1:0", metadata={})

    assert mock_modify.call_args.args == ("sub_1",)
    assert mock_modify.call_args.kwargs["idempotency_key"] == "promotion:sub_1:in_1:0"


class TestVerifyWebhook:
    def test_valid_signature_returns_event(self, gateway) -> None:
        payload = json.dumps({"id": "evt_1", "type": "invoice.paid"}).encode()

        event = gateway.verify_webhook(payload, sign_payload(payload))

        assert event["id"] == "evt_1"

    def test_wrong_secret_is_rejected(self, gateway) -> None:
        payload = b'{"id": "evt_1"}'
        with pytest.raises(WebhookAuthError):
            gateway.verify_webhook(payload, sign_payload(payload, secret="whsec_other"))

    def test_stale_timestamp_is_rejected(self, gateway) -> None:
        payload = b'{"id": "evt_1"}'
        with pytest.raises(WebhookAuthError):
            gateway.verify_webhook(payload, sign_payload(payload, timestamp=1_000_000))

    def test_signed_non_object_is_rejected(self, gateway) -> None:
        payload = b"[1, 2, 3]"
        with pytest.raises(WebhookAuthError):
            gateway.verify_webhook(payload, sign_payload(payload))

    def test_missing_secret(self, billing_settings) -> None:
        gateway = StripeGateway(replace(billing_settings, stripe_webhook_secret=""))
        with pytest.raises(ConfigurationError):
            gateway.verify_webhook(b"{}", "t=1,v1=abc")


def test_create_price_is_weekly_and_tagged_catalog_setup(gateway) -> None:
    error = stripe.InvalidRequestError("No such product", "product", code="resource_missing")
    with patch("stripe.Price.create", side_effect=error) as mock_create:
        with pytest.raises(ExternalServiceError) as exc_info:
            gateway.create_price("prod_1", 2000, "aud", "week")

    kwargs = mock_create.call_args.kwargs
    assert kwargs["recurring"] == {"interval": "week", "interval_count": 1}
    assert "stage" not in kwargs
    assert exc_info.value.stage == "catalog_setup"
    assert exc_info.value.stripe_code == "resource_missing"
