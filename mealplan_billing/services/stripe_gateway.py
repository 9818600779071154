"""Stripe gateway integration.

All Stripe calls go through ``StripeGateway`` so that every call carries the
configured API key, API version and timeout, and every Stripe SDK error is
translated into an ``ExternalServiceError`` tagged with the stage that
issued it. Results are returned as plain records instead of ``StripeObject``
instances.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any

import stripe

from mealplan_billing.config import Settings, settings
from mealplan_billing.services.exceptions import (
    ConfigurationError,
    ExternalServiceError,
    WebhookAuthError,
)

logger = logging.getLogger(__name__)

_HTTP_CLIENT_CONFIGURED = False


# ── Records ──────────────────────────────────────────────


@dataclass
class CustomerRecord:
    id: str
    email: str | None
    name: str | None = None
    default_payment_method: str | None = None
    created: int = 0


@dataclass
class PaymentMethodRecord:
    id: str
    customer: str | None = None


@dataclass
class ProductRecord:
    id: str
    name: str
    metadata: dict[str, str] = field(default_factory=dict)
    created: int = 0


@dataclass
class PriceRecord:
    id: str
    product: str
    unit_amount: int
    currency: str
    interval: str | None = None
    interval_count: int = 1
    created: int = 0

    def matches(self, unit_amount: int, currency: str, interval: str) -> bool:
        return (
            self.unit_amount == unit_amount
            and self.currency.lower() == currency.lower()
            and self.interval == interval
            and self.interval_count == 1
        )


@dataclass
class CouponRecord:
    id: str
    percent_off: float | None = None
    duration: str | None = None
    duration_in_months: int | None = None
    valid: bool = True


@dataclass
class SubscriptionItemRecord:
    id: str
    price: PriceRecord


@dataclass
class SubscriptionRecord:
    """
    Snapshot of a Stripe subscription.

    Attributes:
        client_secret: Payment confirmation secret of the latest invoice,
            only populated when the invoice was expanded on the request
    """

    id: str
    customer: str
    status: str
    items: list[SubscriptionItemRecord] = field(default_factory=list)
    metadata: dict[str, str] = field(default_factory=dict)
    has_discount: bool = False
    client_secret: str | None = None


@dataclass
class PaymentIntentRecord:
    id: str
    client_secret: str | None
    status: str
    amount: int
    currency: str


# ── Conversion helpers ───────────────────────────────────


def _id_of(value: Any) -> str | None:
    if value is None or isinstance(value, str):
        return value
    return value.get("id")


def _to_price(obj: Any) -> PriceRecord:
    recurring = obj.get("recurring") or {}
    return PriceRecord(
        id=obj["id"],
        product=_id_of(obj.get("product")) or "",
        unit_amount=obj.get("unit_amount") or 0,
        currency=obj.get("currency") or "",
        interval=recurring.get("interval"),
        interval_count=recurring.get("interval_count") or 1,
        created=obj.get("created") or 0,
    )


def _latest_invoice_secret(invoice: Any) -> str | None:
    if not invoice or isinstance(invoice, str):
        return None
    payment_intent = invoice.get("payment_intent")
    if payment_intent and not isinstance(payment_intent, str):
        return payment_intent.get("client_secret")
    confirmation = invoice.get("confirmation_secret")
    if confirmation:
        return confirmation.get("client_secret")
    return None


def _to_subscription(obj: Any) -> SubscriptionRecord:
    # obj.items is dict.items(); the item list must be read by key.
    items_list = obj.get("items") or {}
    items = [
        SubscriptionItemRecord(id=item["id"], price=_to_price(item["price"]))
        for item in items_list.get("data", [])
    ]
    discounts = obj.get("discounts") or []
    return SubscriptionRecord(
        id=obj["id"],
        customer=_id_of(obj.get("customer")) or "",
        status=obj.get("status") or "",
        items=items,
        metadata=dict(obj.get("metadata") or {}),
        has_discount=bool(obj.get("discount") or discounts),
        client_secret=_latest_invoice_secret(obj.get("latest_invoice")),
    )


def _to_customer(obj: Any) -> CustomerRecord:
    invoice_settings = obj.get("invoice_settings") or {}
    return CustomerRecord(
        id=obj["id"],
        email=obj.get("email"),
        name=obj.get("name"),
        default_payment_method=_id_of(invoice_settings.get("default_payment_method")),
        created=obj.get("created") or 0,
    )


# ── Gateway ──────────────────────────────────────────────


class StripeGateway:
    """Thin wrapper around the Stripe Python SDK."""

    def __init__(self, config: Settings | None = None) -> None:
        self._settings = config or settings
        self._secret_key = self._settings.stripe_secret_key
        self._webhook_secret = self._settings.stripe_webhook_secret

    def is_configured(self) -> bool:
        return bool(self._secret_key)

    def _configure_http_client(self) -> None:
        global _HTTP_CLIENT_CONFIGURED
        if _HTTP_CLIENT_CONFIGURED:
            return
        stripe.max_network_retries = self._settings.stripe_max_network_retries
        stripe.default_http_client = stripe.RequestsClient(
            timeout=self._settings.stripe_api_timeout_seconds
        )
        _HTTP_CLIENT_CONFIGURED = True

    def _call(self, stage: str, operation: str, func: Any, *args: Any, **kwargs: Any) -> Any:
        """Run one Stripe SDK call, translating SDK errors to ExternalServiceError."""
        if not self.is_configured():
            raise ConfigurationError(
                "Stripe secret key is missing", setting="STRIPE_SECRET_KEY"
            )
        self._configure_http_client()
        kwargs.setdefault("api_key", self._secret_key)
        kwargs.setdefault("stripe_version", self._settings.stripe_api_version)
        start = time.monotonic()
        try:
            result = func(*args, **kwargs)
        except stripe.StripeError as exc:
            duration_ms = round((time.monotonic() - start) * 1000.0, 2)
            retryable = isinstance(
                exc,
                (stripe.APIConnectionError, stripe.RateLimitError, stripe.APIError),
            )
            logger.warning(
                "Stripe %s failed: %s",
                operation,
                exc.user_message or str(exc),
                extra={"stage": stage, "duration_ms": duration_ms, "retryable": retryable},
            )
            raise ExternalServiceError(
                exc.user_message or str(exc),
                stage=stage,
                stripe_code=exc.code,
                retryable=retryable,
            ) from exc
        logger.debug(
            "Stripe %s completed",
            operation,
            extra={
                "stage": stage,
                "duration_ms": round((time.monotonic() - start) * 1000.0, 2),
            },
        )
        return result

    # ── Customers ────────────────────────────────────────

    def find_customers(self, email: str, limit: int = 1) -> list[CustomerRecord]:
        """List customers with exactly this email, oldest last (Stripe order)."""
        result = self._call(
            "customer_setup", "customers.list", stripe.Customer.list, email=email, limit=limit
        )
        return [_to_customer(obj) for obj in result.data]

    def create_customer(self, email: str, name: str) -> CustomerRecord:
        obj = self._call(
            "customer_setup",
            "customers.create",
            stripe.Customer.create,
            email=email,
            name=name,
        )
        logger.info("Created Stripe customer: %s", obj["id"], extra={"customer_id": obj["id"]})
        return _to_customer(obj)

    def delete_customer(self, customer_id: str) -> None:
        self._call(
            "customer_setup", "customers.delete", stripe.Customer.delete, customer_id
        )
        logger.info("Deleted Stripe customer: %s", customer_id, extra={"customer_id": customer_id})

    def retrieve_payment_method(self, payment_method_id: str) -> PaymentMethodRecord:
        obj = self._call(
            "customer_setup",
            "payment_methods.retrieve",
            stripe.PaymentMethod.retrieve,
            payment_method_id,
        )
        return PaymentMethodRecord(id=obj["id"], customer=_id_of(obj.get("customer")))

    def attach_payment_method(self, payment_method_id: str, customer_id: str) -> None:
        self._call(
            "customer_setup",
            "payment_methods.attach",
            stripe.PaymentMethod.attach,
            payment_method_id,
            customer=customer_id,
        )

    def set_default_payment_method(
        self, customer_id: str, payment_method_id: str
    ) -> CustomerRecord:
        obj = self._call(
            "customer_setup",
            "customers.modify",
            stripe.Customer.modify,
            customer_id,
            invoice_settings={"default_payment_method": payment_method_id},
        )
        return _to_customer(obj)

    # ── Catalog ──────────────────────────────────────────

    def list_products(self) -> list[ProductRecord]:
        result = self._call(
            "catalog_setup", "products.list", stripe.Product.list, active=True, limit=100
        )
        return [
            ProductRecord(
                id=obj["id"],
                name=obj.get("name") or "",
                metadata=dict(obj.get("metadata") or {}),
                created=obj.get("created") or 0,
            )
            for obj in result.auto_paging_iter()
        ]

    def create_product(
        self, name: str, description: str, metadata: dict[str, str]
    ) -> ProductRecord:
        obj = self._call(
            "catalog_setup",
            "products.create",
            stripe.Product.create,
            name=name,
            description=description,
            metadata=metadata,
        )
        logger.info("Created Stripe product: %s", obj["id"])
        return ProductRecord(
            id=obj["id"],
            name=obj.get("name") or name,
            metadata=dict(obj.get("metadata") or {}),
            created=obj.get("created") or 0,
        )

    def list_prices(self, product_id: str) -> list[PriceRecord]:
        result = self._call(
            "catalog_setup",
            "prices.list",
            stripe.Price.list,
            product=product_id,
            active=True,
            type="recurring",
            limit=100,
        )
        return [_to_price(obj) for obj in result.auto_paging_iter()]

    def create_price(
        self,
        product_id: str,
        unit_amount: int,
        currency: str,
        interval: str,
    ) -> PriceRecord:
        obj = self._call(
            "catalog_setup",
            "prices.create",
            stripe.Price.create,
            product=product_id,
            unit_amount=unit_amount,
            currency=currency,
            recurring={"interval": interval, "interval_count": 1},
        )
        logger.info("Created Stripe price: %s", obj["id"])
        return _to_price(obj)

    # ── Coupons ──────────────────────────────────────────

    def retrieve_coupon(self, coupon_id: str) -> CouponRecord | None:
        """Return the coupon, or None when Stripe reports it missing."""
        try:
            obj = self._call(
                "promotion", "coupons.retrieve", stripe.Coupon.retrieve, coupon_id
            )
        except ExternalServiceError as exc:
            if exc.stripe_code == "resource_missing":
                return None
            raise
        return CouponRecord(
            id=obj["id"],
            percent_off=obj.get("percent_off"),
            duration=obj.get("duration"),
            duration_in_months=obj.get("duration_in_months"),
            valid=bool(obj.get("valid", True)),
        )

    def create_coupon(
        self,
        coupon_id: str,
        name: str,
        percent_off: int,
        duration_in_months: int,
    ) -> CouponRecord:
        obj = self._call(
            "promotion",
            "coupons.create",
            stripe.Coupon.create,
            id=coupon_id,
            name=name,
            percent_off=percent_off,
            duration="repeating",
            duration_in_months=duration_in_months,
        )
        logger.info("Created Stripe coupon: %s", obj["id"])
        return CouponRecord(
            id=obj["id"],
            percent_off=obj.get("percent_off"),
            duration=obj.get("duration"),
            duration_in_months=obj.get("duration_in_months"),
        )

    # ── Subscriptions ────────────────────────────────────

    def create_subscription(
        self,
        customer_id: str,
        items: list[dict[str, Any]],
        metadata: dict[str, str],
        coupon_id: str | None = None,
    ) -> SubscriptionRecord:
        params: dict[str, Any] = {
            "customer": customer_id,
            "items": items,
            "payment_behavior": "default_incomplete",
            "payment_settings": {"save_default_payment_method": "on_subscription"},
            "expand": ["latest_invoice.payment_intent"],
            "metadata": metadata,
        }
        if coupon_id:
            params["discounts"] = [{"coupon": coupon_id}]
        obj = self._call(
            "subscription_creation",
            "subscriptions.create",
            stripe.Subscription.create,
            **params,
        )
        return _to_subscription(obj)

    def retrieve_subscription(self, subscription_id: str) -> SubscriptionRecord:
        obj = self._call(
            "webhook",
            "subscriptions.retrieve",
            stripe.Subscription.retrieve,
            subscription_id,
        )
        return _to_subscription(obj)

    def modify_subscription(
        self,
        subscription_id: str,
        idempotency_key: str | None = None,
        **params: Any,
    ) -> SubscriptionRecord:
        if idempotency_key:
            params["idempotency_key"] = idempotency_key
        obj = self._call(
            "webhook",
            "subscriptions.modify",
            stripe.Subscription.modify,
            subscription_id,
            **params,
        )
        return _to_subscription(obj)

    # ── One-off payments ─────────────────────────────────

    def create_payment_intent(
        self,
        amount: int,
        currency: str,
        receipt_email: str,
        description: str,
        metadata: dict[str, str],
    ) -> PaymentIntentRecord:
        obj = self._call(
            "payment_intent",
            "payment_intents.create",
            stripe.PaymentIntent.create,
            amount=amount,
            currency=currency,
            automatic_payment_methods={"enabled": True},
            metadata=metadata,
            receipt_email=receipt_email,
            description=description,
        )
        logger.info("Created Stripe payment intent: %s", obj["id"])
        return PaymentIntentRecord(
            id=obj["id"],
            client_secret=obj.get("client_secret"),
            status=obj.get("status") or "",
            amount=obj.get("amount") or amount,
            currency=obj.get("currency") or currency,
        )

    # ── Webhook ──────────────────────────────────────────

    def verify_webhook(self, payload: bytes, signature: str | None) -> dict[str, Any]:
        """Verify the Stripe-Signature header and return the decoded event."""
        if not self._webhook_secret:
            raise ConfigurationError(
                "Stripe webhook secret is missing", setting="STRIPE_WEBHOOK_SECRET"
            )
        if not signature:
            raise WebhookAuthError("Missing Stripe-Signature header")
        try:
            body = payload.decode("utf-8")
            stripe.WebhookSignature.verify_header(
                body,
                signature,
                self._webhook_secret,
                self._settings.stripe_webhook_tolerance_seconds,
            )
        except (stripe.SignatureVerificationError, UnicodeDecodeError) as exc:
            raise WebhookAuthError(f"Webhook signature verification failed: {exc}") from exc
        try:
            event = json.loads(body)
        except json.JSONDecodeError as exc:
            raise WebhookAuthError("Invalid webhook payload") from exc
        if not isinstance(event, dict):
            raise WebhookAuthError("Invalid webhook payload")
        return event


stripe_gateway = StripeGateway()
