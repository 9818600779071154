"""
Billing exceptions.

Every error raised by the checkout and webhook flows derives from
``BillingError`` so the HTTP layer can render one envelope for all of them.
``status_code`` is the response status the error maps to.
"""


class BillingError(Exception):
    """Base exception for all billing errors."""

    status_code = 500

    def __init__(
        self,
        message: str,
        code: str = "billing_error",
        error: str = "Billing error",
        details: dict | None = None,
    ):
        self.message = message
        self.code = code
        self.error = error
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict:
        """Convert exception to dictionary for API responses."""
        return {
            "code": self.code,
            "error": self.error,
            "message": self.message,
            "details": self.details or None,
        }


class ConfigurationError(BillingError):
    """A required secret or setting is missing. Never retried."""

    status_code = 500

    def __init__(self, message: str, setting: str | None = None):
        super().__init__(
            message=message,
            code="configuration_error",
            error="Payment system not configured properly",
            details={"setting": setting} if setting else {},
        )
        self.setting = setting


class ValidationError(BillingError):
    """Missing or malformed request fields."""

    status_code = 400

    def __init__(self, message: str, fields: list | None = None):
        super().__init__(
            message=message,
            code="validation_error",
            error="Missing required fields",
            details={"fields": fields} if fields else {},
        )
        self.fields = fields or []


# Human readable summaries per checkout stage.
STAGE_ERRORS = {
    "customer_setup": "Failed to set up customer account",
    "catalog_setup": "Failed to set up subscription plan",
    "subscription_creation": "Failed to create subscription",
    "payment_intent": "Failed to create payment intent",
    "webhook": "Webhook processing failed",
}


class ExternalServiceError(BillingError):
    """
    Stripe rejected a call or could not be reached.

    Attributes:
        stage: Checkout stage that failed (customer_setup, catalog_setup, ...)
        stripe_code: Stripe error code when one was returned
        retryable: True for connection, rate-limit and Stripe-side API errors,
            where the client may resend the same request
    """

    status_code = 400

    def __init__(
        self,
        message: str,
        stage: str,
        stripe_code: str | None = None,
        retryable: bool = False,
    ):
        details: dict = {"stage": stage}
        if stripe_code:
            details["stripe_code"] = stripe_code
        details["retryable"] = retryable
        super().__init__(
            message=message,
            code=f"{stage}_failed",
            error=STAGE_ERRORS.get(stage, "Payment provider error"),
            details=details,
        )
        self.stage = stage
        self.stripe_code = stripe_code
        self.retryable = retryable


class PromotionError(BillingError):
    """Coupon lookup or creation failed. Absorbed by the checkout flow."""

    def __init__(self, message: str, coupon_id: str | None = None):
        super().__init__(
            message=message,
            code="promotion_error",
            error="Promotion unavailable",
            details={"coupon_id": coupon_id} if coupon_id else {},
        )
        self.coupon_id = coupon_id


class WebhookAuthError(BillingError):
    """Webhook signature missing or invalid. Nothing is processed."""

    status_code = 400

    def __init__(self, message: str = "Webhook signature verification failed"):
        super().__init__(
            message=message,
            code="webhook_signature_invalid",
            error="Webhook Error",
        )


class WebhookProcessingError(BillingError):
    """An exception occurred while applying a verified event."""

    status_code = 500

    def __init__(
        self,
        message: str = "Webhook processing failed",
        event_id: str | None = None,
        event_type: str | None = None,
    ):
        details = {}
        if event_id:
            details["event_id"] = event_id
        if event_type:
            details["event_type"] = event_type
        super().__init__(
            message=message,
            code="webhook_processing_failed",
            error="Webhook processing failed",
            details=details,
        )
        self.event_id = event_id
        self.event_type = event_type


class SubscriptionStateError(BillingError):
    """Promotional metadata on a subscription cannot be decoded."""

    status_code = 500

    def __init__(self, message: str, subscription_id: str | None = None):
        super().__init__(
            message=message,
            code="subscription_state_invalid",
            error="Subscription metadata is corrupt",
            details={"subscription_id": subscription_id} if subscription_id else {},
        )
        self.subscription_id = subscription_id
