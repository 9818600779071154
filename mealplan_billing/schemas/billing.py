from pydantic import BaseModel, ConfigDict, EmailStr, Field

# ── Subscription checkout ────────────────────────────────


class SubscriptionCheckoutRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)
    customer_email: EmailStr
    customer_name: str = Field(min_length=1, max_length=255)
    payment_method_id: str = Field(min_length=1, max_length=255)


class SubscriptionCheckoutResponse(BaseModel):
    subscription_id: str
    client_secret: str
    customer_id: str


# ── One-off payment intent ───────────────────────────────


class PaymentIntentRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)
    customer_email: EmailStr
    customer_name: str = Field(min_length=1, max_length=255)
    amount: int | None = Field(default=None, gt=0)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    product: str | None = Field(default=None, max_length=255)


class PaymentIntentResponse(BaseModel):
    client_secret: str
    payment_intent_id: str


# ── Webhook ──────────────────────────────────────────────


class WebhookAck(BaseModel):
    received: bool = True
