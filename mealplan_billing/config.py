import logging
import os
from dataclasses import dataclass

from dotenv import load_dotenv

from mealplan_billing.services.exceptions import ConfigurationError

load_dotenv()

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    # Stripe
    stripe_secret_key: str = os.getenv("STRIPE_SECRET_KEY", "")
    stripe_webhook_secret: str = os.getenv("STRIPE_WEBHOOK_SECRET", "")
    stripe_api_version: str = os.getenv("STRIPE_API_VERSION", "2024-06-20")
    stripe_api_timeout_seconds: int = int(os.getenv("STRIPE_API_TIMEOUT_SECONDS", "10"))
    stripe_max_network_retries: int = int(os.getenv("STRIPE_MAX_NETWORK_RETRIES", "2"))
    stripe_webhook_tolerance_seconds: int = int(
        os.getenv("STRIPE_WEBHOOK_TOLERANCE_SECONDS", "300")
    )

    # Plan
    plan_name: str = os.getenv("PLAN_NAME", "Weekly Meal Plan")
    plan_description: str = os.getenv(
        "PLAN_DESCRIPTION",
        "Personalized weekly meal plans with nutrition coaching",
    )
    plan_type: str = os.getenv("PLAN_TYPE", "weekly-meal-plan")
    plan_currency: str = os.getenv("PLAN_CURRENCY", "aud")
    plan_amount: int = int(os.getenv("PLAN_AMOUNT", "2000"))  # minor units
    plan_interval: str = os.getenv("PLAN_INTERVAL", "week")

    # Promotion
    promotion_enabled: bool = _env_bool("PROMOTION_ENABLED", "true")
    promotion_coupon_id: str = os.getenv("PROMOTION_COUPON_ID", "FIRST_4_WEEKS_50_OFF")
    promotion_coupon_name: str = os.getenv(
        "PROMOTION_COUPON_NAME", "First 4 Weeks - 50% OFF"
    )
    promotion_percent_off: int = int(os.getenv("PROMOTION_PERCENT_OFF", "50"))
    promotion_duration_in_months: int = int(
        os.getenv("PROMOTION_DURATION_IN_MONTHS", "1")
    )
    promotional_weeks_total: int = int(os.getenv("PROMOTIONAL_WEEKS_TOTAL", "4"))

    # Checkout behaviour
    catalog_reuse_enabled: bool = _env_bool("CATALOG_REUSE_ENABLED", "true")
    payment_method_policy: str = os.getenv("PAYMENT_METHOD_POLICY", "always")

    # One-off payments
    payment_intent_default_amount: int = int(
        os.getenv("PAYMENT_INTENT_DEFAULT_AMOUNT", "1000")
    )
    payment_intent_default_currency: str = os.getenv(
        "PAYMENT_INTENT_DEFAULT_CURRENCY", "aud"
    )
    payment_intent_default_product: str = os.getenv(
        "PAYMENT_INTENT_DEFAULT_PRODUCT", "weekly-meal-plan"
    )

    # CORS
    cors_origins: str = os.getenv("CORS_ORIGINS", "*")  # Comma-separated origins


PAYMENT_METHOD_POLICIES = ("always", "if_missing")

# Stripe rejects metadata values over 500 characters. The counted-invoice list
# holds up to weeks_total - 1 invoice ids of 27 characters plus a separator.
STRIPE_METADATA_VALUE_LIMIT = 500
MAX_PROMOTIONAL_WEEKS = STRIPE_METADATA_VALUE_LIMIT // 28 + 1


def validate_settings(s: Settings) -> list[str]:
    """Validate required settings at startup. Returns list of warnings."""
    warnings: list[str] = []

    if not s.stripe_secret_key:
        warnings.append("STRIPE_SECRET_KEY is not set - checkout will return 500")
    elif not s.stripe_secret_key.startswith(("sk_", "rk_")):
        warnings.append("STRIPE_SECRET_KEY does not look like a Stripe secret key")

    if not s.stripe_webhook_secret:
        warnings.append("STRIPE_WEBHOOK_SECRET is not set - webhooks will return 500")

    if s.payment_method_policy not in PAYMENT_METHOD_POLICIES:
        warnings.append(
            f"PAYMENT_METHOD_POLICY={s.payment_method_policy!r} is unknown, "
            "falling back to 'always'"
        )

    if s.promotional_weeks_total < 1:
        warnings.append("PROMOTIONAL_WEEKS_TOTAL must be at least 1")
    elif s.promotional_weeks_total > MAX_PROMOTIONAL_WEEKS:
        warnings.append(
            f"PROMOTIONAL_WEEKS_TOTAL must be at most {MAX_PROMOTIONAL_WEEKS} - "
            "counted invoice ids would exceed Stripe's metadata value limit"
        )

    if not 0 < s.promotion_percent_off <= 100:
        warnings.append("PROMOTION_PERCENT_OFF must be between 1 and 100")

    return warnings


def require_stripe_keys(config: Settings) -> None:
    """Raise ConfigurationError when either Stripe secret is missing."""
    if not config.stripe_secret_key:
        raise ConfigurationError("Stripe secret key is missing", setting="STRIPE_SECRET_KEY")
    if not config.stripe_webhook_secret:
        raise ConfigurationError(
            "Stripe webhook secret is missing", setting="STRIPE_WEBHOOK_SECRET"
        )


settings = Settings()
