import logging

from mealplan_billing.config import Settings
from mealplan_billing.metrics import PROMOTION_FAILURES
from mealplan_billing.services.exceptions import (
    BillingError,
    ExternalServiceError,
    PromotionError,
)
from mealplan_billing.services.stripe_gateway import CouponRecord, StripeGateway

logger = logging.getLogger(__name__)


class Coupons:
    def __init__(self, gateway: StripeGateway, config: Settings) -> None:
        self.gateway = gateway
        self.settings = config

    def get_or_create(self) -> CouponRecord:
        coupon_id = self.settings.promotion_coupon_id
        try:
            coupon = self.gateway.retrieve_coupon(coupon_id)
            if coupon is None:
                coupon = self._create(coupon_id)
        except BillingError as exc:
            raise PromotionError(exc.message, coupon_id) from exc
        if not coupon.valid:
            raise PromotionError(f"Coupon {coupon_id} is no longer valid", coupon_id)
        return coupon

    def _create(self, coupon_id: str) -> CouponRecord:
        try:
            coupon = self.gateway.create_coupon(
                coupon_id,
                self.settings.promotion_coupon_name,
                self.settings.promotion_percent_off,
                self.settings.promotion_duration_in_months,
            )
        except ExternalServiceError as exc:
            # Lost a creation race with another checkout.
            if exc.stripe_code != "resource_already_exists":
                raise
            coupon = self.gateway.retrieve_coupon(coupon_id)
            if coupon is None:
                raise
            return coupon
        logger.info("Created new coupon: %s", coupon.id)
        return coupon

    def ensure_promotion(self) -> str | None:
        """Coupon id to apply, or None when the promotion cannot be resolved."""
        try:
            coupon = self.get_or_create()
        except PromotionError as exc:
            PROMOTION_FAILURES.inc()
            logger.warning("Continuing without promotion: %s", exc.message)
            return None
        logger.info("Using coupon: %s", coupon.id)
        return coupon.id
