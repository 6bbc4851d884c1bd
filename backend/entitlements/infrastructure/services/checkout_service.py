"""
Checkout Service

Prices a plan, applies an optional coupon and opens a hosted Stripe
Checkout session. Never writes a subscription; the webhook does that once
payment succeeds.
"""

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from entitlements.config.settings import get_settings
from entitlements.domain.subscription import (
    BillingCycle,
    CheckoutResponse,
    CouponContext,
    compute_final_price,
    normalize_coupon_code,
    to_minor_units,
)
from entitlements.infrastructure.db.repositories.plan_repository import PlanRepository
from entitlements.infrastructure.exceptions import (
    ExternalServiceError,
    PlanNotFound,
    ValidationError,
)
from entitlements.infrastructure.payments.stripe_service import StripeService
from entitlements.infrastructure.services.coupon_validator import CouponValidator


logger = logging.getLogger(__name__)

STRIPE_INTERVALS = {
    BillingCycle.MONTHLY: "month",
    BillingCycle.ANNUAL: "year",
}


class CheckoutService:

    def __init__(self, session: AsyncSession, stripe_service: StripeService):
        self._plans = PlanRepository(session)
        self._validator = CouponValidator(session)
        self._stripe = stripe_service

    async def start_checkout(
        self,
        user_id: UUID,
        plan_id: UUID,
        billing_cycle: BillingCycle,
        coupon_code: Optional[str] = None,
        customer_email: Optional[str] = None,
    ) -> CheckoutResponse:
        """
        Create a checkout session for a plan.

        The annual list price is twelve times the plan's monthly-equivalent
        annual rate.

        Raises:
            PlanNotFound: unknown plan_id
            CouponError: coupon fails validation
            ValidationError: coupon is 100% (use free activation)
            CheckoutCreationFailed: Stripe error or timeout
        """
        settings = get_settings()

        plan = await self._plans.get_by_id(plan_id)
        if plan is None:
            raise PlanNotFound(plan_id)

        coupon = None
        if normalize_coupon_code(coupon_code):
            coupon = await self._validator.validate(coupon_code, CouponContext.CHECKOUT)
            if coupon.is_free:
                raise ValidationError(
                    "This coupon grants free access. Use free activation instead of checkout.",
                    details={"code": coupon.code},
                )

        list_price = plan.list_price(billing_cycle)
        final_price = compute_final_price(
            list_price,
            coupon.discount_percent if coupon else None,
        )
        if final_price <= 0:
            raise ValidationError(
                "This plan has no price and cannot be purchased through checkout",
                details={"plan_id": str(plan_id)},
            )

        metadata = {
            "user_id": str(user_id),
            "plan_id": str(plan.id),
            "billing_cycle": billing_cycle.value,
        }
        if coupon:
            metadata["coupon_id"] = str(coupon.id)
            metadata["coupon_code"] = coupon.code

        try:
            session = await self._stripe.create_checkout_session(
                user_id=str(user_id),
                plan_name=plan.name,
                amount_minor=to_minor_units(final_price),
                currency=settings.stripe_currency,
                interval=STRIPE_INTERVALS[billing_cycle],
                metadata=metadata,
                success_url=settings.checkout_success_url,
                cancel_url=settings.checkout_cancel_url,
                customer_email=customer_email,
            )
        except ExternalServiceError:
            logger.error(
                f"Checkout failed: user={user_id} plan={plan_id} "
                f"coupon={coupon.code if coupon else None}"
            )
            raise

        return CheckoutResponse(
            checkout_url=session["url"],
            session_id=session["id"],
            final_price=final_price,
            currency=settings.stripe_currency,
        )
