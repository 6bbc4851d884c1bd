"""
Coupon Validator

Checks whether a coupon code may be redeemed in a given context.
Side-effect free: a passing check reserves nothing. The free-activation
write re-checks under a row lock.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from entitlements.domain.subscription import (
    Coupon,
    CouponContext,
    ValidateCouponResponse,
    normalize_coupon_code,
    utcnow,
)
from entitlements.infrastructure.db.repositories.coupon_repository import CouponRepository
from entitlements.infrastructure.exceptions import (
    CouponError,
    CouponExhausted,
    CouponExpired,
    CouponNotFound,
    CouponRequiresPayment,
    InvalidCoupon,
)


logger = logging.getLogger(__name__)


class CouponValidator:
    """Validates coupon codes against expiry, usage limits and context."""

    def __init__(self, session: AsyncSession):
        self._coupons = CouponRepository(session)

    async def validate(
        self,
        code: Optional[str],
        context: CouponContext = CouponContext.CHECKOUT,
        now: Optional[datetime] = None,
    ) -> Coupon:
        """
        Resolve a code to a redeemable coupon.

        Raises:
            CouponNotFound: blank or unknown code
            CouponExpired: expires_at is in the past
            CouponExhausted: redemptions reached max_redemptions
            InvalidCoupon: stored discount outside 1..100
            CouponRequiresPayment: free activation with a partial discount
        """
        normalized = normalize_coupon_code(code)
        if not normalized:
            raise CouponNotFound()

        coupon = await self._coupons.get_by_code(normalized)
        if coupon is None:
            raise CouponNotFound(normalized)

        if coupon.is_expired(now or utcnow()):
            raise CouponExpired(normalized)

        if coupon.max_redemptions is not None:
            redemptions = await self._coupons.count_redemptions(coupon.id)
            if redemptions >= coupon.max_redemptions:
                raise CouponExhausted(normalized)

        if not 1 <= coupon.discount_percent <= 100:
            logger.error(f"Coupon {normalized} has invalid discount {coupon.discount_percent}")
            raise InvalidCoupon(normalized)

        if context == CouponContext.FREE_ACTIVATION and not coupon.is_free:
            raise CouponRequiresPayment(normalized)

        return coupon

    async def check(self, code: Optional[str]) -> ValidateCouponResponse:
        """Pre-check for the pricing page: failures are data, not errors."""
        try:
            coupon = await self.validate(code, CouponContext.CHECKOUT)
        except CouponError as e:
            return ValidateCouponResponse(valid=False, error=e.message)

        return ValidateCouponResponse(
            valid=True,
            code=coupon.code,
            discount_percent=coupon.discount_percent,
            expires_at=coupon.expires_at,
        )
