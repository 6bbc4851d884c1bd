"""
Free Activation Service

Activates a plan with a 100% coupon without any payment processor
round-trip. The coupon check here is only a fast failure for the user; the
repository's locked, constraint-backed write is what guarantees a limited
coupon is never over-redeemed.
"""

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from entitlements.domain.subscription import (
    ActivateFreePlanResponse,
    BillingCycle,
    ChangeTrigger,
    CouponContext,
    compute_period_end,
    utcnow,
)
from entitlements.infrastructure.db.repositories.plan_repository import PlanRepository
from entitlements.infrastructure.db.repositories.subscription_repository import (
    SubscriptionRepository,
)
from entitlements.infrastructure.exceptions import EntitlementsError, PlanNotFound
from entitlements.infrastructure.services.coupon_validator import CouponValidator
from entitlements.infrastructure.services.quota_enforcer import QuotaEnforcer


logger = logging.getLogger(__name__)


class FreeActivationService:

    def __init__(self, session: AsyncSession, enforcer: Optional[QuotaEnforcer] = None):
        self._session = session
        self._plans = PlanRepository(session)
        self._subscriptions = SubscriptionRepository(session)
        self._validator = CouponValidator(session)
        self._enforcer = enforcer or QuotaEnforcer(session)

    async def activate(
        self,
        user_id: UUID,
        plan_id: UUID,
        billing_cycle: BillingCycle,
        coupon_code: str,
    ) -> ActivateFreePlanResponse:
        """
        Grant a plan through a 100%-discount coupon.

        Raises:
            PlanNotFound: unknown plan_id
            CouponError: coupon invalid, expired, exhausted or not 100%
            ConflictError: a concurrent redemption claimed the coupon first
            SubscriptionCreationFailed: the datastore write failed
        """
        plan = await self._plans.get_by_id(plan_id)
        if plan is None:
            raise PlanNotFound(plan_id)

        coupon = await self._validator.validate(coupon_code, CouponContext.FREE_ACTIVATION)

        started_at = utcnow()
        ends_at = compute_period_end(started_at, billing_cycle)

        subscription, superseded = await self._subscriptions.create_free_subscription(
            user_id=user_id,
            plan_id=plan.id,
            coupon=coupon,
            billing_cycle=billing_cycle,
            started_at=started_at,
            ends_at=ends_at,
        )
        await self._session.commit()

        logger.info(
            f"Free activation: user={user_id} plan={plan.name} "
            f"cycle={billing_cycle.value} coupon={coupon.code} ends_at={ends_at.isoformat()}"
        )

        old_plan = await self._plans.get_by_id(superseded.plan_id) if superseded else None
        try:
            await self._enforcer.apply(
                user_id,
                new_plan=plan,
                old_plan=old_plan,
                trigger=ChangeTrigger.FREE_ACTIVATION,
            )
        except (EntitlementsError, SQLAlchemyError):
            # The subscription is committed; the next sync re-fits the horses
            await self._session.rollback()
            logger.error(
                f"Quota enforcement failed after free activation for user {user_id}",
                exc_info=True,
            )

        return ActivateFreePlanResponse(
            subscription_id=subscription.id,
            plan_name=plan.name,
            ends_at=subscription.ends_at,
            billing_cycle=billing_cycle,
            coupon_code=coupon.code,
        )
