"""
Entitlement Service

Read-only projection of what a user may do right now. Used by the product
to pre-flight horse creation and by the pricing page to show status.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from entitlements.config.settings import get_settings
from entitlements.domain.subscription import (
    UNLIMITED,
    Entitlement,
    ResourceStatus,
    SubscriptionDetail,
    SubscriptionState,
    SubscriptionStatusResponse,
    days_until,
    utcnow,
)
from entitlements.infrastructure.db.repositories.coupon_repository import CouponRepository
from entitlements.infrastructure.db.repositories.horse_repository import HorseRepository
from entitlements.infrastructure.db.repositories.plan_repository import PlanRepository
from entitlements.infrastructure.db.repositories.subscription_repository import (
    SubscriptionRepository,
)


FREE_PLAN_NAME = "Free"


def expires_soon(days_remaining: int) -> bool:
    return 0 < days_remaining <= get_settings().expiry_warning_days


class EntitlementService:

    def __init__(self, session: AsyncSession):
        self._subscriptions = SubscriptionRepository(session)
        self._plans = PlanRepository(session)
        self._horses = HorseRepository(session)
        self._coupons = CouponRepository(session)

    async def get_entitlement(
        self,
        user_id: UUID,
        now: Optional[datetime] = None,
    ) -> Entitlement:
        now = now or utcnow()
        subscription = await self._subscriptions.get_latest_for_user(user_id)
        state = subscription.state(now) if subscription else SubscriptionState.NO_PLAN

        plan = None
        if subscription is not None and subscription.is_entitled(now):
            plan = await self._plans.get_by_id(subscription.plan_id)

        if plan is not None:
            plan_name = plan.name
            max_slots = plan.max_slots
            max_units = plan.max_monthly_units
            ends_at = subscription.ends_at
        else:
            plan_name = FREE_PLAN_NAME
            max_slots = get_settings().free_tier_horse_limit
            max_units = 0
            ends_at = None

        counts = await self._horses.count_by_status(user_id)
        active_count = counts[ResourceStatus.ACTIVE.value]
        disabled_count = counts[ResourceStatus.DISABLED.value]

        if max_slots == UNLIMITED:
            remaining = UNLIMITED
            can_add = True
        else:
            remaining = max(0, max_slots - active_count)
            can_add = active_count < max_slots

        days_remaining = days_until(ends_at, now)

        return Entitlement(
            user_id=user_id,
            plan_id=plan.id if plan else None,
            plan_name=plan_name,
            state=state,
            max_slots=max_slots,
            max_monthly_units=max_units,
            active_count=active_count,
            disabled_count=disabled_count,
            total_count=active_count + disabled_count,
            remaining_slots=remaining,
            can_add_resource=can_add,
            ends_at=ends_at,
            days_remaining=days_remaining,
            expires_soon=expires_soon(days_remaining),
        )

    async def get_status(
        self,
        user_id: UUID,
        now: Optional[datetime] = None,
    ) -> SubscriptionStatusResponse:
        """Current active subscription with its plan and coupon, if any."""
        now = now or utcnow()
        subscription = await self._subscriptions.get_active_for_user(user_id)
        if subscription is None:
            return SubscriptionStatusResponse(subscribed=False)

        plan = await self._plans.get_by_id(subscription.plan_id)
        coupon = await self._coupons.get_by_id(subscription.coupon_id)
        days_remaining = days_until(subscription.ends_at, now)

        return SubscriptionStatusResponse(
            subscribed=subscription.is_entitled(now),
            subscription=SubscriptionDetail(
                id=subscription.id,
                plan_id=subscription.plan_id,
                plan_name=plan.name if plan else None,
                state=subscription.state(now),
                is_trial=subscription.is_trial,
                is_active=subscription.is_active,
                started_at=subscription.started_at,
                ends_at=subscription.ends_at,
                days_remaining=days_remaining,
                expires_soon=expires_soon(days_remaining),
                stripe_subscription_id=subscription.stripe_subscription_id,
                coupon_code=coupon.code if coupon else None,
            ),
        )
