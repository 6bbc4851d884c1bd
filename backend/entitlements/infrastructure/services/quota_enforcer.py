"""
Quota Enforcer

The single funnel through which horse status changes. Upgrades,
downgrades, activations, cancellations and expirations all end here.

Callers commit their subscription change first, then run the enforcer
in a fresh transaction of the same session.
"""

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from entitlements.config.settings import get_settings
from entitlements.domain.quota import (
    EnforcementResult,
    disabled_reason_for,
    plan_quota_changes,
)
from entitlements.domain.subscription import (
    ChangeTrigger,
    Plan,
    ResourceStatus,
    SlotLimit,
    classify_plan_change,
    limit_from_storage,
    utcnow,
)
from entitlements.infrastructure.db.repositories.horse_repository import HorseRepository
from entitlements.infrastructure.db.repositories.plan_change_repository import (
    PlanChangeRepository,
)
from entitlements.infrastructure.db.repositories.plan_repository import PlanRepository
from entitlements.infrastructure.db.repositories.subscription_repository import (
    SubscriptionRepository,
)


logger = logging.getLogger(__name__)


class QuotaEnforcer:
    """Fits a user's horses into a plan's horse limit and audits the change."""

    def __init__(self, session: AsyncSession):
        self._session = session
        self._horses = HorseRepository(session)
        self._plans = PlanRepository(session)
        self._subscriptions = SubscriptionRepository(session)
        self._plan_changes = PlanChangeRepository(session)

    @staticmethod
    def limit_for(plan: Optional[Plan]) -> SlotLimit:
        """Horse limit of a plan; no plan means the free tier."""
        if plan is None:
            return get_settings().free_tier_horse_limit
        return plan.max_slots

    async def apply(
        self,
        user_id: UUID,
        new_plan: Optional[Plan],
        old_plan: Optional[Plan] = None,
        trigger: ChangeTrigger = ChangeTrigger.WEBHOOK,
        stripe_subscription_id: Optional[str] = None,
    ) -> EnforcementResult:
        """
        Disable or reactivate horses for the new plan and append one
        plan_changes row. Commits.

        Args:
            new_plan: Plan now in force, None for the free tier
            old_plan: Plan previously in force, None for the free tier
        """
        old_limit = self.limit_for(old_plan)
        new_limit = self.limit_for(new_plan)
        change_type = classify_plan_change(old_limit, new_limit)

        horses = await self._horses.list_for_user(user_id)
        active = [h for h in horses if h.status == ResourceStatus.ACTIVE.value]
        disabled = [h for h in horses if h.status == ResourceStatus.DISABLED.value]

        decision = plan_quota_changes(active, disabled, new_limit)

        disabled_ids = [h.id for h in decision.to_disable]
        reactivated_ids = [h.id for h in decision.to_reactivate]

        if disabled_ids:
            await self._horses.disable(
                disabled_ids,
                disabled_reason_for(trigger, change_type),
                utcnow(),
            )
        if reactivated_ids:
            await self._horses.reactivate(reactivated_ids)

        active_count = len(active) - len(disabled_ids) + len(reactivated_ids)
        result = EnforcementResult(
            user_id=user_id,
            old_plan_id=old_plan.id if old_plan else None,
            new_plan_id=new_plan.id if new_plan else None,
            old_limit=old_limit,
            new_limit=new_limit,
            change_type=change_type,
            active_count=active_count,
            disabled_count=len(horses) - active_count,
            total_count=len(horses),
            disabled_ids=disabled_ids,
            reactivated_ids=reactivated_ids,
        )

        await self._plan_changes.record(
            result,
            trigger,
            old_plan=old_plan,
            new_plan=new_plan,
            stripe_subscription_id=stripe_subscription_id,
        )
        await self._session.commit()

        logger.info(
            f"[QUOTA] user={user_id} {change_type.value} "
            f"{old_limit}->{new_limit} via {trigger.value}: "
            f"disabled={result.horses_disabled} reactivated={result.horses_reactivated}"
        )
        return result

    async def resolve_entitled_plan(self, user_id: UUID) -> Optional[Plan]:
        """Plan of the user's entitled subscription, None when on the free tier."""
        subscription = await self._subscriptions.get_active_for_user(user_id)
        if subscription is None or not subscription.is_entitled():
            return None
        return await self._plans.get_by_id(subscription.plan_id)

    async def resolve_previous_plan(self, user_id: UUID) -> Optional[Plan]:
        """Plan the horses were last fitted to, from the audit trail."""
        latest = await self._plan_changes.latest_for_user(user_id)
        if latest is None or latest.new_plan_id is None:
            return None
        plan = await self._plans.get_by_id(latest.new_plan_id)
        if plan is None:
            # Plan row removed since; keep the recorded limit
            return Plan(
                id=latest.new_plan_id,
                name=latest.new_plan_name or "Unknown",
                max_slots=limit_from_storage(latest.new_horse_limit),
            )
        return plan

    async def sync_user(
        self,
        user_id: UUID,
        trigger: ChangeTrigger,
        stripe_subscription_id: Optional[str] = None,
    ) -> EnforcementResult:
        """Re-fit a user's horses to whatever plan is in force right now."""
        old_plan = await self.resolve_previous_plan(user_id)
        new_plan = await self.resolve_entitled_plan(user_id)
        return await self.apply(
            user_id,
            new_plan,
            old_plan=old_plan,
            trigger=trigger,
            stripe_subscription_id=stripe_subscription_id,
        )
