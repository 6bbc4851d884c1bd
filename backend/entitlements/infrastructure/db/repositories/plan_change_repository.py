"""
Plan Change Repository

Append-only audit trail of quota enforcement runs.
"""

import logging
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from entitlements.domain.quota import EnforcementResult
from entitlements.domain.subscription import (
    ChangeTrigger,
    Plan,
    limit_to_storage,
    utcnow,
)
from entitlements.infrastructure.db.models.plan_change import PlanChange
from entitlements.infrastructure.db.repositories.base_repository import BaseRepository


logger = logging.getLogger(__name__)


class PlanChangeRepository(BaseRepository[PlanChange]):

    def __init__(self, session: AsyncSession):
        super().__init__(PlanChange, session)

    async def record(
        self,
        result: EnforcementResult,
        trigger: ChangeTrigger,
        old_plan: Optional[Plan] = None,
        new_plan: Optional[Plan] = None,
        stripe_subscription_id: Optional[str] = None,
    ) -> PlanChange:
        row = PlanChange(
            id=uuid4(),
            user_id=result.user_id,
            old_plan_id=result.old_plan_id,
            new_plan_id=result.new_plan_id,
            old_plan_name=old_plan.name if old_plan else None,
            new_plan_name=new_plan.name if new_plan else None,
            old_horse_limit=limit_to_storage(result.old_limit),
            new_horse_limit=limit_to_storage(result.new_limit),
            change_type=result.change_type.value,
            trigger=trigger.value,
            stripe_subscription_id=stripe_subscription_id,
            horses_affected=result.horses_affected,
            horses_disabled=result.horses_disabled,
            horses_reactivated=result.horses_reactivated,
            created_at=utcnow(),
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def latest_for_user(self, user_id: UUID) -> Optional[PlanChange]:
        """The last enforcement run, i.e. the plan the horses currently fit."""
        stmt = (
            select(PlanChange)
            .where(PlanChange.user_id == user_id)
            .order_by(PlanChange.created_at.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalars().first()

