"""
Plan Repository

Read-only access to pricing plans.
"""

from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from entitlements.domain.subscription import Plan, limit_from_storage
from entitlements.infrastructure.db.models.plan import PlanModel
from entitlements.infrastructure.db.repositories.base_repository import BaseRepository


class PlanRepository(BaseRepository[PlanModel]):
    """Maps pricing_plans rows to Plan entities."""

    def __init__(self, session: AsyncSession):
        super().__init__(PlanModel, session)

    async def get_by_id(self, plan_id: Optional[UUID]) -> Optional[Plan]:
        if plan_id is None:
            return None
        model = await self.get_model(plan_id)
        return self._to_domain(model) if model else None

    async def get_by_stripe_price_id(self, stripe_price_id: str) -> Optional[Plan]:
        stmt = select(PlanModel).where(PlanModel.stripe_price_id == stripe_price_id)
        result = await self._session.execute(stmt)
        model = result.scalars().first()
        return self._to_domain(model) if model else None

    async def list_plans(self) -> List[Plan]:
        stmt = select(PlanModel).order_by(PlanModel.monthly_price)
        result = await self._session.execute(stmt)
        return [self._to_domain(m) for m in result.scalars().all()]

    def _to_domain(self, model: PlanModel) -> Plan:
        return Plan(
            id=model.id,
            name=model.name,
            max_slots=limit_from_storage(model.max_horses),
            max_monthly_units=limit_from_storage(model.max_monthly_analyses),
            monthly_price=model.monthly_price,
            annual_price=model.annual_price,
            stripe_price_id=model.stripe_price_id,
        )
