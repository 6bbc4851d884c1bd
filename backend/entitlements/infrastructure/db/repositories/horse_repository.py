"""
Horse Repository

Reads a user's horses and flips their status. Only the quota enforcer
calls the mutating methods.
"""

from datetime import datetime
from typing import Dict, List, Sequence
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from entitlements.domain.subscription import DisabledReason, ResourceStatus, utcnow
from entitlements.infrastructure.db.models.horse import Horse
from entitlements.infrastructure.db.repositories.base_repository import BaseRepository


class HorseRepository(BaseRepository[Horse]):

    def __init__(self, session: AsyncSession):
        super().__init__(Horse, session)

    async def list_for_user(self, user_id: UUID) -> List[Horse]:
        stmt = (
            select(Horse)
            .where(Horse.user_id == user_id)
            .order_by(Horse.created_at, Horse.id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def count_by_status(self, user_id: UUID) -> Dict[str, int]:
        stmt = (
            select(Horse.status, func.count())
            .where(Horse.user_id == user_id)
            .group_by(Horse.status)
        )
        result = await self._session.execute(stmt)
        counts = {status.value: 0 for status in ResourceStatus}
        for status, count in result.all():
            counts[status] = count
        return counts

    async def disable(
        self,
        horse_ids: Sequence[UUID],
        reason: DisabledReason,
        at: datetime,
    ) -> int:
        if not horse_ids:
            return 0
        stmt = (
            update(Horse)
            .where(Horse.id.in_(list(horse_ids)), Horse.status == ResourceStatus.ACTIVE.value)
            .values(
                status=ResourceStatus.DISABLED.value,
                disabled_at=at,
                disabled_reason=reason.value,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount

    async def reactivate(self, horse_ids: Sequence[UUID]) -> int:
        if not horse_ids:
            return 0
        stmt = (
            update(Horse)
            .where(Horse.id.in_(list(horse_ids)), Horse.status == ResourceStatus.DISABLED.value)
            .values(
                status=ResourceStatus.ACTIVE.value,
                disabled_at=None,
                disabled_reason=None,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount
