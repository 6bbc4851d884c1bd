"""
Coupon Repository

Coupons plus their derived redemption counts.
"""

import logging
from typing import List, Optional, Tuple
from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from entitlements.domain.subscription import (
    Coupon,
    CouponCreate,
    ensure_utc,
    normalize_coupon_code,
    utcnow,
)
from entitlements.infrastructure.db.models.coupon import CouponModel
from entitlements.infrastructure.db.models.subscription import SubscriptionModel
from entitlements.infrastructure.db.repositories.base_repository import BaseRepository
from entitlements.infrastructure.exceptions import ConflictError


logger = logging.getLogger(__name__)


class CouponRepository(BaseRepository[CouponModel]):
    """Data access for coupons."""

    def __init__(self, session: AsyncSession):
        super().__init__(CouponModel, session)

    # =========================================================================
    # Query Methods
    # =========================================================================

    async def get_by_code(self, code: str) -> Optional[Coupon]:
        stmt = select(CouponModel).where(CouponModel.code == normalize_coupon_code(code))
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return self._to_domain(model) if model else None

    async def get_by_id(self, coupon_id: Optional[UUID]) -> Optional[Coupon]:
        if coupon_id is None:
            return None
        model = await self.get_model(coupon_id)
        return self._to_domain(model) if model else None

    async def lock(self, coupon_id: UUID) -> Optional[Coupon]:
        """
        Re-read a coupon with a row lock for the rest of the transaction.

        SELECT ... FOR UPDATE on PostgreSQL; SQLite ignores the clause and
        relies on its database-level write lock.
        """
        stmt = (
            select(CouponModel)
            .where(CouponModel.id == coupon_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return self._to_domain(model) if model else None

    async def count_redemptions(self, coupon_id: UUID) -> int:
        """Redemptions are the subscriptions that reference the coupon."""
        stmt = (
            select(func.count())
            .select_from(SubscriptionModel)
            .where(SubscriptionModel.coupon_id == coupon_id)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one()

    async def list_with_redemptions(self) -> List[Tuple[Coupon, int]]:
        redemptions = (
            select(SubscriptionModel.coupon_id, func.count().label("redemptions"))
            .where(SubscriptionModel.coupon_id.is_not(None))
            .group_by(SubscriptionModel.coupon_id)
            .subquery()
        )
        stmt = (
            select(CouponModel, func.coalesce(redemptions.c.redemptions, 0))
            .outerjoin(redemptions, redemptions.c.coupon_id == CouponModel.id)
            .order_by(CouponModel.created_at.desc())
        )
        result = await self._session.execute(stmt)
        return [(self._to_domain(model), count) for model, count in result.all()]

    # =========================================================================
    # Command Methods
    # =========================================================================

    async def create(self, data: CouponCreate) -> Coupon:
        now = utcnow()
        model = CouponModel(
            id=uuid4(),
            code=data.code,
            discount_percent=data.discount_percent,
            expires_at=data.expires_at,
            max_redemptions=data.max_redemptions,
            created_at=now,
            updated_at=now,
        )
        self._session.add(model)
        try:
            await self._session.flush()
        except IntegrityError as e:
            await self._session.rollback()
            raise ConflictError(
                f"Coupon code {data.code} already exists",
                details={"code": data.code},
                original_error=e,
            )

        logger.info(f"Created coupon {model.code} ({model.discount_percent}% off)")
        return self._to_domain(model)

    # =========================================================================
    # Mapping Methods
    # =========================================================================

    def _to_domain(self, model: CouponModel) -> Coupon:
        return Coupon(
            id=model.id,
            code=model.code,
            discount_percent=model.discount_percent,
            expires_at=ensure_utc(model.expires_at),
            max_redemptions=model.max_redemptions,
            created_at=ensure_utc(model.created_at),
        )
