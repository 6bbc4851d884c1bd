"""
Subscription Repository

Data access layer for subscription persistence.

Every mutation here writes absolute values keyed on a stable id, so
replaying the same call converges on the same row state.
"""

import logging
from datetime import datetime
from typing import Any, List, Optional, Tuple
from uuid import UUID, uuid4

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from entitlements.domain.subscription import (
    BillingCycle,
    Coupon,
    DeactivationReason,
    Subscription,
    ensure_utc,
    utcnow,
)
from entitlements.infrastructure.db.models.subscription import SubscriptionModel
from entitlements.infrastructure.db.repositories.base_repository import BaseRepository
from entitlements.infrastructure.db.repositories.coupon_repository import CouponRepository
from entitlements.infrastructure.exceptions import (
    ConflictError,
    CouponNotFound,
    SubscriptionCreationFailed,
)


logger = logging.getLogger(__name__)


class SubscriptionRepository(BaseRepository[SubscriptionModel]):
    """
    Repository for subscription data access.

    Implements keyed, idempotent mutations with domain model mapping.
    """

    def __init__(self, session: AsyncSession):
        super().__init__(SubscriptionModel, session)

    # =========================================================================
    # Query Methods
    # =========================================================================

    async def get_by_id(self, subscription_id: UUID) -> Optional[Subscription]:
        model = await self.get_model(subscription_id)
        return self._to_domain(model) if model else None

    async def get_active_for_user(self, user_id: UUID) -> Optional[Subscription]:
        """The user's single active row, if any."""
        stmt = (
            select(SubscriptionModel)
            .where(
                SubscriptionModel.user_id == user_id,
                SubscriptionModel.is_active.is_(True),
            )
            .order_by(SubscriptionModel.created_at.desc())
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        model = result.scalars().first()
        return self._to_domain(model) if model else None

    async def get_latest_for_user(self, user_id: UUID) -> Optional[Subscription]:
        """Active row first, otherwise the most recently updated one."""
        active = await self.get_active_for_user(user_id)
        if active:
            return active

        stmt = (
            select(SubscriptionModel)
            .where(SubscriptionModel.user_id == user_id)
            .order_by(SubscriptionModel.updated_at.desc(), SubscriptionModel.created_at.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        model = result.scalars().first()
        return self._to_domain(model) if model else None

    async def get_by_stripe_subscription_id(
        self,
        stripe_subscription_id: str,
    ) -> Optional[Subscription]:
        stmt = (
            select(SubscriptionModel)
            .where(SubscriptionModel.stripe_subscription_id == stripe_subscription_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return self._to_domain(model) if model else None

    async def has_redeemed(self, coupon_id: UUID, user_id: UUID) -> bool:
        """Whether the user holds a numbered redemption of this coupon."""
        stmt = (
            select(func.count())
            .select_from(SubscriptionModel)
            .where(
                SubscriptionModel.coupon_id == coupon_id,
                SubscriptionModel.user_id == user_id,
                SubscriptionModel.coupon_redemption_slot.is_not(None),
            )
        )
        result = await self._session.execute(stmt)
        return result.scalar_one() > 0

    async def find_expired(self, now: datetime) -> List[Subscription]:
        """Active rows whose period has ended and were never cancelled."""
        stmt = (
            select(SubscriptionModel)
            .where(
                SubscriptionModel.is_active.is_(True),
                SubscriptionModel.ends_at <= now,
                SubscriptionModel.cancelled_at.is_(None),
            )
            .order_by(SubscriptionModel.ends_at)
        )
        result = await self._session.execute(stmt)
        return [self._to_domain(m) for m in result.scalars().all()]

    # =========================================================================
    # Command Methods
    # =========================================================================

    async def supersede_active(
        self,
        user_id: UUID,
        keep_stripe_subscription_id: Optional[str] = None,
    ) -> Optional[Subscription]:
        """
        Deactivate the user's active row ahead of a new one.

        A row carrying keep_stripe_subscription_id is left alone so that a
        replayed activation does not supersede itself.
        """
        current = await self.get_active_for_user(user_id)
        if current is None:
            return None
        if (
            keep_stripe_subscription_id
            and current.stripe_subscription_id == keep_stripe_subscription_id
        ):
            return None

        stmt = (
            update(SubscriptionModel)
            .where(
                SubscriptionModel.id == current.id,
                SubscriptionModel.is_active.is_(True),
            )
            .values(
                is_active=False,
                deactivation_reason=DeactivationReason.NEW_SUBSCRIPTION_CREATED.value,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        await self._session.execute(stmt)

        logger.info(f"Superseded subscription {current.id} for user {user_id}")
        return current

    async def create_free_subscription(
        self,
        user_id: UUID,
        plan_id: UUID,
        coupon: Coupon,
        billing_cycle: BillingCycle,
        started_at: datetime,
        ends_at: datetime,
    ) -> Tuple[Subscription, Optional[Subscription]]:
        """
        Redeem a 100% coupon and activate a plan in one transaction.

        Steps, all inside the caller's transaction:
        1. lock the coupon row and recount its redemptions
        2. supersede the user's active subscription
        3. insert the new row claiming the next redemption slot

        The unique indexes on (coupon_id, coupon_redemption_slot),
        (coupon_id, user_id) and the one-active-per-user index reject a
        concurrent writer that passed the same checks.

        Returns:
            (new subscription, superseded subscription or None)

        Raises:
            ConflictError: coupon already used or a concurrent writer won
            SubscriptionCreationFailed: any other database failure
        """
        coupons = CouponRepository(self._session)

        try:
            locked = await coupons.lock(coupon.id)
            if locked is None:
                raise CouponNotFound(coupon.code)

            if await self.has_redeemed(coupon.id, user_id):
                raise ConflictError(
                    "This coupon has already been used on your account",
                    details={"code": coupon.code},
                )

            redemptions = await coupons.count_redemptions(coupon.id)
            if locked.max_redemptions is not None and redemptions >= locked.max_redemptions:
                raise ConflictError(
                    "This coupon has already been used",
                    details={"code": coupon.code},
                )

            superseded = await self.supersede_active(user_id)

            now = utcnow()
            model = SubscriptionModel(
                id=uuid4(),
                user_id=user_id,
                plan_id=plan_id,
                coupon_id=coupon.id,
                billing_cycle=billing_cycle.value,
                is_active=True,
                is_trial=False,
                started_at=started_at,
                ends_at=ends_at,
                coupon_redemption_slot=redemptions + 1,
                created_at=now,
                updated_at=now,
            )
            self._session.add(model)
            await self._session.flush()

        except IntegrityError as e:
            await self._session.rollback()
            logger.warning(
                f"Free activation lost a race: user={user_id} coupon={coupon.code}"
            )
            raise ConflictError(
                "This coupon has already been used",
                details={"code": coupon.code},
                original_error=e,
            )
        except SQLAlchemyError as e:
            await self._session.rollback()
            logger.error(
                f"Free activation failed: user={user_id} plan={plan_id} "
                f"coupon={coupon.code}: {e}"
            )
            raise SubscriptionCreationFailed(
                details={"user_id": str(user_id), "plan_id": str(plan_id)},
                original_error=e,
            )

        logger.info(
            f"Created free subscription {model.id} for user {user_id} "
            f"(slot {model.coupon_redemption_slot} of coupon {coupon.code})"
        )
        return self._to_domain(model), superseded

    async def upsert_from_processor(
        self,
        stripe_subscription_id: str,
        user_id: UUID,
        plan_id: UUID,
        billing_cycle: BillingCycle,
        is_active: bool,
        is_trial: bool,
        started_at: datetime,
        ends_at: datetime,
        coupon_id: Optional[UUID] = None,
    ) -> Subscription:
        """
        Create or overwrite the row keyed by the Stripe subscription id.

        Callers supersede the user's other active row first when is_active.
        A coupon is redeemed the first time it reaches the row; replays
        keep whatever coupon and slot the row already holds.
        """
        existing = await self.get_by_stripe_subscription_id(stripe_subscription_id)
        slot = None
        if coupon_id is not None and (existing is None or existing.coupon_id is None):
            coupon_id, slot = await self._claim_checkout_redemption(
                coupon_id, user_id, stripe_subscription_id
            )

        now = utcnow()
        values = {
            "id": uuid4(),
            "user_id": user_id,
            "plan_id": plan_id,
            "coupon_id": coupon_id,
            "stripe_subscription_id": stripe_subscription_id,
            "billing_cycle": billing_cycle.value,
            "is_active": is_active,
            "is_trial": is_trial,
            "started_at": started_at,
            "ends_at": ends_at,
            "coupon_redemption_slot": slot,
            "created_at": now,
            "updated_at": now,
        }

        stmt = self.insert().values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["stripe_subscription_id"],
            set_={
                "plan_id": stmt.excluded.plan_id,
                "billing_cycle": stmt.excluded.billing_cycle,
                "is_active": stmt.excluded.is_active,
                "is_trial": stmt.excluded.is_trial,
                "started_at": stmt.excluded.started_at,
                "ends_at": stmt.excluded.ends_at,
                "coupon_id": func.coalesce(SubscriptionModel.coupon_id, stmt.excluded.coupon_id),
                "coupon_redemption_slot": func.coalesce(
                    SubscriptionModel.coupon_redemption_slot,
                    stmt.excluded.coupon_redemption_slot,
                ),
                "updated_at": now,
            },
        )
        await self._session.execute(stmt)

        return await self.get_by_stripe_subscription_id(stripe_subscription_id)

    async def _claim_checkout_redemption(
        self,
        coupon_id: UUID,
        user_id: UUID,
        stripe_subscription_id: str,
    ) -> Tuple[Optional[UUID], Optional[int]]:
        """
        Redeem a coupon applied at checkout, under the coupon row lock.

        Limited coupons claim the next numbered slot, so a concurrent writer
        that counted the same redemptions fails on the slot index and the
        event is redelivered. A coupon that is used up, or that this user
        already redeemed, is left off the row: the payment went through and
        the subscription stands.

        Returns:
            (coupon id to store or None, redemption slot or None)
        """
        coupons = CouponRepository(self._session)
        locked = await coupons.lock(coupon_id)
        if locked is None:
            logger.warning(
                f"Subscription {stripe_subscription_id} references unknown coupon {coupon_id}"
            )
            return None, None
        if locked.max_redemptions is None:
            return coupon_id, None

        redemptions = await coupons.count_redemptions(coupon_id)
        if redemptions >= locked.max_redemptions or await self.has_redeemed(coupon_id, user_id):
            logger.warning(
                f"Coupon {locked.code} over-redeemed by subscription {stripe_subscription_id} "
                f"(user {user_id}, {redemptions}/{locked.max_redemptions}); "
                f"recording the subscription without it"
            )
            return None, None

        return coupon_id, redemptions + 1

    async def update_by_stripe_subscription_id(
        self,
        stripe_subscription_id: str,
        **values: Any,
    ) -> Optional[Subscription]:
        """Overwrite fields on the keyed row. None when no row matches."""
        values["updated_at"] = utcnow()
        stmt = (
            update(SubscriptionModel)
            .where(SubscriptionModel.stripe_subscription_id == stripe_subscription_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            return None
        return await self.get_by_stripe_subscription_id(stripe_subscription_id)

    async def mark_cancelled(
        self,
        stripe_subscription_id: str,
        cancelled_at: datetime,
    ) -> Optional[Subscription]:
        """Deactivate; the first recorded cancellation time is kept."""
        return await self.update_by_stripe_subscription_id(
            stripe_subscription_id,
            is_active=False,
            deactivation_reason=DeactivationReason.CANCELLED.value,
            cancelled_at=func.coalesce(SubscriptionModel.cancelled_at, cancelled_at),
        )

    async def expire_if_due(self, subscription_id: UUID, now: datetime) -> bool:
        """
        Conditionally deactivate an elapsed subscription.

        Returns False when the row no longer qualifies (already expired by
        a concurrent sweep, renewed or cancelled in the meantime).
        """
        stmt = (
            update(SubscriptionModel)
            .where(
                SubscriptionModel.id == subscription_id,
                SubscriptionModel.is_active.is_(True),
                SubscriptionModel.ends_at <= now,
                SubscriptionModel.cancelled_at.is_(None),
            )
            .values(
                is_active=False,
                deactivation_reason=DeactivationReason.EXPIRED.value,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    # =========================================================================
    # Mapping Methods
    # =========================================================================

    def _to_domain(self, model: SubscriptionModel) -> Subscription:
        """Convert database model to domain entity."""
        return Subscription(
            id=model.id,
            user_id=model.user_id,
            plan_id=model.plan_id,
            coupon_id=model.coupon_id,
            stripe_subscription_id=model.stripe_subscription_id,
            billing_cycle=BillingCycle(model.billing_cycle or BillingCycle.MONTHLY.value),
            is_active=bool(model.is_active),
            is_trial=bool(model.is_trial),
            started_at=ensure_utc(model.started_at),
            ends_at=ensure_utc(model.ends_at),
            cancelled_at=ensure_utc(model.cancelled_at),
            deactivation_reason=(
                DeactivationReason(model.deactivation_reason)
                if model.deactivation_reason else None
            ),
            created_at=ensure_utc(model.created_at),
            updated_at=ensure_utc(model.updated_at),
        )
