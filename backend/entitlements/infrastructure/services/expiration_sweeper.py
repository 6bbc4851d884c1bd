"""
Expiration Sweeper

Scheduled pass that deactivates subscriptions whose period has ended,
moves the owners back to the free tier's horse limit and emails them.

Each subscription is processed in its own session so one failure never
blocks the rest. The deactivation is conditional, so overlapping or
repeated runs are safe: a row already handled reports as skipped.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from entitlements.domain.subscription import (
    ChangeTrigger,
    Subscription,
    SweepSummary,
    utcnow,
)
from entitlements.infrastructure.db.repositories.plan_repository import PlanRepository
from entitlements.infrastructure.db.repositories.subscription_repository import (
    SubscriptionRepository,
)
from entitlements.infrastructure.exceptions import EntitlementsError
from entitlements.infrastructure.notifications.email_service import EmailService
from entitlements.infrastructure.notifications.user_directory import UserDirectory
from entitlements.infrastructure.services.quota_enforcer import QuotaEnforcer


logger = logging.getLogger(__name__)


class ExpirationSweeper:

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifier: EmailService,
        user_directory: UserDirectory,
    ):
        self._session_factory = session_factory
        self._notifier = notifier
        self._users = user_directory

    async def run(self, now: Optional[datetime] = None) -> SweepSummary:
        now = now or utcnow()
        summary = SweepSummary()

        async with self._session_factory() as session:
            expired = await SubscriptionRepository(session).find_expired(now)

        summary.found = len(expired)
        if not expired:
            logger.info("[SWEEP] No expired subscriptions found")
            return summary

        logger.info(f"[SWEEP] Found {len(expired)} expired subscriptions")

        for subscription in expired:
            try:
                plan_name = await self._expire_one(subscription, now)
            except (EntitlementsError, SQLAlchemyError) as e:
                summary.failed += 1
                logger.error(f"[SWEEP] Failed to expire subscription {subscription.id}: {e}")
                continue

            if plan_name is None:
                summary.skipped += 1
                continue

            summary.expired += 1
            if await self._notify(subscription, plan_name):
                summary.emails_sent += 1
            else:
                summary.emails_failed += 1

        logger.info(
            f"[SWEEP] Done: expired={summary.expired} skipped={summary.skipped} "
            f"failed={summary.failed} emails_sent={summary.emails_sent} "
            f"emails_failed={summary.emails_failed}"
        )
        return summary

    async def _expire_one(self, subscription: Subscription, now: datetime) -> Optional[str]:
        """
        Deactivate one subscription and drop its owner to the free tier.

        Returns the expired plan's name, or None if another writer got
        there first. The deactivation and the horse changes commit
        together, so a failed enforcement leaves the row due for the next
        run.
        """
        async with self._session_factory() as session:
            repo = SubscriptionRepository(session)
            if not await repo.expire_if_due(subscription.id, now):
                await session.rollback()
                logger.info(f"[SWEEP] Subscription {subscription.id} no longer due, skipping")
                return None

            plan = await PlanRepository(session).get_by_id(subscription.plan_id)
            try:
                # apply() commits the deactivation along with its own writes
                await QuotaEnforcer(session).apply(
                    subscription.user_id,
                    new_plan=None,
                    old_plan=plan,
                    trigger=ChangeTrigger.EXPIRATION,
                    stripe_subscription_id=subscription.stripe_subscription_id,
                )
            except (EntitlementsError, SQLAlchemyError):
                await session.rollback()
                raise

        logger.info(f"[SWEEP] Expired subscription {subscription.id} for user {subscription.user_id}")
        return plan.name if plan else "Your plan"

    async def _notify(self, subscription: Subscription, plan_name: str) -> bool:
        email = await self._users.get_email(subscription.user_id)
        if not email:
            logger.warning(f"[SWEEP] No email for user {subscription.user_id}, notification skipped")
            return False
        return await self._notifier.send_subscription_expired(
            email,
            plan_name,
            subscription.ends_at,
        )
