"""
Webhook Reconciliation Service

Applies Stripe subscription lifecycle events to user_subscriptions.

Every handler is keyed on the Stripe subscription id and writes absolute
values, so duplicate and reordered deliveries converge. Two rules keep
late events from undoing newer state:
- a cancelled row (cancelled_at set) is never reactivated
- a row superseded by a newer subscription is not reactivated by events
  for the older one
"""

import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from entitlements.domain.subscription import (
    BillingCycle,
    ChangeTrigger,
    DeactivationReason,
    Plan,
    Subscription,
    utcnow,
)
from entitlements.infrastructure.db.repositories.plan_repository import PlanRepository
from entitlements.infrastructure.db.repositories.subscription_repository import (
    SubscriptionRepository,
)
from entitlements.infrastructure.db.repositories.webhook_event_repository import (
    WebhookEventRepository,
)
from entitlements.infrastructure.exceptions import PersistenceError
from entitlements.infrastructure.payments.stripe_service import StripeService
from entitlements.infrastructure.services.quota_enforcer import QuotaEnforcer


logger = logging.getLogger(__name__)

ENTITLED_STRIPE_STATUSES = {"active", "trialing"}

# Why a row went inactive, by the Stripe status that made it so
INACTIVE_REASONS = {
    "canceled": DeactivationReason.CANCELLED,
    "past_due": DeactivationReason.PAYMENT_FAILED,
    "unpaid": DeactivationReason.PAYMENT_FAILED,
    "incomplete_expired": DeactivationReason.EXPIRED,
}

STRIPE_INTERVALS = {
    "month": BillingCycle.MONTHLY,
    "year": BillingCycle.ANNUAL,
}


# =============================================================================
# Stripe payload helpers
# =============================================================================

def from_timestamp(value: Optional[int]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _first_item(subscription: Mapping[str, Any]) -> Mapping[str, Any]:
    items = (subscription.get("items") or {}).get("data") or []
    return items[0] if items else {}


def subscription_period(subscription: Mapping[str, Any]) -> tuple:
    """
    (start, end) of the current billing period.

    Newer Stripe API versions moved the period onto the subscription items.
    """
    item = _first_item(subscription)
    start = subscription.get("current_period_start") or item.get("current_period_start")
    end = subscription.get("current_period_end") or item.get("current_period_end")
    return from_timestamp(start), from_timestamp(end)


def subscription_price_id(subscription: Mapping[str, Any]) -> Optional[str]:
    price = _first_item(subscription).get("price") or {}
    return price.get("id")


def subscription_interval(subscription: Mapping[str, Any]) -> Optional[str]:
    price = _first_item(subscription).get("price") or {}
    return (price.get("recurring") or {}).get("interval")


def invoice_subscription_id(invoice: Mapping[str, Any]) -> Optional[str]:
    """Subscription id of an invoice, across old and new payload shapes."""
    subscription_id = invoice.get("subscription")
    if subscription_id:
        return subscription_id if isinstance(subscription_id, str) else subscription_id.get("id")
    details = (invoice.get("parent") or {}).get("subscription_details") or {}
    return details.get("subscription")


def parse_uuid(value: Any) -> Optional[UUID]:
    if not value:
        return None
    try:
        return UUID(str(value))
    except ValueError:
        return None


# =============================================================================
# Service
# =============================================================================

class WebhookService:
    """
    Reconciles the internal subscription record with Stripe events.

    Handlers return the affected user id (None when nothing changed);
    process() commits, re-fits the user's horses and records the event.
    """

    def __init__(
        self,
        session: AsyncSession,
        stripe_service: StripeService,
        enforcer: Optional[QuotaEnforcer] = None,
    ):
        self._session = session
        self._stripe = stripe_service
        self._plans = PlanRepository(session)
        self._subscriptions = SubscriptionRepository(session)
        self._events = WebhookEventRepository(session)
        self._enforcer = enforcer or QuotaEnforcer(session)

        self.handlers: Dict[str, Callable[[Mapping[str, Any]], Awaitable[Optional[UUID]]]] = {
            "checkout.session.completed": self.handle_checkout_completed,
            "customer.subscription.created": self.handle_subscription_created,
            "customer.subscription.updated": self.handle_subscription_updated,
            "customer.subscription.deleted": self.handle_subscription_deleted,
            "invoice.payment_succeeded": self.handle_payment_succeeded,
            "invoice.payment_failed": self.handle_payment_failed,
        }

    async def process(self, event: Mapping[str, Any]) -> Dict[str, str]:
        """
        Apply one verified event.

        Raises:
            ExternalServiceError: Stripe lookup failed (redelivery retries)
            PersistenceError: datastore failure (redelivery retries)
        """
        event_id = event.get("id")
        event_type = event.get("type")

        if event_id and await self._events.is_processed(event_id):
            logger.info(f"Event {event_id} already processed, skipping")
            return {"status": "already_processed"}

        handler = self.handlers.get(event_type)
        if handler is None:
            logger.info(f"Ignoring unhandled webhook event type: {event_type}")
            return {"status": "ignored"}

        logger.info(f"Processing webhook event: {event_type} ({event_id})")
        obj = event["data"]["object"]

        try:
            user_id = await handler(obj)
            await self._session.commit()

            if user_id is not None:
                await self._enforcer.sync_user(
                    user_id,
                    ChangeTrigger.WEBHOOK,
                    stripe_subscription_id=self._stripe_id_of(event_type, obj),
                )

            if event_id:
                await self._events.mark_processed(event_id, event_type)
                await self._session.commit()

        except SQLAlchemyError as e:
            await self._session.rollback()
            logger.error(f"Database error processing webhook {event_type} ({event_id}): {e}")
            raise PersistenceError(
                f"Failed to apply {event_type}",
                operation="webhook",
                table="user_subscriptions",
                original_error=e,
            )

        return {"status": "success"}

    @staticmethod
    def _stripe_id_of(event_type: str, obj: Mapping[str, Any]) -> Optional[str]:
        if event_type == "checkout.session.completed":
            return obj.get("subscription")
        if event_type.startswith("invoice."):
            return invoice_subscription_id(obj)
        return obj.get("id")

    # =========================================================================
    # Event Handlers
    # =========================================================================

    async def handle_checkout_completed(self, session: Mapping[str, Any]) -> Optional[UUID]:
        """Payment went through: pull the subscription and record it."""
        stripe_subscription_id = session.get("subscription")
        if not stripe_subscription_id:
            logger.warning(f"Checkout session {session.get('id')} has no subscription, ignoring")
            return None

        subscription = await self._stripe.retrieve_subscription(stripe_subscription_id)
        return await self._upsert(subscription, fallback_metadata=session.get("metadata") or {})

    async def handle_subscription_created(self, subscription: Mapping[str, Any]) -> Optional[UUID]:
        return await self._upsert(subscription)

    async def handle_subscription_updated(self, subscription: Mapping[str, Any]) -> Optional[UUID]:
        stripe_subscription_id = subscription.get("id")
        existing = await self._subscriptions.get_by_stripe_subscription_id(stripe_subscription_id)
        if existing is None:
            # Arrived before checkout completion; the object carries enough to create the row
            return await self._upsert(subscription)

        status = subscription.get("status")
        wants_active = status in ENTITLED_STRIPE_STATUSES
        _, ends_at = subscription_period(subscription)

        values: Dict[str, Any] = {"is_trial": status == "trialing"}
        if ends_at:
            values["ends_at"] = ends_at

        plan = await self._resolve_plan(subscription)
        if plan is not None and plan.id != existing.plan_id:
            logger.info(
                f"Plan change for subscription {stripe_subscription_id}: "
                f"{existing.plan_id} -> {plan.id}"
            )
            values["plan_id"] = plan.id

        if wants_active and await self._claim_active(existing.user_id, stripe_subscription_id, existing):
            values.update(is_active=True, deactivation_reason=None)
        elif not wants_active:
            values["is_active"] = False
            reason = INACTIVE_REASONS.get(status)
            if reason:
                values["deactivation_reason"] = reason.value

        await self._subscriptions.update_by_stripe_subscription_id(stripe_subscription_id, **values)
        logger.info(f"Synced subscription {stripe_subscription_id} (status={status})")
        return existing.user_id

    async def handle_subscription_deleted(self, subscription: Mapping[str, Any]) -> Optional[UUID]:
        stripe_subscription_id = subscription.get("id")
        cancelled_at = (
            from_timestamp(subscription.get("canceled_at"))
            or from_timestamp(subscription.get("ended_at"))
            or utcnow()
        )

        updated = await self._subscriptions.mark_cancelled(stripe_subscription_id, cancelled_at)
        if updated is None:
            logger.warning(f"Deletion for unknown subscription {stripe_subscription_id}, ignoring")
            return None

        logger.info(f"Cancelled subscription {stripe_subscription_id} for user {updated.user_id}")
        return updated.user_id

    async def handle_payment_succeeded(self, invoice: Mapping[str, Any]) -> Optional[UUID]:
        stripe_subscription_id = invoice_subscription_id(invoice)
        if not stripe_subscription_id:
            return None

        subscription = await self._stripe.retrieve_subscription(stripe_subscription_id)
        existing = await self._subscriptions.get_by_stripe_subscription_id(stripe_subscription_id)
        if existing is None:
            return await self._upsert(subscription)

        _, ends_at = subscription_period(subscription)
        values: Dict[str, Any] = {}
        if ends_at:
            values["ends_at"] = ends_at

        if await self._claim_active(existing.user_id, stripe_subscription_id, existing):
            values.update(is_active=True, deactivation_reason=None)

        if values:
            await self._subscriptions.update_by_stripe_subscription_id(stripe_subscription_id, **values)
        logger.info(f"Renewed subscription {stripe_subscription_id} until {ends_at}")
        return existing.user_id

    async def handle_payment_failed(self, invoice: Mapping[str, Any]) -> Optional[UUID]:
        stripe_subscription_id = invoice_subscription_id(invoice)
        if not stripe_subscription_id:
            return None

        existing = await self._subscriptions.get_by_stripe_subscription_id(stripe_subscription_id)
        if existing is None or existing.cancelled_at is not None:
            return None

        await self._subscriptions.update_by_stripe_subscription_id(
            stripe_subscription_id,
            is_active=False,
            deactivation_reason=DeactivationReason.PAYMENT_FAILED.value,
        )
        logger.warning(f"Payment failed for subscription {stripe_subscription_id}, deactivated")
        return existing.user_id

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _upsert(
        self,
        subscription: Mapping[str, Any],
        fallback_metadata: Optional[Mapping[str, Any]] = None,
    ) -> Optional[UUID]:
        """Create or overwrite the row for a Stripe subscription object."""
        stripe_subscription_id = subscription.get("id")
        metadata = {**(fallback_metadata or {}), **(subscription.get("metadata") or {})}

        user_id = parse_uuid(metadata.get("user_id"))
        if user_id is None:
            logger.error(f"Subscription {stripe_subscription_id} has no valid user_id metadata")
            return None

        plan = await self._resolve_plan(subscription, metadata)
        if plan is None:
            logger.error(f"Subscription {stripe_subscription_id} does not map to a known plan")
            return None

        started_at, ends_at = subscription_period(subscription)
        if ends_at is None:
            logger.error(f"Subscription {stripe_subscription_id} has no current period")
            return None

        status = subscription.get("status")
        existing = await self._subscriptions.get_by_stripe_subscription_id(stripe_subscription_id)
        is_active = status in ENTITLED_STRIPE_STATUSES and await self._claim_active(
            user_id, stripe_subscription_id, existing
        )

        try:
            billing_cycle = BillingCycle(metadata.get("billing_cycle"))
        except ValueError:
            billing_cycle = STRIPE_INTERVALS.get(
                subscription_interval(subscription), BillingCycle.MONTHLY
            )

        await self._subscriptions.upsert_from_processor(
            stripe_subscription_id=stripe_subscription_id,
            user_id=user_id,
            plan_id=plan.id,
            billing_cycle=billing_cycle,
            is_active=is_active,
            is_trial=status == "trialing",
            started_at=started_at or utcnow(),
            ends_at=ends_at,
            coupon_id=parse_uuid(metadata.get("coupon_id")),
        )
        logger.info(
            f"Recorded subscription {stripe_subscription_id} for user {user_id}: "
            f"plan={plan.name} status={status}"
        )
        return user_id

    async def _resolve_plan(
        self,
        subscription: Mapping[str, Any],
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> Optional[Plan]:
        """Plan from metadata plan_id, falling back to the Stripe price id."""
        metadata = metadata if metadata is not None else (subscription.get("metadata") or {})
        plan = await self._plans.get_by_id(parse_uuid(metadata.get("plan_id")))
        if plan is not None:
            return plan

        price_id = subscription_price_id(subscription)
        if price_id:
            return await self._plans.get_by_stripe_price_id(price_id)
        return None

    async def _claim_active(
        self,
        user_id: UUID,
        stripe_subscription_id: str,
        existing: Optional[Subscription],
    ) -> bool:
        """
        Make room for this subscription to be the user's active one.

        Returns False when the row must stay inactive: it was cancelled, or
        it was superseded by a subscription created after it.
        """
        if existing is not None and existing.cancelled_at is not None:
            logger.info(f"Subscription {stripe_subscription_id} is cancelled, not reactivating")
            return False

        current = await self._subscriptions.get_active_for_user(user_id)
        if current is None or current.stripe_subscription_id == stripe_subscription_id:
            return True

        if (
            existing is not None
            and existing.deactivation_reason == DeactivationReason.NEW_SUBSCRIPTION_CREATED
            and current.created_at is not None
            and existing.created_at is not None
            and existing.created_at < current.created_at
        ):
            logger.info(
                f"Subscription {stripe_subscription_id} was superseded by {current.id}, "
                f"not reactivating"
            )
            return False

        await self._subscriptions.supersede_active(
            user_id,
            keep_stripe_subscription_id=stripe_subscription_id,
        )
        return True
