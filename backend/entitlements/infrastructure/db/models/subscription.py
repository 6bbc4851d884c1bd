"""
Subscription Database Model

SQLModel table for subscription data persistence.

The partial unique index on user_id WHERE is_active is what makes
"one active subscription per user" hold under concurrent writers.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import DateTime, Index, text
from sqlmodel import Field

from entitlements.infrastructure.db.models.base import TimestampMixin, UUIDMixin


class SubscriptionModel(UUIDMixin, TimestampMixin, table=True):
    """Maps to the 'user_subscriptions' table."""

    __tablename__ = "user_subscriptions"
    __table_args__ = (
        Index(
            "uq_user_subscriptions_one_active",
            "user_id",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active"),
        ),
        Index(
            "uq_user_subscriptions_coupon_slot",
            "coupon_id",
            "coupon_redemption_slot",
            unique=True,
        ),
        Index(
            "uq_user_subscriptions_coupon_user",
            "coupon_id",
            "user_id",
            unique=True,
            postgresql_where=text("coupon_redemption_slot IS NOT NULL"),
            sqlite_where=text("coupon_redemption_slot IS NOT NULL"),
        ),
        Index(
            "ix_user_subscriptions_expiry",
            "is_active",
            "ends_at",
        ),
    )

    user_id: UUID = Field(index=True, nullable=False)
    plan_id: UUID = Field(foreign_key="pricing_plans.id", nullable=False)
    coupon_id: Optional[UUID] = Field(default=None, foreign_key="coupons.id", index=True)

    # Stripe subscription id; the webhook upsert key
    stripe_subscription_id: Optional[str] = Field(default=None, max_length=255, unique=True)

    billing_cycle: str = Field(default="monthly", max_length=20)
    is_active: bool = Field(default=False, nullable=False)
    is_trial: bool = Field(default=False, nullable=False)

    started_at: datetime = Field(nullable=False, sa_type=DateTime(timezone=True))
    ends_at: datetime = Field(nullable=False, sa_type=DateTime(timezone=True))
    cancelled_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    deactivation_reason: Optional[str] = Field(default=None, max_length=50)

    # n-th redemption of a limited coupon, by free activation or checkout
    coupon_redemption_slot: Optional[int] = Field(default=None)
