"""
SQLModel ORM Models for the Entitlements service

Exports all database models for Alembic autogenerate and application use.
Import models here to register them with SQLModel.metadata.
"""

from entitlements.infrastructure.db.models.base import (
    TimestampMixin,
    UUIDMixin,
)
from entitlements.infrastructure.db.models.plan import PlanModel
from entitlements.infrastructure.db.models.coupon import CouponModel
from entitlements.infrastructure.db.models.subscription import SubscriptionModel
from entitlements.infrastructure.db.models.horse import Horse
from entitlements.infrastructure.db.models.plan_change import PlanChange
from entitlements.infrastructure.db.models.webhook_event import ProcessedWebhookEvent


__all__ = [
    # Base
    "TimestampMixin",
    "UUIDMixin",
    # Reference data
    "PlanModel",
    "CouponModel",
    # Entitlements
    "SubscriptionModel",
    "Horse",
    "PlanChange",
    "ProcessedWebhookEvent",
]
