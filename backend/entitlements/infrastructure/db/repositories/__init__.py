"""
Repository Layer for the Entitlements service

Exports all repository classes for dependency injection.
"""

from entitlements.infrastructure.db.repositories.base_repository import BaseRepository
from entitlements.infrastructure.db.repositories.plan_repository import PlanRepository
from entitlements.infrastructure.db.repositories.coupon_repository import CouponRepository
from entitlements.infrastructure.db.repositories.subscription_repository import (
    SubscriptionRepository,
)
from entitlements.infrastructure.db.repositories.horse_repository import HorseRepository
from entitlements.infrastructure.db.repositories.plan_change_repository import (
    PlanChangeRepository,
)
from entitlements.infrastructure.db.repositories.webhook_event_repository import (
    WebhookEventRepository,
)


__all__ = [
    # Base
    "BaseRepository",
    # Repositories
    "PlanRepository",
    "CouponRepository",
    "SubscriptionRepository",
    "HorseRepository",
    "PlanChangeRepository",
    "WebhookEventRepository",
]
