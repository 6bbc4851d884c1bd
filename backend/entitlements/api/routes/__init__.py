# API Routes Module
from entitlements.api.routes import (
    subscriptions,
    entitlements,
    coupons,
    webhooks,
    admin,
    jobs,
)

__all__ = [
    "subscriptions",
    "entitlements",
    "coupons",
    "webhooks",
    "admin",
    "jobs",
]
