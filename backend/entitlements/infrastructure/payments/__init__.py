"""
Payments Infrastructure Module

Stripe checkout, subscription lookups and webhook verification.
"""

from entitlements.infrastructure.payments.stripe_service import (
    StripeService,
    get_stripe_service,
)

__all__ = ["StripeService", "get_stripe_service"]
