"""
Dependency Injection Providers for the Entitlements service

FastAPI dependencies for database sessions and the services built on them.
"""

from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from entitlements.infrastructure.db.database import get_session
from entitlements.infrastructure.payments.stripe_service import (
    StripeService,
    get_stripe_service,
)
from entitlements.infrastructure.services.checkout_service import CheckoutService
from entitlements.infrastructure.services.coupon_validator import CouponValidator
from entitlements.infrastructure.services.entitlement_service import EntitlementService
from entitlements.infrastructure.services.free_activation_service import (
    FreeActivationService,
)
from entitlements.infrastructure.services.webhook_service import WebhookService


# Type alias for session dependency
SessionDep = Annotated[AsyncSession, Depends(get_session)]
StripeDep = Annotated[StripeService, Depends(get_stripe_service)]


def get_coupon_validator(session: SessionDep) -> CouponValidator:
    return CouponValidator(session)


def get_checkout_service(session: SessionDep, stripe_service: StripeDep) -> CheckoutService:
    return CheckoutService(session, stripe_service)


def get_free_activation_service(session: SessionDep) -> FreeActivationService:
    return FreeActivationService(session)


def get_entitlement_service(session: SessionDep) -> EntitlementService:
    return EntitlementService(session)


def get_webhook_service(session: SessionDep, stripe_service: StripeDep) -> WebhookService:
    return WebhookService(session, stripe_service)


CouponValidatorDep = Annotated[CouponValidator, Depends(get_coupon_validator)]
CheckoutServiceDep = Annotated[CheckoutService, Depends(get_checkout_service)]
FreeActivationDep = Annotated[FreeActivationService, Depends(get_free_activation_service)]
EntitlementServiceDep = Annotated[EntitlementService, Depends(get_entitlement_service)]
WebhookServiceDep = Annotated[WebhookService, Depends(get_webhook_service)]
