"""
Subscription API Routes

Checkout, free activation and status for the signed-in user.
Domain errors propagate to the exception handlers in main.py.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends

from entitlements.api.dependencies import (
    AuthenticatedUser,
    CheckoutServiceDep,
    EntitlementServiceDep,
    FreeActivationDep,
    SessionDep,
    get_current_user,
)
from entitlements.domain.subscription import (
    ActivateFreePlanRequest,
    ActivateFreePlanResponse,
    CheckoutResponse,
    CreateCheckoutRequest,
    Plan,
    SubscriptionStatusResponse,
)
from entitlements.infrastructure.db.repositories.plan_repository import PlanRepository


logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/plans", response_model=List[Plan])
async def list_plans(session: SessionDep):
    """Public plan catalogue for the pricing page, cheapest first."""
    return await PlanRepository(session).list_plans()


@router.post("/subscriptions/checkout", response_model=CheckoutResponse)
async def create_checkout_session(
    request: CreateCheckoutRequest,
    checkout: CheckoutServiceDep,
    user: AuthenticatedUser = Depends(get_current_user),
):
    """
    Create a Stripe Checkout session for a plan purchase.

    The subscription row is written by the webhook once payment succeeds.
    """
    return await checkout.start_checkout(
        user_id=user.id,
        plan_id=request.plan_id,
        billing_cycle=request.billing_cycle,
        coupon_code=request.coupon_code,
        customer_email=user.email,
    )


@router.post("/subscriptions/activate-free", response_model=ActivateFreePlanResponse)
async def activate_free_subscription(
    request: ActivateFreePlanRequest,
    activation: FreeActivationDep,
    user: AuthenticatedUser = Depends(get_current_user),
):
    """Activate a plan with a 100%-discount coupon, no payment involved."""
    return await activation.activate(
        user_id=user.id,
        plan_id=request.plan_id,
        billing_cycle=request.billing_cycle,
        coupon_code=request.coupon_code,
    )


@router.get("/subscriptions/status", response_model=SubscriptionStatusResponse)
async def get_subscription_status(
    entitlements: EntitlementServiceDep,
    user: AuthenticatedUser = Depends(get_current_user),
):
    return await entitlements.get_status(user.id)
