"""
Entitlement API Routes

Read-only view the product consults before creating a horse.
"""

from fastapi import APIRouter, Depends

from entitlements.api.dependencies import (
    AuthenticatedUser,
    EntitlementServiceDep,
    get_current_user,
)
from entitlements.domain.subscription import Entitlement


router = APIRouter()


@router.get("/entitlements/me", response_model=Entitlement)
async def get_my_entitlement(
    entitlements: EntitlementServiceDep,
    user: AuthenticatedUser = Depends(get_current_user),
):
    return await entitlements.get_entitlement(user.id)
