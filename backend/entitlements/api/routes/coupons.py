"""
Coupon API Routes

Public coupon pre-check for the pricing page. Invalid codes answer 200
with valid=false so the form can show the message inline.
"""

from fastapi import APIRouter, Depends

from entitlements.api.dependencies import CouponValidatorDep, get_current_user_id
from entitlements.domain.subscription import ValidateCouponRequest, ValidateCouponResponse


router = APIRouter()


@router.post(
    "/coupons/validate",
    response_model=ValidateCouponResponse,
    dependencies=[Depends(get_current_user_id)],
)
async def validate_coupon(
    request: ValidateCouponRequest,
    validator: CouponValidatorDep,
):
    return await validator.check(request.coupon_code)
