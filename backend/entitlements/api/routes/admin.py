"""
Admin Routes for Coupon Management

Protected by API key authentication.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, status

from entitlements.api.dependencies import SessionDep, verify_admin_api_key
from entitlements.domain.subscription import CouponCreate, CouponRead
from entitlements.infrastructure.db.repositories.coupon_repository import CouponRepository


logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/admin",
    tags=["admin"],
    dependencies=[Depends(verify_admin_api_key)],  # Protect ALL admin routes
)


@router.post("/coupons", response_model=CouponRead, status_code=status.HTTP_201_CREATED)
async def create_coupon(data: CouponCreate, session: SessionDep):
    """
    Create a coupon.

    The code is stored trimmed and upper-case; discount_percent must be
    between 1 and 100.
    """
    coupon = await CouponRepository(session).create(data)
    await session.commit()
    logger.info(f"Admin created coupon {coupon.code}")
    return CouponRead(**coupon.model_dump(include=set(CouponRead.model_fields)), redemptions=0)


@router.get("/coupons", response_model=List[CouponRead])
async def list_coupons(session: SessionDep):
    rows = await CouponRepository(session).list_with_redemptions()
    return [
        CouponRead(**coupon.model_dump(include=set(CouponRead.model_fields)), redemptions=count)
        for coupon, count in rows
    ]
