"""
Coupon Database Model

Redemptions are not stored here; they are counted from
user_subscriptions.coupon_id.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime
from sqlmodel import Field

from entitlements.infrastructure.db.models.base import TimestampMixin, UUIDMixin


class CouponModel(UUIDMixin, TimestampMixin, table=True):
    """Maps to the 'coupons' table."""

    __tablename__ = "coupons"
    __table_args__ = (
        CheckConstraint(
            "discount_percent >= 1 AND discount_percent <= 100",
            name="ck_coupons_discount_percent_range",
        ),
        CheckConstraint(
            "max_redemptions IS NULL OR max_redemptions >= 1",
            name="ck_coupons_max_redemptions_positive",
        ),
    )

    # Stored upper-case
    code: str = Field(max_length=64, unique=True, index=True, nullable=False)
    discount_percent: int = Field(nullable=False)
    expires_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    max_redemptions: Optional[int] = Field(default=None)
