"""
Pricing Plan Database Model

Reference data; this service never writes plans at runtime.
"""

from decimal import Decimal
from typing import Optional

from sqlmodel import Field

from entitlements.infrastructure.db.models.base import TimestampMixin, UUIDMixin


class PlanModel(UUIDMixin, TimestampMixin, table=True):
    """Maps to the 'pricing_plans' table."""

    __tablename__ = "pricing_plans"

    name: str = Field(max_length=100, nullable=False)

    # -1 encodes unlimited
    max_horses: int = Field(default=0, nullable=False)
    max_monthly_analyses: int = Field(default=0, nullable=False)

    monthly_price: Decimal = Field(default=Decimal("0"), max_digits=10, decimal_places=2)
    annual_price: Decimal = Field(default=Decimal("0"), max_digits=10, decimal_places=2)

    stripe_price_id: Optional[str] = Field(default=None, max_length=255, index=True)
