"""
Plan Change Audit Model

Append-only record written by the quota enforcer on every run.
"""

from typing import Optional
from uuid import UUID, uuid4

from datetime import datetime

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from entitlements.infrastructure.db.models.base import utc_now


class PlanChange(SQLModel, table=True):
    """Maps to the 'plan_changes' table."""

    __tablename__ = "plan_changes"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(index=True, nullable=False)

    old_plan_id: Optional[UUID] = Field(default=None)
    new_plan_id: Optional[UUID] = Field(default=None)
    old_plan_name: Optional[str] = Field(default=None, max_length=100)
    new_plan_name: Optional[str] = Field(default=None, max_length=100)
    # -1 encodes unlimited
    old_horse_limit: int = Field(default=0)
    new_horse_limit: int = Field(default=0)

    change_type: str = Field(max_length=20, nullable=False)
    trigger: str = Field(max_length=30, nullable=False)
    stripe_subscription_id: Optional[str] = Field(default=None, max_length=255)

    horses_affected: int = Field(default=0)
    horses_disabled: int = Field(default=0)
    horses_reactivated: int = Field(default=0)

    created_at: datetime = Field(
        default_factory=utc_now,
        nullable=False,
        sa_type=DateTime(timezone=True),
    )
