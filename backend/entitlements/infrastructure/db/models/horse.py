"""
Horse Database Model

Horses are created by the product; this service only flips their
status when a plan limit changes.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import DateTime, Index
from sqlmodel import Field

from entitlements.infrastructure.db.models.base import TimestampMixin, UUIDMixin


class Horse(UUIDMixin, TimestampMixin, table=True):
    """Maps to the 'horses' table."""

    __tablename__ = "horses"
    __table_args__ = (
        Index("ix_horses_user_status", "user_id", "status"),
    )

    user_id: UUID = Field(index=True, nullable=False)
    name: str = Field(default="", max_length=255)
    status: str = Field(default="active", max_length=20, nullable=False)
    disabled_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    disabled_reason: Optional[str] = Field(default=None, max_length=50)
