"""
Subscription Domain Models

Domain models for entitlement management following Clean Architecture.
Enums, DTOs, and domain entities for the subscription bounded context.
"""

import math
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Literal, Optional, Union
from uuid import UUID

from dateutil.relativedelta import relativedelta
from pydantic import BaseModel, ConfigDict, Field, field_validator


UNLIMITED = "unlimited"

# Storage encoding for "unlimited" in integer limit columns
UNLIMITED_SENTINEL = -1

SlotLimit = Union[int, Literal["unlimited"]]


class BillingCycle(str, Enum):
    """Billing cycle for subscriptions."""
    MONTHLY = "monthly"
    ANNUAL = "annual"


class SubscriptionState(str, Enum):
    """Lifecycle state derived from the stored subscription flags."""
    NO_PLAN = "no_plan"
    TRIALING = "trialing"
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


ENTITLED_STATES = frozenset({SubscriptionState.ACTIVE, SubscriptionState.TRIALING})


class CouponContext(str, Enum):
    """Where a coupon is being redeemed."""
    CHECKOUT = "checkout"
    FREE_ACTIVATION = "free_activation"


class PlanChangeType(str, Enum):
    UPGRADE = "upgrade"
    DOWNGRADE = "downgrade"
    SAME = "same"


class ChangeTrigger(str, Enum):
    """What caused a quota enforcement run."""
    FREE_ACTIVATION = "free_activation"
    WEBHOOK = "webhook"
    EXPIRATION = "expiration"


class DeactivationReason(str, Enum):
    NEW_SUBSCRIPTION_CREATED = "new_subscription_created"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    PAYMENT_FAILED = "payment_failed"


class ResourceStatus(str, Enum):
    """Status of a quota-bound resource (horse)."""
    ACTIVE = "active"
    DISABLED = "disabled"


class DisabledReason(str, Enum):
    PLAN_DOWNGRADE = "plan_downgrade"
    PLAN_LIMIT_EXCEEDED = "plan_limit_exceeded"
    SUBSCRIPTION_EXPIRED = "subscription_expired"


# =============================================================================
# Helpers
# =============================================================================

def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from the database."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def normalize_coupon_code(code: Optional[str]) -> str:
    """Coupon codes are stored trimmed and upper-case."""
    return (code or "").strip().upper()


def limit_from_storage(value: Optional[int]) -> SlotLimit:
    """Decode an integer limit column (-1 or NULL means unlimited)."""
    if value is None or value == UNLIMITED_SENTINEL:
        return UNLIMITED
    return int(value)


def limit_to_storage(value: SlotLimit) -> int:
    if value == UNLIMITED:
        return UNLIMITED_SENTINEL
    return int(value)


def compute_final_price(list_price: Decimal, discount_percent: Optional[int] = None) -> Decimal:
    """
    Apply a percentage discount and round to minor units.

    final_price = list_price * (1 - discount_percent / 100)
    """
    price = Decimal(str(list_price))
    if discount_percent:
        price = price * (Decimal(100) - Decimal(discount_percent)) / Decimal(100)
    return price.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal) -> int:
    """Convert a major-unit price to the integer amount Stripe expects."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def compute_period_end(started_at: datetime, billing_cycle: BillingCycle) -> datetime:
    """One calendar month or one year after the start (month-end clamped)."""
    if billing_cycle == BillingCycle.ANNUAL:
        return started_at + relativedelta(years=1)
    return started_at + relativedelta(months=1)


def _limit_rank(limit: SlotLimit) -> float:
    return math.inf if limit == UNLIMITED else float(limit)


def classify_plan_change(old_limit: SlotLimit, new_limit: SlotLimit) -> PlanChangeType:
    """Compare horse limits; unlimited outranks any number."""
    old_rank, new_rank = _limit_rank(old_limit), _limit_rank(new_limit)
    if new_rank > old_rank:
        return PlanChangeType.UPGRADE
    if new_rank < old_rank:
        return PlanChangeType.DOWNGRADE
    return PlanChangeType.SAME


# =============================================================================
# Domain Entities
# =============================================================================

class Plan(BaseModel):
    """Pricing plan reference data."""
    id: UUID
    name: str
    max_slots: SlotLimit = 0
    max_monthly_units: SlotLimit = 0
    monthly_price: Decimal = Decimal("0")
    # Monthly-equivalent rate when billed annually
    annual_price: Decimal = Decimal("0")
    stripe_price_id: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)

    def list_price(self, billing_cycle: BillingCycle) -> Decimal:
        """Amount charged per billing interval before discounts."""
        if billing_cycle == BillingCycle.ANNUAL:
            return Decimal(str(self.annual_price)) * 12
        return Decimal(str(self.monthly_price))


class Coupon(BaseModel):
    """Discount coupon. Redemption count is derived, never stored."""
    id: UUID
    code: str
    discount_percent: int
    expires_at: Optional[datetime] = None
    max_redemptions: Optional[int] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @property
    def is_free(self) -> bool:
        return self.discount_percent == 100

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return ensure_utc(self.expires_at) < (now or utcnow())


class Subscription(BaseModel):
    """Core subscription domain entity."""
    id: Optional[UUID] = None
    user_id: UUID
    plan_id: UUID
    coupon_id: Optional[UUID] = None
    # External reference: the processor's subscription id
    stripe_subscription_id: Optional[str] = None
    billing_cycle: BillingCycle = BillingCycle.MONTHLY
    is_active: bool = False
    is_trial: bool = False
    started_at: datetime
    ends_at: datetime
    cancelled_at: Optional[datetime] = None
    deactivation_reason: Optional[DeactivationReason] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    def state(self, now: Optional[datetime] = None) -> SubscriptionState:
        return derive_state(self, now)

    def is_entitled(self, now: Optional[datetime] = None) -> bool:
        return self.state(now) in ENTITLED_STATES


def derive_state(
    subscription: Optional[Subscription],
    now: Optional[datetime] = None,
) -> SubscriptionState:
    """
    Collapse the stored flags into one lifecycle state.

    An active row whose period has elapsed reports EXPIRED even before
    the sweep deactivates it.
    """
    if subscription is None:
        return SubscriptionState.NO_PLAN

    now = now or utcnow()

    if not subscription.is_active:
        if subscription.cancelled_at is not None:
            return SubscriptionState.CANCELLED
        return SubscriptionState.EXPIRED

    if ensure_utc(subscription.ends_at) <= now:
        return SubscriptionState.EXPIRED

    if subscription.is_trial:
        return SubscriptionState.TRIALING

    return SubscriptionState.ACTIVE


class Entitlement(BaseModel):
    """Read-only projection used to pre-flight horse creation."""
    user_id: UUID
    plan_id: Optional[UUID] = None
    plan_name: str
    state: SubscriptionState
    max_slots: SlotLimit
    max_monthly_units: SlotLimit = 0
    active_count: int
    disabled_count: int
    total_count: int
    remaining_slots: SlotLimit
    can_add_resource: bool
    ends_at: Optional[datetime] = None
    days_remaining: int = 0
    expires_soon: bool = False


# =============================================================================
# Request/Response DTOs
# =============================================================================

class CreateCheckoutRequest(BaseModel):
    """Request DTO for creating a checkout session."""
    plan_id: UUID = Field(..., description="Pricing plan to purchase")
    billing_cycle: BillingCycle = Field(
        default=BillingCycle.MONTHLY,
        description="Billing cycle (monthly or annual)"
    )
    coupon_code: Optional[str] = Field(default=None, description="Optional discount coupon")


class CheckoutResponse(BaseModel):
    """Response DTO for checkout session creation."""
    checkout_url: str
    session_id: str
    final_price: Decimal
    currency: str


class ActivateFreePlanRequest(BaseModel):
    """Request DTO for activating a plan with a 100% coupon."""
    plan_id: UUID
    billing_cycle: BillingCycle
    coupon_code: str = Field(..., min_length=1)


class ActivateFreePlanResponse(BaseModel):
    success: bool = True
    subscription_id: UUID
    plan_name: str
    ends_at: datetime
    billing_cycle: BillingCycle
    coupon_code: str


class ValidateCouponRequest(BaseModel):
    coupon_code: str = ""


class ValidateCouponResponse(BaseModel):
    """Coupon pre-check result; invalid codes are not HTTP errors."""
    valid: bool
    code: Optional[str] = None
    discount_percent: Optional[int] = None
    expires_at: Optional[datetime] = None
    error: Optional[str] = None


class CouponCreate(BaseModel):
    """Admin DTO for creating coupons."""
    code: str = Field(..., min_length=1, max_length=64)
    discount_percent: int = Field(..., ge=1, le=100)
    expires_at: Optional[datetime] = None
    max_redemptions: Optional[int] = Field(default=None, ge=1)

    @field_validator("code")
    @classmethod
    def normalize_code(cls, value: str) -> str:
        normalized = normalize_coupon_code(value)
        if not normalized:
            raise ValueError("Coupon code is required")
        return normalized


class CouponRead(BaseModel):
    id: UUID
    code: str
    discount_percent: int
    expires_at: Optional[datetime] = None
    max_redemptions: Optional[int] = None
    redemptions: int = 0


class SubscriptionDetail(BaseModel):
    id: UUID
    plan_id: UUID
    plan_name: Optional[str] = None
    state: SubscriptionState
    is_trial: bool
    is_active: bool
    started_at: datetime
    ends_at: datetime
    days_remaining: int
    expires_soon: bool
    stripe_subscription_id: Optional[str] = None
    coupon_code: Optional[str] = None


class SubscriptionStatusResponse(BaseModel):
    """Response DTO for subscription status."""
    subscribed: bool
    subscription: Optional[SubscriptionDetail] = None


class SweepSummary(BaseModel):
    """Tally reported by one expiration sweep."""
    found: int = 0
    expired: int = 0
    skipped: int = 0
    failed: int = 0
    emails_sent: int = 0
    emails_failed: int = 0


def days_until(ends_at: Optional[datetime], now: Optional[datetime] = None) -> int:
    """Whole days remaining, rounded up, never negative."""
    if ends_at is None:
        return 0
    seconds = (ensure_utc(ends_at) - (now or utcnow())).total_seconds()
    return max(0, math.ceil(seconds / 86400))
