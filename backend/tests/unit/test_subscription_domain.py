"""
Unit tests for the subscription domain model.

Covers state derivation, pricing arithmetic, billing periods and the
coupon creation DTO.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from pydantic import ValidationError

from entitlements.domain.subscription import (
    UNLIMITED,
    BillingCycle,
    CouponCreate,
    Plan,
    PlanChangeType,
    Subscription,
    SubscriptionState,
    classify_plan_change,
    compute_final_price,
    compute_period_end,
    days_until,
    derive_state,
    ensure_utc,
    limit_from_storage,
    limit_to_storage,
    normalize_coupon_code,
    to_minor_units,
)


NOW = datetime(2025, 6, 15, 12, 0, tzinfo=timezone.utc)


def make_subscription(**overrides) -> Subscription:
    values = {
        "user_id": uuid4(),
        "plan_id": uuid4(),
        "is_active": True,
        "started_at": NOW - timedelta(days=10),
        "ends_at": NOW + timedelta(days=20),
    }
    values.update(overrides)
    return Subscription(**values)


class TestDeriveState:
    """Lifecycle state is derived, never stored."""

    def test_no_subscription_is_no_plan(self):
        assert derive_state(None, NOW) == SubscriptionState.NO_PLAN

    def test_active_within_period(self):
        assert derive_state(make_subscription(), NOW) == SubscriptionState.ACTIVE

    def test_trial_within_period(self):
        sub = make_subscription(is_trial=True)
        assert derive_state(sub, NOW) == SubscriptionState.TRIALING
        assert sub.is_entitled(NOW)

    def test_active_flag_past_end_reports_expired(self):
        sub = make_subscription(ends_at=NOW - timedelta(seconds=1))
        assert derive_state(sub, NOW) == SubscriptionState.EXPIRED
        assert not sub.is_entitled(NOW)

    def test_inactive_with_cancellation_is_cancelled(self):
        sub = make_subscription(is_active=False, cancelled_at=NOW - timedelta(days=1))
        assert derive_state(sub, NOW) == SubscriptionState.CANCELLED

    def test_inactive_without_cancellation_is_expired(self):
        sub = make_subscription(is_active=False)
        assert derive_state(sub, NOW) == SubscriptionState.EXPIRED

    def test_naive_end_is_treated_as_utc(self):
        naive_end = (NOW + timedelta(hours=1)).replace(tzinfo=None)
        sub = make_subscription(ends_at=naive_end)
        assert derive_state(sub, NOW) == SubscriptionState.ACTIVE


class TestPricing:

    def test_no_discount_keeps_list_price(self):
        assert compute_final_price(Decimal("19.99")) == Decimal("19.99")

    def test_discount_rounds_half_up_to_cents(self):
        # 19.99 * 0.85 = 16.9915
        assert compute_final_price(Decimal("19.99"), 15) == Decimal("16.99")
        # 9.99 * 0.75 = 7.4925
        assert compute_final_price(Decimal("9.99"), 25) == Decimal("7.49")
        # 0.05 * 0.50 = 0.025
        assert compute_final_price(Decimal("0.05"), 50) == Decimal("0.03")

    def test_full_discount_is_zero(self):
        assert compute_final_price(Decimal("49.99"), 100) == Decimal("0.00")

    def test_annual_list_price_is_twelve_monthly_equivalents(self):
        plan = Plan(
            id=uuid4(),
            name="Pro",
            monthly_price=Decimal("19.99"),
            annual_price=Decimal("16.66"),
        )
        assert plan.list_price(BillingCycle.MONTHLY) == Decimal("19.99")
        assert plan.list_price(BillingCycle.ANNUAL) == Decimal("199.92")

    def test_minor_units(self):
        assert to_minor_units(Decimal("16.99")) == 1699
        assert to_minor_units(Decimal("199.92")) == 19992


class TestPeriodEnd:

    def test_monthly_is_one_calendar_month(self):
        start = datetime(2025, 3, 10, 8, 30, tzinfo=timezone.utc)
        assert compute_period_end(start, BillingCycle.MONTHLY) == datetime(
            2025, 4, 10, 8, 30, tzinfo=timezone.utc
        )

    def test_monthly_clamps_to_month_end(self):
        start = datetime(2025, 1, 31, tzinfo=timezone.utc)
        assert compute_period_end(start, BillingCycle.MONTHLY) == datetime(
            2025, 2, 28, tzinfo=timezone.utc
        )

    def test_annual_from_leap_day(self):
        start = datetime(2024, 2, 29, tzinfo=timezone.utc)
        assert compute_period_end(start, BillingCycle.ANNUAL) == datetime(
            2025, 2, 28, tzinfo=timezone.utc
        )


class TestPlanChangeClassification:

    @pytest.mark.parametrize(
        "old, new, expected",
        [
            (1, 3, PlanChangeType.UPGRADE),
            (3, 1, PlanChangeType.DOWNGRADE),
            (3, 3, PlanChangeType.SAME),
            (3, UNLIMITED, PlanChangeType.UPGRADE),
            (UNLIMITED, 100, PlanChangeType.DOWNGRADE),
            (UNLIMITED, UNLIMITED, PlanChangeType.SAME),
        ],
    )
    def test_unlimited_outranks_numbers(self, old, new, expected):
        assert classify_plan_change(old, new) == expected


class TestLimitStorage:

    def test_sentinel_and_null_mean_unlimited(self):
        assert limit_from_storage(-1) == UNLIMITED
        assert limit_from_storage(None) == UNLIMITED
        assert limit_from_storage(3) == 3

    def test_unlimited_is_stored_as_sentinel(self):
        assert limit_to_storage(UNLIMITED) == -1
        assert limit_to_storage(0) == 0


class TestDaysUntil:

    def test_partial_days_round_up(self):
        assert days_until(NOW + timedelta(days=2, hours=1), NOW) == 3

    def test_past_end_is_zero(self):
        assert days_until(NOW - timedelta(days=1), NOW) == 0

    def test_no_end_is_zero(self):
        assert days_until(None, NOW) == 0


class TestCouponCreate:
    """Discounts outside 1..100 never reach the database."""

    @pytest.mark.parametrize("discount", [0, -5, 101, 150])
    def test_rejects_out_of_range_discount(self, discount):
        with pytest.raises(ValidationError):
            CouponCreate(code="SPRING", discount_percent=discount)

    @pytest.mark.parametrize("discount", [1, 50, 100])
    def test_accepts_in_range_discount(self, discount):
        assert CouponCreate(code="SPRING", discount_percent=discount).discount_percent == discount

    def test_code_is_normalized(self):
        assert CouponCreate(code="  free100 ", discount_percent=100).code == "FREE100"

    def test_blank_code_rejected(self):
        with pytest.raises(ValidationError):
            CouponCreate(code="   ", discount_percent=10)

    def test_max_redemptions_must_be_positive(self):
        with pytest.raises(ValidationError):
            CouponCreate(code="ZERO", discount_percent=10, max_redemptions=0)


def test_normalize_coupon_code_handles_none():
    assert normalize_coupon_code(None) == ""


def test_ensure_utc_converts_offsets():
    plus_two = timezone(timedelta(hours=2))
    value = datetime(2025, 1, 1, 14, 0, tzinfo=plus_two)
    assert ensure_utc(value) == datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)
    assert ensure_utc(value).tzinfo == timezone.utc
