"""
Integration tests for the API endpoints.

Tests the full request/response cycle against the test database, with
authentication stubbed and Stripe mocked.
"""

import hashlib
import hmac
import json
import time
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from entitlements.api.dependencies import get_current_user
from entitlements.api.routes.jobs import get_expiration_sweeper
from entitlements.infrastructure.db.dependencies import get_webhook_service
from entitlements.infrastructure.db.models import SubscriptionModel
from entitlements.infrastructure.db.repositories.subscription_repository import (
    SubscriptionRepository,
)
from entitlements.infrastructure.exceptions import ExternalServiceError, PersistenceError
from entitlements.infrastructure.payments.stripe_service import get_stripe_service
from entitlements.infrastructure.services.expiration_sweeper import ExpirationSweeper

from factories import seed_coupon, seed_horses, seed_subscription, stripe_event, stripe_subscription


WEBHOOK_SECRET = "whsec_test_entitlements"
ADMIN_HEADERS = {"X-Admin-Key": "test-admin-key"}
CRON_HEADERS = {"X-Cron-Secret": "test-cron-secret"}


def signed(event: dict, secret: str = WEBHOOK_SECRET):
    payload = json.dumps(event).encode()
    timestamp = int(time.time())
    digest = hmac.new(secret.encode(), f"{timestamp}.{payload.decode()}".encode(), hashlib.sha256)
    return payload, {
        "stripe-signature": f"t={timestamp},v1={digest.hexdigest()}",
        "content-type": "application/json",
    }


@pytest.fixture
def stripe_mocked(api, mock_stripe_service):
    api.dependency_overrides[get_stripe_service] = lambda: mock_stripe_service
    return mock_stripe_service


class TestHealthEndpoints:

    async def test_health_endpoint(self, async_client):
        response = await async_client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestPlansEndpoint:

    async def test_lists_plans_cheapest_first(self, async_client, plans):
        response = await async_client.get("/api/plans")

        assert response.status_code == 200
        data = response.json()
        assert [p["name"] for p in data] == ["Basic", "Pro", "Elite"]
        assert data[0]["max_slots"] == 1
        assert data[2]["max_slots"] == "unlimited"


class TestCheckoutEndpoint:

    async def test_returns_checkout_url(self, async_client, plans, stripe_mocked):
        response = await async_client.post(
            "/api/subscriptions/checkout",
            json={"plan_id": str(plans["Basic"].id), "billing_cycle": "monthly"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["checkout_url"] == "https://checkout.stripe.com/c/pay/cs_test_123"
        assert data["session_id"] == "cs_test_123"
        assert data["currency"] == "gbp"
        kwargs = stripe_mocked.create_checkout_session.call_args.kwargs
        assert kwargs["amount_minor"] == 999
        assert kwargs["customer_email"] == "rider@example.com"

    async def test_unknown_plan_is_404(self, async_client, plans, stripe_mocked):
        response = await async_client.post(
            "/api/subscriptions/checkout",
            json={"plan_id": str(uuid4()), "billing_cycle": "monthly"},
        )
        assert response.status_code == 404

    async def test_invalid_coupon_is_400_with_message(self, async_client, plans, stripe_mocked):
        response = await async_client.post(
            "/api/subscriptions/checkout",
            json={
                "plan_id": str(plans["Basic"].id),
                "billing_cycle": "monthly",
                "coupon_code": "NOPE",
            },
        )
        assert response.status_code == 400
        assert response.json()["message"] == "Invalid coupon code"
        stripe_mocked.create_checkout_session.assert_not_called()

    async def test_bad_billing_cycle_is_422(self, async_client, plans, stripe_mocked):
        response = await async_client.post(
            "/api/subscriptions/checkout",
            json={"plan_id": str(plans["Basic"].id), "billing_cycle": "weekly"},
        )
        assert response.status_code == 422


class TestFreeActivationEndpoint:

    async def test_activates_and_reports_status(self, async_client, session, plans):
        await seed_coupon(session, "FREE100", 100, max_redemptions=5)

        response = await async_client.post(
            "/api/subscriptions/activate-free",
            json={
                "plan_id": str(plans["Pro"].id),
                "billing_cycle": "monthly",
                "coupon_code": "free100",
            },
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["plan_name"] == "Pro"
        assert data["coupon_code"] == "FREE100"

        status = (await async_client.get("/api/subscriptions/status")).json()
        assert status["subscribed"] is True
        assert status["subscription"]["plan_name"] == "Pro"
        assert status["subscription"]["coupon_code"] == "FREE100"

    async def test_partial_coupon_is_400(self, async_client, session, plans):
        await seed_coupon(session, "HALF", 50)

        response = await async_client.post(
            "/api/subscriptions/activate-free",
            json={"plan_id": str(plans["Pro"].id), "billing_cycle": "monthly", "coupon_code": "HALF"},
        )

        assert response.status_code == 400
        assert response.json()["error"] == "CouponRequiresPayment"

    async def test_second_redemption_is_409(self, async_client, session, plans):
        await seed_coupon(session, "FREE100", 100)
        body = {"plan_id": str(plans["Pro"].id), "billing_cycle": "annual", "coupon_code": "FREE100"}

        first = await async_client.post("/api/subscriptions/activate-free", json=body)
        second = await async_client.post("/api/subscriptions/activate-free", json=body)

        assert first.status_code == 200
        assert second.status_code == 409
        count = await session.scalar(select(func.count()).select_from(SubscriptionModel))
        assert count == 1


class TestReadEndpoints:

    async def test_status_without_subscription(self, async_client, plans):
        response = await async_client.get("/api/subscriptions/status")
        assert response.status_code == 200
        assert response.json() == {"subscribed": False, "subscription": None}

    async def test_entitlement_for_free_tier(self, async_client, plans):
        response = await async_client.get("/api/entitlements/me")

        assert response.status_code == 200
        data = response.json()
        assert data["plan_name"] == "Free"
        assert data["max_slots"] == 0
        assert data["can_add_resource"] is False

    async def test_entitlement_with_plan(self, async_client, session, plans, user_id):
        await seed_subscription(
            session, user_id, plans["Pro"], datetime.now(timezone.utc) + timedelta(days=12)
        )
        await seed_horses(session, user_id, 2)

        data = (await async_client.get("/api/entitlements/me")).json()

        assert data["plan_name"] == "Pro"
        assert data["active_count"] == 2
        assert data["remaining_slots"] == 1
        assert data["can_add_resource"] is True

    async def test_requires_authentication(self, async_client, api, plans):
        del api.dependency_overrides[get_current_user]

        response = await async_client.get("/api/entitlements/me")

        assert response.status_code == 401


class TestCouponValidateEndpoint:

    async def test_valid_coupon(self, async_client, session, plans):
        await seed_coupon(session, "SPRING20", 20)

        response = await async_client.post("/api/coupons/validate", json={"coupon_code": " spring20 "})

        assert response.status_code == 200
        data = response.json()
        assert data["valid"] is True
        assert data["code"] == "SPRING20"
        assert data["discount_percent"] == 20

    async def test_unknown_coupon_is_not_an_http_error(self, async_client, plans):
        response = await async_client.post("/api/coupons/validate", json={"coupon_code": "NOPE"})

        assert response.status_code == 200
        assert response.json()["valid"] is False
        assert response.json()["error"] == "Invalid coupon code"


class TestStripeWebhookEndpoint:

    async def test_missing_signature_is_rejected(self, async_client, api):
        webhook_service = MagicMock()
        webhook_service.process = AsyncMock()
        api.dependency_overrides[get_webhook_service] = lambda: webhook_service

        response = await async_client.post("/api/webhooks/stripe", content=b"{}")

        assert response.status_code == 400
        webhook_service.process.assert_not_awaited()

    async def test_wrong_secret_is_rejected(self, async_client, session, plans, user_id):
        sub = stripe_subscription("sub_1", user_id, plans["Pro"])
        payload, headers = signed(
            stripe_event("evt_1", "customer.subscription.created", sub), secret="whsec_wrong"
        )

        response = await async_client.post("/api/webhooks/stripe", content=payload, headers=headers)

        assert response.status_code == 400
        assert await SubscriptionRepository(session).get_by_stripe_subscription_id("sub_1") is None

    async def test_signed_event_is_applied(self, async_client, session, plans, user_id):
        now = datetime.now(timezone.utc)
        sub = stripe_subscription(
            "sub_1", user_id, plans["Pro"],
            period_start=now - timedelta(days=1),
            period_end=now + timedelta(days=29),
        )
        payload, headers = signed(stripe_event("evt_1", "customer.subscription.created", sub))

        first = await async_client.post("/api/webhooks/stripe", content=payload, headers=headers)
        replay = await async_client.post("/api/webhooks/stripe", content=payload, headers=headers)

        assert first.status_code == 200
        assert first.json() == {"status": "success"}
        assert replay.json() == {"status": "already_processed"}

        row = await SubscriptionRepository(session).get_by_stripe_subscription_id("sub_1")
        assert row.user_id == user_id
        assert row.is_active is True

    @pytest.mark.parametrize(
        "error",
        [
            PersistenceError("database unavailable", operation="webhook"),
            ExternalServiceError("stripe unavailable", service="stripe"),
        ],
    )
    async def test_transient_failures_return_500(self, async_client, api, error):
        webhook_service = MagicMock()
        webhook_service.process = AsyncMock(side_effect=error)
        api.dependency_overrides[get_webhook_service] = lambda: webhook_service

        payload, headers = signed(stripe_event("evt_1", "invoice.payment_failed", {"id": "in_1"}))
        response = await async_client.post("/api/webhooks/stripe", content=payload, headers=headers)

        assert response.status_code == 500


class TestAdminCouponEndpoints:

    async def test_create_and_list(self, async_client, plans):
        response = await async_client.post(
            "/api/admin/coupons",
            json={"code": " launch50 ", "discount_percent": 50, "max_redemptions": 10},
            headers=ADMIN_HEADERS,
        )

        assert response.status_code == 201
        created = response.json()
        assert created["code"] == "LAUNCH50"
        assert created["redemptions"] == 0

        listed = (await async_client.get("/api/admin/coupons", headers=ADMIN_HEADERS)).json()
        assert [c["code"] for c in listed] == ["LAUNCH50"]
        assert listed[0]["max_redemptions"] == 10

    async def test_list_counts_redemptions(self, async_client, session, plans):
        await seed_coupon(session, "FREE100", 100)
        await async_client.post(
            "/api/subscriptions/activate-free",
            json={"plan_id": str(plans["Basic"].id), "billing_cycle": "monthly", "coupon_code": "FREE100"},
        )

        listed = (await async_client.get("/api/admin/coupons", headers=ADMIN_HEADERS)).json()

        assert listed[0]["redemptions"] == 1

    @pytest.mark.parametrize("discount", [0, 101])
    async def test_discount_out_of_range_is_422(self, async_client, discount):
        response = await async_client.post(
            "/api/admin/coupons",
            json={"code": "BAD", "discount_percent": discount},
            headers=ADMIN_HEADERS,
        )
        assert response.status_code == 422

    async def test_duplicate_code_is_409(self, async_client, session):
        await seed_coupon(session, "TAKEN", 10)

        response = await async_client.post(
            "/api/admin/coupons",
            json={"code": "taken", "discount_percent": 10},
            headers=ADMIN_HEADERS,
        )
        assert response.status_code == 409

    async def test_wrong_admin_key_is_403(self, async_client):
        response = await async_client.post(
            "/api/admin/coupons",
            json={"code": "NOPE", "discount_percent": 10},
            headers={"X-Admin-Key": "wrong"},
        )
        assert response.status_code == 403


class TestExpirationJobEndpoint:

    @pytest.fixture
    def sweeper_override(self, api, session_factory, mock_notifier, mock_user_directory):
        api.dependency_overrides[get_expiration_sweeper] = lambda: ExpirationSweeper(
            session_factory, mock_notifier, mock_user_directory
        )

    async def test_runs_sweep(self, async_client, session, plans, sweeper_override):
        await seed_subscription(
            session, uuid4(), plans["Pro"], datetime.now(timezone.utc) - timedelta(hours=1)
        )

        response = await async_client.post("/api/internal/subscriptions/expire", headers=CRON_HEADERS)

        assert response.status_code == 200
        data = response.json()
        assert data["found"] == 1
        assert data["expired"] == 1
        assert data["emails_sent"] == 1

    async def test_requires_cron_secret(self, async_client, sweeper_override):
        missing = await async_client.post("/api/internal/subscriptions/expire")
        wrong = await async_client.post(
            "/api/internal/subscriptions/expire", headers={"X-Cron-Secret": "nope"}
        )

        assert missing.status_code == 422
        assert wrong.status_code == 403
