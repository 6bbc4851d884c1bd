"""
Unit tests for the Stripe service wrapper.

Webhook verification runs against real stripe signatures; network calls
are patched out.
"""

import asyncio
import hashlib
import hmac
import json
import time
from unittest.mock import MagicMock, patch

import pytest
import stripe

from entitlements.infrastructure.exceptions import (
    CheckoutCreationFailed,
    ConfigurationError,
    ExternalServiceError,
    SignatureInvalid,
)
from entitlements.infrastructure.payments.stripe_service import StripeService


WEBHOOK_SECRET = "whsec_test_entitlements"


def sign(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload.decode()}".encode()
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


@pytest.fixture
def service() -> StripeService:
    return StripeService()


CHECKOUT_KWARGS = dict(
    user_id="user-1",
    plan_name="Pro",
    amount_minor=1699,
    currency="gbp",
    interval="month",
    metadata={"user_id": "user-1", "plan_id": "plan-1", "billing_cycle": "monthly"},
    success_url="http://localhost:5173/pricing?success=true",
    cancel_url="http://localhost:5173/pricing?canceled=true",
)


class TestWebhookVerification:

    PAYLOAD = json.dumps({
        "id": "evt_test_1",
        "object": "event",
        "type": "customer.subscription.deleted",
        "data": {"object": {"id": "sub_123"}},
    }).encode()

    def test_valid_signature_returns_event(self, service):
        event = service.verify_webhook_signature(self.PAYLOAD, sign(self.PAYLOAD))
        assert event["id"] == "evt_test_1"
        assert event["type"] == "customer.subscription.deleted"

    def test_missing_header(self, service):
        with pytest.raises(SignatureInvalid, match="Missing"):
            service.verify_webhook_signature(self.PAYLOAD, None)

    def test_wrong_secret(self, service):
        header = sign(self.PAYLOAD, secret="whsec_attacker")
        with pytest.raises(SignatureInvalid, match="Invalid signature"):
            service.verify_webhook_signature(self.PAYLOAD, header)

    def test_tampered_body(self, service):
        header = sign(self.PAYLOAD)
        tampered = self.PAYLOAD.replace(b"sub_123", b"sub_999")
        with pytest.raises(SignatureInvalid):
            service.verify_webhook_signature(tampered, header)

    def test_stale_timestamp(self, service):
        header = sign(self.PAYLOAD, timestamp=int(time.time()) - 3600)
        with pytest.raises(SignatureInvalid):
            service.verify_webhook_signature(self.PAYLOAD, header)

    def test_missing_secret(self, service):
        service._webhook_secret = None
        with pytest.raises(SignatureInvalid, match="not configured"):
            service.verify_webhook_signature(self.PAYLOAD, sign(self.PAYLOAD))


class TestCheckoutSession:

    async def test_sends_inline_price_and_metadata(self, service):
        created = {"id": "cs_test_1", "url": "https://checkout.stripe.com/cs_test_1"}
        with patch.object(stripe.checkout.Session, "create", return_value=created) as create:
            session = await service.create_checkout_session(
                **CHECKOUT_KWARGS, customer_email="rider@example.com"
            )

        assert session == created
        params = create.call_args.kwargs
        assert params["mode"] == "subscription"
        price_data = params["line_items"][0]["price_data"]
        assert price_data["unit_amount"] == 1699
        assert price_data["currency"] == "gbp"
        assert price_data["recurring"] == {"interval": "month"}
        assert params["metadata"] == CHECKOUT_KWARGS["metadata"]
        assert params["subscription_data"] == {"metadata": CHECKOUT_KWARGS["metadata"]}
        assert params["customer_email"] == "rider@example.com"

    async def test_stripe_error_becomes_checkout_failure(self, service):
        error = stripe.APIConnectionError("network down")
        with patch.object(stripe.checkout.Session, "create", side_effect=error):
            with pytest.raises(CheckoutCreationFailed) as exc_info:
                await service.create_checkout_session(**CHECKOUT_KWARGS)

        assert exc_info.value.retryable is True
        assert exc_info.value.details["service"] == "stripe"

    async def test_timeout_becomes_checkout_failure(self, service):
        service._timeout = 0.05

        def slow_create(**kwargs):
            time.sleep(0.5)
            return {"id": "late", "url": "late"}

        with patch.object(stripe.checkout.Session, "create", side_effect=slow_create):
            with pytest.raises(CheckoutCreationFailed) as exc_info:
                await service.create_checkout_session(**CHECKOUT_KWARGS)

        assert exc_info.value.details["reason"] == "timeout"
        assert isinstance(exc_info.value.original_error, asyncio.TimeoutError)

    async def test_missing_api_key(self, service):
        service._api_key = None
        with pytest.raises(ConfigurationError):
            await service.create_checkout_session(**CHECKOUT_KWARGS)


class TestRetrieveSubscription:

    async def test_returns_subscription(self, service):
        sub = MagicMock()
        with patch.object(stripe.Subscription, "retrieve", return_value=sub) as retrieve:
            assert await service.retrieve_subscription("sub_123") is sub
        retrieve.assert_called_once_with(id="sub_123")

    async def test_error_is_retryable_external_failure(self, service):
        error = stripe.APIError("server error")
        with patch.object(stripe.Subscription, "retrieve", side_effect=error):
            with pytest.raises(ExternalServiceError) as exc_info:
                await service.retrieve_subscription("sub_123")
        assert exc_info.value.retryable is True
