"""
Stripe Payment Service

Infrastructure service for the external payment processor.
Handles hosted checkout sessions, subscription lookups and webhook
signature verification.

The stripe library is synchronous; every network call runs in a worker
thread under a timeout so a slow processor cannot pin a request.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Optional

import stripe
from stripe import SignatureVerificationError, StripeError

from entitlements.config.settings import get_settings
from entitlements.infrastructure.exceptions import (
    CheckoutCreationFailed,
    ConfigurationError,
    ExternalServiceError,
    SignatureInvalid,
)


logger = logging.getLogger(__name__)


class StripeService:
    """
    Stripe payment processing service.

    Stateless apart from configuration; safe to share as a singleton.
    """

    def __init__(self):
        settings = get_settings()
        self._api_key = settings.stripe_secret_key
        self._webhook_secret = settings.stripe_webhook_secret
        self._timeout = settings.stripe_timeout_seconds

        if self._api_key:
            stripe.api_key = self._api_key
        stripe.max_network_retries = settings.stripe_max_network_retries

    async def _call(self, fn: Callable[..., Any], **kwargs: Any) -> Any:
        """Run a blocking Stripe call off the event loop, bounded by a timeout."""
        if not self._api_key:
            raise ConfigurationError(
                "Stripe is not configured",
                missing_keys=["STRIPE_SECRET_KEY"],
            )
        return await asyncio.wait_for(
            asyncio.to_thread(fn, **kwargs),
            timeout=self._timeout,
        )

    # =========================================================================
    # Checkout Session (Subscription Flow)
    # =========================================================================

    async def create_checkout_session(
        self,
        *,
        user_id: str,
        plan_name: str,
        amount_minor: int,
        currency: str,
        interval: str,
        metadata: Dict[str, str],
        success_url: str,
        cancel_url: str,
        customer_email: Optional[str] = None,
    ) -> Any:
        """
        Create a hosted Checkout Session in subscription mode.

        The price is sent inline so discounted amounts never need a
        pre-created Stripe Price.

        Args:
            amount_minor: Recurring amount in minor units (pence/cents)
            interval: "month" or "year"
            metadata: Copied onto the session and onto the subscription

        Raises:
            CheckoutCreationFailed: Stripe error or timeout
        """
        params: Dict[str, Any] = {
            "mode": "subscription",
            "payment_method_types": ["card"],
            "line_items": [
                {
                    "price_data": {
                        "currency": currency,
                        "product_data": {
                            "name": f"{plan_name} Plan",
                            "description": f"{interval.capitalize()}ly subscription",
                        },
                        "unit_amount": amount_minor,
                        "recurring": {"interval": interval},
                    },
                    "quantity": 1,
                }
            ],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata,
            "subscription_data": {"metadata": metadata},
        }
        if customer_email:
            params["customer_email"] = customer_email

        try:
            session = await self._call(stripe.checkout.Session.create, **params)
        except asyncio.TimeoutError as e:
            logger.error(f"Stripe checkout timed out for user {user_id}")
            raise CheckoutCreationFailed(
                details={"reason": "timeout"},
                original_error=e,
            )
        except StripeError as e:
            logger.error(f"Failed to create checkout session for user {user_id}: {e}")
            raise CheckoutCreationFailed(
                details={"stripe_code": getattr(e, "code", None)},
                original_error=e,
            )

        logger.info(
            f"Created checkout session {session['id']} for user {user_id}, "
            f"amount={amount_minor} {currency}/{interval}"
        )
        return session

    # =========================================================================
    # Subscription Queries
    # =========================================================================

    async def retrieve_subscription(self, subscription_id: str) -> Any:
        """
        Retrieve a subscription by ID.

        Raises:
            ExternalServiceError: Stripe error or timeout (retryable)
        """
        try:
            return await self._call(stripe.Subscription.retrieve, id=subscription_id)
        except asyncio.TimeoutError as e:
            raise ExternalServiceError(
                f"Timed out retrieving subscription {subscription_id}",
                service="stripe",
                original_error=e,
            )
        except StripeError as e:
            logger.warning(f"Failed to retrieve subscription {subscription_id}: {e}")
            raise ExternalServiceError(
                f"Failed to retrieve subscription {subscription_id}",
                service="stripe",
                original_error=e,
            )

    # =========================================================================
    # Webhook Verification
    # =========================================================================

    def verify_webhook_signature(
        self,
        payload: bytes,
        signature: Optional[str],
    ) -> Any:
        """
        Verify webhook signature and construct event.

        Runs on the raw body before anything parses it.

        Raises:
            SignatureInvalid: missing header, missing secret or bad signature
        """
        if not signature:
            raise SignatureInvalid("Missing stripe-signature header")
        if not self._webhook_secret:
            raise SignatureInvalid("Webhook secret not configured")

        try:
            return stripe.Webhook.construct_event(
                payload,
                signature,
                self._webhook_secret,
            )
        except ValueError as e:
            raise SignatureInvalid("Invalid payload", original_error=e)
        except SignatureVerificationError as e:
            raise SignatureInvalid("Invalid signature", original_error=e)


# =============================================================================
# Singleton Instance (Dependency Injection Ready)
# =============================================================================

_stripe_service_instance: Optional[StripeService] = None


def get_stripe_service() -> StripeService:
    """Get or create Stripe service singleton."""
    global _stripe_service_instance

    if _stripe_service_instance is None:
        _stripe_service_instance = StripeService()

    return _stripe_service_instance
