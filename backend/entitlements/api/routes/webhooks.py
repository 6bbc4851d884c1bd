"""
Stripe Webhook Handler

Verifies the signature on the raw body before anything parses it, then
hands the event to the reconciliation service.

Response codes drive Stripe's retry behaviour:
- 400: bad signature, never retried
- 500: transient failure, Stripe redelivers
- 200: applied, ignored or already processed
"""

import logging

from fastapi import APIRouter, Request

from entitlements.api.dependencies import StripeDep, WebhookServiceDep
from entitlements.infrastructure.exceptions import SignatureInvalid


logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/webhooks/stripe")
async def stripe_webhook(
    request: Request,
    stripe_service: StripeDep,
    webhook_service: WebhookServiceDep,
):
    payload = await request.body()
    signature = request.headers.get("stripe-signature")

    try:
        event = stripe_service.verify_webhook_signature(payload, signature)
    except SignatureInvalid as e:
        client_host = request.client.host if request.client else "unknown"
        logger.warning(f"[SECURITY] Rejected webhook from {client_host}: {e.message}")
        raise

    return await webhook_service.process(event)
