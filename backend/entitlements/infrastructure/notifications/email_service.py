"""
Email Notification Service

Transactional email through Resend. Without an API key the send is
simulated and logged so local runs and tests never hit the network.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Optional

import resend

from entitlements.config.settings import get_settings


logger = logging.getLogger(__name__)


class EmailService:
    """Sends transactional emails. Returns delivery success, never raises."""

    def __init__(self):
        settings = get_settings()
        self._api_key = settings.resend_api_key
        self._sender = settings.email_from
        self._timeout = settings.email_timeout_seconds
        self._pricing_url = f"{settings.frontend_url.rstrip('/')}/pricing"

    def _send_sync(self, params: Dict[str, Any]) -> None:
        """Blocking Resend call, run in a worker thread."""
        resend.api_key = self._api_key
        resend.Emails.send(params)

    async def send(self, to: str, subject: str, text: str, html: str) -> bool:
        if not self._api_key:
            logger.info(f"[EMAIL] No RESEND_API_KEY, simulating send to {to}: {subject}")
            return True

        params = {
            "from": self._sender,
            "to": [to],
            "subject": subject,
            "html": html,
            "text": text,
        }
        try:
            await asyncio.wait_for(
                asyncio.to_thread(self._send_sync, params),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"[EMAIL] Timed out sending to {to}")
            return False
        except Exception as e:
            # Resend raises its own errors for API failures and requests' for transport
            logger.warning(f"[EMAIL] Failed to send to {to}: {e}")
            return False

        logger.info(f"[EMAIL] Sent '{subject}' to {to}")
        return True

    async def send_subscription_expired(
        self,
        to: str,
        plan_name: Optional[str],
        ended_at: datetime,
    ) -> bool:
        plan = plan_name or "Your plan"
        ended = ended_at.strftime("%d %B %Y")

        text = (
            "Hi there,\n\n"
            f"Your {plan} subscription has expired as of {ended}.\n\n"
            "Your account access has been limited. To continue using all features, "
            f"please renew your subscription at {self._pricing_url}.\n\n"
            "Best regards,\n"
            "The Equine AI Intelligence Team"
        )
        html = (
            "<p>Hi there,</p>"
            f"<p>Your <strong>{plan}</strong> subscription has expired as of "
            f"<strong>{ended}</strong>.</p>"
            "<p>Your account access has been limited. Please renew your subscription "
            "to continue using all features.</p>"
            f'<p><a href="{self._pricing_url}">Renew Subscription</a></p>'
            "<p>Best regards,<br>The Equine AI Intelligence Team</p>"
        )
        return await self.send(to, "Your subscription has expired", text, html)


_email_service_instance: Optional[EmailService] = None


def get_email_service() -> EmailService:
    """Get or create email service singleton."""
    global _email_service_instance

    if _email_service_instance is None:
        _email_service_instance = EmailService()

    return _email_service_instance
