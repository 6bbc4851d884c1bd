"""
Internal Job Routes

Endpoints an external scheduler calls. Protected by the cron secret.
"""

import logging

from fastapi import APIRouter, Depends

from entitlements.api.dependencies import verify_cron_secret
from entitlements.domain.subscription import SweepSummary
from entitlements.infrastructure.db.database import get_session_factory
from entitlements.infrastructure.notifications.email_service import get_email_service
from entitlements.infrastructure.notifications.user_directory import get_user_directory
from entitlements.infrastructure.services.expiration_sweeper import ExpirationSweeper


logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/internal",
    tags=["internal"],
    dependencies=[Depends(verify_cron_secret)],
)


def get_expiration_sweeper() -> ExpirationSweeper:
    return ExpirationSweeper(
        session_factory=get_session_factory(),
        notifier=get_email_service(),
        user_directory=get_user_directory(),
    )


@router.post("/subscriptions/expire", response_model=SweepSummary)
async def expire_subscriptions(
    sweeper: ExpirationSweeper = Depends(get_expiration_sweeper),
):
    """Run one expiration sweep and report what it did."""
    return await sweeper.run()
