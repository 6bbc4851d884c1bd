"""
Expire Subscriptions Script

Runs one expiration sweep: deactivates subscriptions whose period has
ended, re-fits the owners' horses to the free tier and emails them.
Meant for an external scheduler (cron, GitHub Actions) as an alternative
to POST /api/internal/subscriptions/expire.

Usage:
    cd backend
    python scripts/expire_subscriptions.py
"""

import asyncio
import logging
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from entitlements.config.settings import settings
from entitlements.infrastructure.db.database import close_db, get_session_factory
from entitlements.infrastructure.notifications.email_service import get_email_service
from entitlements.infrastructure.notifications.user_directory import get_user_directory
from entitlements.infrastructure.services.expiration_sweeper import ExpirationSweeper

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


async def main() -> int:
    sweeper = ExpirationSweeper(
        session_factory=get_session_factory(),
        notifier=get_email_service(),
        user_directory=get_user_directory(),
    )
    try:
        summary = await sweeper.run()
    finally:
        await close_db()

    logger.info(f"Sweep summary: {summary.model_dump()}")
    # Non-zero exit lets the scheduler flag partial failures
    return 1 if summary.failed else 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
