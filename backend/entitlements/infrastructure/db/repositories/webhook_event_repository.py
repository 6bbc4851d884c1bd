"""
Webhook Event Repository

Ledger of Stripe event ids that were fully applied.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from entitlements.domain.subscription import utcnow
from entitlements.infrastructure.db.models.webhook_event import ProcessedWebhookEvent
from entitlements.infrastructure.db.repositories.base_repository import BaseRepository


class WebhookEventRepository(BaseRepository[ProcessedWebhookEvent]):

    def __init__(self, session: AsyncSession):
        super().__init__(ProcessedWebhookEvent, session)

    async def is_processed(self, event_id: str) -> bool:
        stmt = select(ProcessedWebhookEvent.event_id).where(
            ProcessedWebhookEvent.event_id == event_id
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def mark_processed(self, event_id: str, event_type: str) -> None:
        """Record an event id; a concurrent duplicate is a no-op."""
        stmt = self.insert().values(
            event_id=event_id,
            event_type=event_type,
            processed_at=utcnow(),
        )
        stmt = stmt.on_conflict_do_nothing(index_elements=["event_id"])
        await self._session.execute(stmt)
