"""SQLAlchemy repository for the webhook event log"""
import uuid
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.dialect import insert_for
from app.db.models.webhook_event import WebhookEvent as WebhookEventORM
from app.features.donations.domain import WebhookEvent, WebhookEventCreate

REJECTED_EVENT_TYPE = "webhook.error"


class WebhookEventRepository:
    """Repository for webhook event log operations using SQLAlchemy"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def append(self, data: WebhookEventCreate) -> Tuple[WebhookEvent, bool]:
        """
        Append an event to the log.

        Keyed on provider_event_id: a redelivered event does not create a
        second row. Returns the stored row and whether this call inserted it.
        """
        values = data.model_dump(mode="json")
        values.update(id=str(uuid.uuid4()), received_at=datetime.now(timezone.utc), attempts=0)
        if data.processed:
            values["processed_at"] = values["received_at"]

        if data.provider_event_id is None:
            orm = WebhookEventORM(**values)
            self.db.add(orm)
            await self.db.flush()
            await self.db.refresh(orm)
            return WebhookEvent.model_validate(orm), True

        stmt = (
            insert_for(self.db, WebhookEventORM)
            .values(**values)
            .on_conflict_do_nothing(index_elements=[WebhookEventORM.provider_event_id])
            .returning(WebhookEventORM.id)
        )
        inserted_id = (await self.db.execute(stmt)).scalar_one_or_none()

        event = await self.find_by_provider_event_id(data.provider_event_id)
        return event, inserted_id is not None

    async def find_by_provider_event_id(self, provider_event_id: str) -> Optional[WebhookEvent]:
        """Find event by provider event ID (for idempotency checking)"""
        stmt = (
            select(WebhookEventORM)
            .where(WebhookEventORM.provider_event_id == provider_event_id)
            .execution_options(populate_existing=True)
        )
        orm = (await self.db.execute(stmt)).scalar_one_or_none()
        return WebhookEvent.model_validate(orm) if orm else None

    async def mark_processed(self, event_id: str, error: Optional[str] = None) -> None:
        """Close out an event. `error` records why it was closed without a ledger effect."""
        await self.db.execute(
            update(WebhookEventORM)
            .where(WebhookEventORM.id == event_id)
            .values(
                processed=True,
                processed_at=datetime.now(timezone.utc),
                error=error,
                attempts=WebhookEventORM.attempts + 1,
            )
        )

    async def record_failure(self, event_id: str, error: str) -> None:
        """Leave the event unprocessed for redelivery or the sweep, remembering why"""
        await self.db.execute(
            update(WebhookEventORM)
            .where(WebhookEventORM.id == event_id)
            .values(error=error, attempts=WebhookEventORM.attempts + 1)
        )

    async def list_unprocessed(self, source: Optional[str] = None, limit: int = 100) -> List[WebhookEvent]:
        """Verified events still waiting for processing, oldest first"""
        stmt = select(WebhookEventORM).where(
            WebhookEventORM.processed.is_(False),
            WebhookEventORM.provider_event_id.is_not(None),
            WebhookEventORM.event_type != REJECTED_EVENT_TYPE,
        )
        if source:
            stmt = stmt.where(WebhookEventORM.source == source)
        stmt = stmt.order_by(WebhookEventORM.received_at.asc(), WebhookEventORM.id.asc()).limit(limit)

        rows = (await self.db.execute(stmt.execution_options(populate_existing=True))).scalars().all()
        return [WebhookEvent.model_validate(row) for row in rows]

    async def delete_processed_older_than(self, days: int = 30) -> int:
        """Prune processed events; returns the number of rows removed"""
        cutoff = datetime.now(timezone.utc) - timedelta(days=days)
        result = await self.db.execute(
            delete(WebhookEventORM)
            .where(
                WebhookEventORM.processed.is_(True),
                WebhookEventORM.processed_at < cutoff,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0
