"""
Webhook Event Repository

DB-backed processed event tracking for webhook idempotency.
"""

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError

from assist.infrastructure.db.database import DatabaseManager
from assist.infrastructure.db.models.webhook_event import ProcessedWebhookEvent
from assist.infrastructure.exceptions import DatabaseError, PersistenceError


class WebhookEventRepository:
    """Implements the WebhookEventStore protocol."""

    def __init__(self, db: DatabaseManager):
        self._db = db

    async def is_processed(self, event_id: str) -> bool:
        """Check if a webhook event has already been processed."""
        statement = select(ProcessedWebhookEvent.event_id).where(
            ProcessedWebhookEvent.event_id == event_id
        )
        try:
            async with self._db.session() as session:
                result = await session.execute(statement)
                return result.first() is not None
        except SQLAlchemyError as e:
            raise DatabaseError(
                f"Failed to look up webhook event {event_id}: {e}",
                operation="is_processed",
                table="processed_webhook_events",
                original_error=e,
            ) from e

    async def mark_processed(self, event_id: str, event_type: str) -> None:
        """Record a processed webhook event. Marking twice is a no-op."""
        stmt = (
            pg_insert(ProcessedWebhookEvent)
            .values(event_id=event_id, event_type=event_type)
            .on_conflict_do_nothing(index_elements=["event_id"])
        )
        try:
            async with self._db.session() as session:
                await session.execute(stmt)
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"Failed to mark webhook event {event_id}: {e}",
                operation="mark_processed",
                table="processed_webhook_events",
                original_error=e,
            ) from e
