"""
Processed Webhook Event Model

Event ids the pipeline has finished with, for redelivery deduplication.
"""

from datetime import datetime

from sqlmodel import Field, SQLModel

from assist.infrastructure.db.models.base import timestamp_field


class ProcessedWebhookEvent(SQLModel, table=True):
    __tablename__ = "processed_webhook_events"

    event_id: str = Field(primary_key=True, max_length=255)
    event_type: str = Field(max_length=100)
    # Indexed for cleanup queries (delete events older than X days)
    processed_at: datetime = timestamp_field(nullable=False, index=True, default_now=True)
