"""
Subscription Database Model

SQLModel table for subscription data persistence.
"""

from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from assist.infrastructure.db.models.base import timestamp_field


class SubscriptionModel(SQLModel, table=True):
    """
    Subscription table, one row per account.

    Maps to the 'subscriptions' table in PostgreSQL. ``updated_at`` holds the
    processor timestamp of the event that produced the row and is the
    ordering key for the anti-regression guard.
    """

    __tablename__ = "subscriptions"

    account_id: str = Field(primary_key=True, max_length=255)

    # Processor references
    external_customer_id: Optional[str] = Field(default=None, index=True, max_length=255)
    external_subscription_id: Optional[str] = Field(default=None, index=True, max_length=255)
    external_price_id: Optional[str] = Field(default=None, max_length=255)

    # Subscription details
    status: str = Field(max_length=32, index=True)
    tier: str = Field(default="free", max_length=32)

    # Billing period dates
    start_date: Optional[datetime] = timestamp_field()
    current_period_end: Optional[datetime] = timestamp_field()
    cancel_at_period_end: bool = Field(default=False)

    # Timestamps
    updated_at: datetime = timestamp_field(nullable=False)
    created_at: datetime = timestamp_field(nullable=False, default_now=True)
