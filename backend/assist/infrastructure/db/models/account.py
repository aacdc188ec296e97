"""
Account Database Model

Only the subscription-owned columns of the 'accounts' table are mapped here;
profile data lives elsewhere.
"""

from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from assist.infrastructure.db.models.base import timestamp_field


class AccountModel(SQLModel, table=True):
    """Denormalized access flag and donation markers per account."""

    __tablename__ = "accounts"

    account_id: str = Field(primary_key=True, max_length=255)

    # Access flag, recomputed from 'subscriptions' on every sync
    has_active_access: bool = Field(default=False)
    subscription_status: Optional[str] = Field(default=None, max_length=32)
    subscription_tier: str = Field(default="free", max_length=32)
    access_updated_at: Optional[datetime] = timestamp_field()

    # One-time donations
    has_donated: bool = Field(default=False)
    last_donation_amount: Optional[int] = Field(default=None)
    last_donation_at: Optional[datetime] = timestamp_field()

    created_at: datetime = timestamp_field(nullable=False, default_now=True)
