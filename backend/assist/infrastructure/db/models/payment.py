"""
Payment Database Model

One row per invoice outcome.
"""

from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from assist.infrastructure.db.models.base import timestamp_field


class PaymentModel(SQLModel, table=True):
    __tablename__ = "payments"

    invoice_id: str = Field(primary_key=True, max_length=255)
    account_id: str = Field(index=True, max_length=255)
    external_subscription_id: Optional[str] = Field(default=None, max_length=255)
    external_customer_id: Optional[str] = Field(default=None, max_length=255)

    amount: int = Field(default=0)
    currency: Optional[str] = Field(default=None, max_length=8)
    status: str = Field(max_length=32)
    succeeded: bool = Field(default=False)
    billing_reason: Optional[str] = Field(default=None, max_length=64)
    failure_reason: Optional[str] = Field(default=None)

    next_payment_attempt: Optional[datetime] = timestamp_field()
    occurred_at: datetime = timestamp_field(nullable=False, index=True)
