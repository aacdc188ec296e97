"""
SQLModel ORM Models for the Assist backend

Exports all database models for Alembic autogenerate and application use.
Import models here to register them with SQLModel.metadata.
"""

from assist.infrastructure.db.models.account import AccountModel
from assist.infrastructure.db.models.payment import PaymentModel
from assist.infrastructure.db.models.subscription import SubscriptionModel
from assist.infrastructure.db.models.webhook_event import ProcessedWebhookEvent


__all__ = [
    "AccountModel",
    "PaymentModel",
    "SubscriptionModel",
    "ProcessedWebhookEvent",
]
