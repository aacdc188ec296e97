"""
Repository Layer for the Assist backend

Exports all repository classes for dependency injection.
"""

from assist.infrastructure.db.repositories.account_repository import AccountRepository
from assist.infrastructure.db.repositories.payment_repository import PaymentRepository
from assist.infrastructure.db.repositories.subscription_repository import (
    SubscriptionRepository,
    build_conditional_upsert,
)
from assist.infrastructure.db.repositories.webhook_event_repository import (
    WebhookEventRepository,
)


__all__ = [
    "AccountRepository",
    "PaymentRepository",
    "SubscriptionRepository",
    "WebhookEventRepository",
    "build_conditional_upsert",
]
