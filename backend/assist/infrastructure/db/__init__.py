"""
Database Infrastructure Package for the Assist backend

Exports the database manager and the record store repositories.
"""

from assist.infrastructure.db.database import DatabaseManager, normalize_database_url
from assist.infrastructure.db.repositories import (
    AccountRepository,
    PaymentRepository,
    SubscriptionRepository,
    WebhookEventRepository,
)


__all__ = [
    "DatabaseManager",
    "normalize_database_url",
    "AccountRepository",
    "PaymentRepository",
    "SubscriptionRepository",
    "WebhookEventRepository",
]
