"""
Record Store Interfaces

Protocols the reconciliation engine depends on. The SQL repositories in
``assist.infrastructure.db.repositories`` implement them; tests substitute
in-memory fakes.
"""

from datetime import datetime
from typing import Optional, Protocol, Sequence

from assist.domain.subscription import (
    AccountAccessFlag,
    PaymentRecord,
    SubscriptionRecord,
    SubscriptionStatus,
)


class SubscriptionStore(Protocol):
    """The ``subscriptions`` collection, keyed by account id."""

    async def get_by_account_id(self, account_id: str) -> Optional[SubscriptionRecord]:
        ...

    async def get_by_external_subscription_id(
        self,
        external_subscription_id: str,
    ) -> Optional[SubscriptionRecord]:
        ...

    async def upsert_if_current(self, record: SubscriptionRecord) -> bool:
        """
        Atomically write ``record`` unless the stored row is newer.

        Returns True when the write was applied.
        """
        ...

    async def list_by_status(
        self,
        statuses: Sequence[SubscriptionStatus],
        *,
        after_account_id: Optional[str] = None,
        limit: int = 100,
    ) -> list[SubscriptionRecord]:
        ...


class AccountStore(Protocol):
    """Subscription-owned columns of the ``accounts`` collection."""

    async def get_access_flag(self, account_id: str) -> Optional[AccountAccessFlag]:
        ...

    async def upsert_access_flag(self, flag: AccountAccessFlag) -> AccountAccessFlag:
        ...

    async def record_donation(
        self,
        account_id: str,
        amount: int,
        occurred_at: datetime,
    ) -> None:
        ...


class PaymentStore(Protocol):
    """Invoice outcomes keyed by invoice id."""

    async def record(self, payment: PaymentRecord) -> PaymentRecord:
        ...

    async def list_for_account(self, account_id: str, limit: int = 20) -> list[PaymentRecord]:
        ...


class WebhookEventStore(Protocol):
    """Processed webhook event ids, for deduplication."""

    async def is_processed(self, event_id: str) -> bool:
        ...

    async def mark_processed(self, event_id: str, event_type: str) -> None:
        ...
