"""
Subscription Sync Service

The only writer of SubscriptionRecord and AccountAccessFlag.

Write protocol for a normalized SyncCommand:
1. Read the stored record (may be missing).
2. If the stored record is newer, discard the write (stale) but still
   re-derive the access flag from what is stored.
3. Otherwise conditionally upsert the record, stamped with the event time.
4. Upsert the access flag derived from the written record.

The record and the flag live in different tables and are not written in one
transaction. Every sync recomputes the flag from the record, so a crash
between steps 3 and 4 heals on the next event for the account.
"""

import asyncio
import logging
import weakref
from datetime import datetime

from assist.domain.interfaces import AccountStore, PaymentStore, SubscriptionStore
from assist.domain.result import Err, Ok, Result
from assist.domain.subscription import (
    AccountAccessFlag,
    PaymentRecord,
    SubscriptionRecord,
    SyncCommand,
    SyncOutcome,
    is_stale_write,
)
from assist.infrastructure.exceptions import DatabaseError
from assist.infrastructure.retry import retry_with_backoff


logger = logging.getLogger(__name__)


class SubscriptionSyncService:
    """
    Applies subscription state changes with anti-regression and self-healing.

    Writes for the same account are serialized in-process; the conditional
    upsert in the store covers concurrent writers in other processes.
    """

    def __init__(
        self,
        subscriptions: SubscriptionStore,
        accounts: AccountStore,
        payments: PaymentStore,
        *,
        write_attempts: int = 3,
        retry_base_delay: float = 1.0,
        retry_max_delay: float = 10.0,
    ):
        self._subscriptions = subscriptions
        self._accounts = accounts
        self._payments = payments
        self._write_attempts = write_attempts
        self._base_delay = retry_base_delay
        self._max_delay = retry_max_delay
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, account_id: str) -> asyncio.Lock:
        lock = self._locks.get(account_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[account_id] = lock
        return lock

    # =========================================================================
    # Subscription Writes
    # =========================================================================

    async def sync(self, command: SyncCommand) -> Result[SyncOutcome]:
        """Run the write protocol for one command."""
        incoming = command.to_record()

        async with self._lock_for(command.account_id):
            try:
                outcome = await retry_with_backoff(
                    lambda: self._apply(incoming),
                    f"Sync subscription for account {command.account_id}",
                    attempts=self._write_attempts,
                    base_delay=self._base_delay,
                    max_delay=self._max_delay,
                    retry_on=(DatabaseError,),
                )
            except DatabaseError as e:
                return Err(e)

        return Ok(outcome)

    async def _apply(self, incoming: SubscriptionRecord) -> SyncOutcome:
        stored = await self._subscriptions.get_by_account_id(incoming.account_id)

        if stored is not None and is_stale_write(stored, incoming):
            logger.info(
                f"Stale write for account {incoming.account_id}: stored "
                f"{stored.status.value}@{stored.updated_at.isoformat()} supersedes "
                f"{incoming.status.value}@{incoming.updated_at.isoformat()}"
            )
            await self._accounts.upsert_access_flag(AccountAccessFlag.from_record(stored))
            return SyncOutcome.STALE

        applied = await self._subscriptions.upsert_if_current(incoming)
        if not applied:
            # Another writer got in between the read and the upsert
            current = await self._subscriptions.get_by_account_id(incoming.account_id)
            logger.info(f"Concurrent newer write won for account {incoming.account_id}")
            if current is not None:
                await self._accounts.upsert_access_flag(AccountAccessFlag.from_record(current))
            return SyncOutcome.STALE

        flag = AccountAccessFlag.from_record(incoming)
        await self._accounts.upsert_access_flag(flag)
        logger.info(
            f"Synced account {incoming.account_id}: {incoming.status.value}/"
            f"{incoming.tier.value} (access={flag.has_active_access})"
        )
        return SyncOutcome.APPLIED

    async def refresh_access_flag(self, account_id: str) -> Result[AccountAccessFlag]:
        """Recompute the access flag from the stored record alone."""
        async with self._lock_for(account_id):
            try:
                stored = await self._subscriptions.get_by_account_id(account_id)
                flag = (
                    AccountAccessFlag.from_record(stored)
                    if stored is not None
                    else AccountAccessFlag(account_id=account_id)
                )
                await self._accounts.upsert_access_flag(flag)
            except DatabaseError as e:
                return Err(e)

        logger.info(f"Refreshed access flag for account {account_id}: {flag.has_active_access}")
        return Ok(flag)

    # =========================================================================
    # Payments and Donations
    # =========================================================================

    async def record_donation(
        self,
        account_id: str,
        amount: int,
        occurred_at: datetime,
    ) -> Result[SyncOutcome]:
        """Mark a one-time payment on the account. Subscription state is untouched."""
        try:
            await self._accounts.record_donation(account_id, amount, occurred_at)
        except DatabaseError as e:
            return Err(e)
        return Ok(SyncOutcome.RECORDED)

    async def record_payment(self, payment: PaymentRecord) -> Result[SyncOutcome]:
        try:
            await self._payments.record(payment)
        except DatabaseError as e:
            return Err(e)
        return Ok(SyncOutcome.RECORDED)
