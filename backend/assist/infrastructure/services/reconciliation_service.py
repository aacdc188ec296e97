"""
Subscription Reconciliation Service

Integrity check between stored subscription state and the processor.
Recovers from events that were dropped, failed past their retries, or never
arrived: the processor's current subscription is treated as the truth and
written through the normal sync protocol.
"""

import asyncio
import logging
from typing import Optional

from pydantic import BaseModel, Field

from assist.domain.interfaces import AccountStore, SubscriptionStore
from assist.domain.result import Err, Ok, Result
from assist.domain.subscription import (
    AccountAccessFlag,
    SubscriptionStatus,
    SyncOutcome,
    utcnow,
)
from assist.infrastructure.exceptions import AssistError, NotFoundError
from assist.infrastructure.payments.stripe_service import StripeService
from assist.infrastructure.services.subscription_sync_service import SubscriptionSyncService
from assist.infrastructure.services.tier_resolver import TierResolver


logger = logging.getLogger(__name__)

RECONCILED_STATUSES = (
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.TRIALING,
    SubscriptionStatus.PAST_DUE,
)


class IntegrityCheckResult(BaseModel):
    """What reconcile_account found and fixed for one account."""
    account_id: str
    stored_status: SubscriptionStatus
    processor_status: Optional[SubscriptionStatus] = None
    status_repaired: bool = False
    flag_repaired: bool = False
    outcome: Optional[SyncOutcome] = None

    @property
    def repaired(self) -> bool:
        return self.status_repaired or self.flag_repaired


class ReconciliationReport(BaseModel):
    checked: int = 0
    repaired: int = 0
    failed: list[str] = Field(default_factory=list)


class SubscriptionReconciler:

    def __init__(
        self,
        stripe_service: StripeService,
        sync_service: SubscriptionSyncService,
        subscriptions: SubscriptionStore,
        accounts: AccountStore,
        *,
        tier_resolver: Optional[TierResolver] = None,
        batch_size: int = 100,
    ):
        self._stripe = stripe_service
        self._sync = sync_service
        self._subscriptions = subscriptions
        self._accounts = accounts
        self._tiers = tier_resolver or TierResolver(stripe_service)
        self._batch_size = batch_size

    async def reconcile_account(self, account_id: str) -> Result[IntegrityCheckResult]:
        """
        Compare one account with the processor and repair drift.

        Status drift is rewritten from the processor snapshot; access-flag
        drift is always repaired from the stored record.
        """
        try:
            stored = await self._subscriptions.get_by_account_id(account_id)
            if stored is None:
                return Err(NotFoundError(
                    f"No subscription stored for account {account_id}",
                    operation="reconcile_account",
                    table="subscriptions",
                ))

            result = IntegrityCheckResult(account_id=account_id, stored_status=stored.status)

            if stored.external_subscription_id:
                # Taken before the fetch so a webhook written meanwhile stays newer
                observed_at = utcnow()
                subscription = await self._stripe.retrieve_subscription(
                    stored.external_subscription_id
                )
                result.processor_status = SubscriptionStatus.from_processor(subscription.status)

                if result.processor_status != stored.status:
                    logger.warning(
                        f"Status drift for account {account_id}: stored "
                        f"{stored.status.value}, processor {result.processor_status.value}"
                    )
                    tier = await self._tiers.resolve_price(subscription.first_price)
                    synced = await self._sync.sync(
                        subscription.to_sync_command(account_id, tier, observed_at)
                    )
                    if not synced.is_ok:
                        return synced
                    result.outcome = synced.value
                    result.status_repaired = synced.value == SyncOutcome.APPLIED
                    return Ok(result)

            flag = await self._accounts.get_access_flag(account_id)
            expected = AccountAccessFlag.from_record(stored)
            if flag is None or (
                flag.has_active_access,
                flag.status,
                flag.tier,
            ) != (expected.has_active_access, expected.status, expected.tier):
                logger.warning(f"Access flag drift for account {account_id}; recomputing")
                refreshed = await self._sync.refresh_access_flag(account_id)
                if not refreshed.is_ok:
                    return refreshed
                result.flag_repaired = True

            return Ok(result)
        except AssistError as e:
            logger.error(f"Reconciliation failed for account {account_id}: {e.message}")
            return Err(e)

    async def reconcile_all(self) -> ReconciliationReport:
        """Run the account check over every active, trialing or past-due record."""
        report = ReconciliationReport()
        after: Optional[str] = None

        while True:
            batch = await self._subscriptions.list_by_status(
                RECONCILED_STATUSES,
                after_account_id=after,
                limit=self._batch_size,
            )
            if not batch:
                break

            for record in batch:
                report.checked += 1
                outcome = await self.reconcile_account(record.account_id)
                if not outcome.is_ok:
                    report.failed.append(record.account_id)
                elif outcome.value.repaired:
                    report.repaired += 1

            after = batch[-1].account_id
            if len(batch) < self._batch_size:
                break

        logger.info(
            f"Reconciliation finished: {report.checked} checked, "
            f"{report.repaired} repaired, {len(report.failed)} failed"
        )
        return report


class ReconciliationSchedule:
    """
    Runs ``reconcile_all`` every ``interval`` seconds in the background.

    The first pass happens one interval after ``start``. Runs never overlap,
    and a failed pass is logged without stopping the schedule.
    """

    def __init__(self, reconciler: SubscriptionReconciler, interval: float):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._reconciler = reconciler
        self._interval = interval
        self._task: Optional[asyncio.Task] = None
        self.last_report: Optional[ReconciliationReport] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        logger.info(f"Scheduling reconciliation every {self._interval:g}s")
        self._task = asyncio.create_task(self._run(), name="reconcile-all")

    async def stop(self) -> None:
        """Cancel the schedule and wait for an in-flight pass to unwind."""
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                self.last_report = await self._reconciler.reconcile_all()
            except Exception as e:
                logger.error(f"Scheduled reconciliation failed: {e}")
