"""
Event Router

Dispatches verified webhook events to per-kind handlers that normalize the
payload into SyncCommands for the SubscriptionSyncService.

Handlers are stateless and assume nothing about delivery order: the
processor may deliver events late, twice, or out of order, and the sync
service's anti-regression rule resolves the final state.
"""

import logging
from typing import Awaitable, Callable, Optional

from pydantic import ValidationError

from assist.domain.events import (
    CheckoutSessionObject,
    EventType,
    InboundEvent,
    InvoiceObject,
    SubscriptionObject,
    account_id_from_metadata,
)
from assist.domain.interfaces import SubscriptionStore
from assist.domain.result import Err, Ok, Result
from assist.domain.subscription import (
    CheckoutMode,
    PaymentRecord,
    SubscriptionStatus,
    SyncOutcome,
    from_unix,
)
from assist.infrastructure.exceptions import (
    AssistError,
    InvalidArgumentError,
    ProcessorRequestError,
    UnresolvedCorrelationError,
)
from assist.infrastructure.payments.stripe_service import StripeService
from assist.infrastructure.services.subscription_sync_service import SubscriptionSyncService
from assist.infrastructure.services.tier_resolver import TierResolver


logger = logging.getLogger(__name__)

Handler = Callable[[InboundEvent], Awaitable[Result[SyncOutcome]]]

# A failed invoice only changes stored state once the processor itself has
# moved the subscription into one of these.
DELINQUENT_STATUSES = frozenset({
    SubscriptionStatus.PAST_DUE,
    SubscriptionStatus.UNPAID,
})

# A paid invoice never reopens a subscription that has ended.
TERMINAL_STATUSES = frozenset({
    SubscriptionStatus.CANCELED,
    SubscriptionStatus.INCOMPLETE_EXPIRED,
})


class EventRouter:
    """Maps event kinds to handlers. Unknown kinds are a successful no-op."""

    def __init__(
        self,
        stripe_service: StripeService,
        sync_service: SubscriptionSyncService,
        subscriptions: SubscriptionStore,
        tier_resolver: Optional[TierResolver] = None,
    ):
        self._stripe = stripe_service
        self._sync = sync_service
        self._subscriptions = subscriptions
        self._tiers = tier_resolver or TierResolver(stripe_service)
        self._handlers: dict[EventType, Handler] = {
            EventType.CHECKOUT_COMPLETED: self._handle_checkout_completed,
            EventType.SUBSCRIPTION_CREATED: self._handle_subscription_changed,
            EventType.SUBSCRIPTION_UPDATED: self._handle_subscription_changed,
            EventType.SUBSCRIPTION_DELETED: self._handle_subscription_deleted,
            EventType.INVOICE_PAID: self._handle_invoice_paid,
            EventType.INVOICE_PAYMENT_FAILED: self._handle_invoice_payment_failed,
        }

    async def route(self, event: InboundEvent) -> Result[SyncOutcome]:
        kind = event.kind
        if kind is None:
            logger.info(f"Ignoring unhandled event type {event.type} ({event.id})")
            return Ok(SyncOutcome.IGNORED)

        logger.info(f"Routing {event.type} ({event.id})")
        try:
            return await self._handlers[kind](event)
        except ValidationError as e:
            logger.error(f"Malformed {event.type} payload in {event.id}: {e}")
            return Err(InvalidArgumentError(
                f"Malformed {event.type} payload",
                field="data.object",
                original_error=e,
            ))
        except UnresolvedCorrelationError as e:
            logger.error(f"Dropping {event.type} ({event.id}): {e.message}")
            return Err(e)
        except AssistError as e:
            logger.error(f"Failed to handle {event.type} ({event.id}): {e.message}")
            return Err(e)

    # =========================================================================
    # Handlers
    # =========================================================================

    async def _handle_checkout_completed(self, event: InboundEvent) -> Result[SyncOutcome]:
        session = CheckoutSessionObject.model_validate(event.payload)

        if session.mode != CheckoutMode.SUBSCRIPTION.value:
            return await self._record_one_time_checkout(event, session)

        if not session.subscription_id:
            logger.warning(f"Subscription checkout {session.id} has no subscription reference")
            return Ok(SyncOutcome.IGNORED)

        subscription = await self._stripe.retrieve_subscription(session.subscription_id)
        account_id = await self._correlate(
            event,
            session.account_id or subscription.account_id,
            session.customer_id or subscription.customer_id,
            subscription.id,
        )
        tier = await self._tiers.resolve_price(subscription.first_price)
        return await self._sync.sync(
            subscription.to_sync_command(account_id, tier, event.occurred_at)
        )

    async def _record_one_time_checkout(
        self,
        event: InboundEvent,
        session: CheckoutSessionObject,
    ) -> Result[SyncOutcome]:
        if session.payment_status != "paid":
            logger.info(
                f"One-time checkout {session.id} not paid yet "
                f"({session.payment_status}); waiting for a later event"
            )
            return Ok(SyncOutcome.IGNORED)

        account_id = await self._correlate(event, session.account_id, session.customer_id, None)
        return await self._sync.record_donation(
            account_id,
            session.amount_total or 0,
            event.occurred_at,
        )

    async def _handle_subscription_changed(self, event: InboundEvent) -> Result[SyncOutcome]:
        subscription = SubscriptionObject.model_validate(event.payload)
        account_id = await self._correlate(
            event,
            subscription.account_id,
            subscription.customer_id,
            subscription.id,
        )
        tier = await self._tiers.resolve_price(subscription.first_price)
        return await self._sync.sync(
            subscription.to_sync_command(account_id, tier, event.occurred_at)
        )

    async def _handle_subscription_deleted(self, event: InboundEvent) -> Result[SyncOutcome]:
        subscription = SubscriptionObject.model_validate(event.payload)
        account_id = await self._correlate(
            event,
            subscription.account_id,
            subscription.customer_id,
            subscription.id,
        )

        stored = await self._subscriptions.get_by_account_id(account_id)
        if stored is not None:
            tier = stored.tier
        else:
            tier = await self._tiers.resolve_price(subscription.first_price)

        return await self._sync.sync(
            subscription.to_sync_command(
                account_id,
                tier,
                event.occurred_at,
                status=SubscriptionStatus.CANCELED,
                cancel_at_period_end=True,
            )
        )

    async def _handle_invoice_paid(self, event: InboundEvent) -> Result[SyncOutcome]:
        invoice = InvoiceObject.model_validate(event.payload)
        subscription_id = invoice.subscription_id
        if not subscription_id:
            logger.info(f"Invoice {invoice.id} has no subscription; one-time payment, not synced")
            return Ok(SyncOutcome.IGNORED)

        account_id = await self._correlate(
            event,
            account_id_from_metadata(invoice.subscription_metadata)
            or account_id_from_metadata(invoice.metadata),
            invoice.customer_id,
            subscription_id,
        )

        recorded = await self._sync.record_payment(
            self._payment_record(invoice, account_id, subscription_id, event, succeeded=True)
        )
        if not recorded.is_ok:
            return recorded

        stored = await self._subscriptions.get_by_account_id(account_id)
        if stored is not None and stored.external_subscription_id == subscription_id:
            if stored.status == SubscriptionStatus.ACTIVE:
                logger.info(f"Account {account_id} already active; invoice {invoice.id} recorded only")
                return Ok(SyncOutcome.RECORDED)
            if stored.status in TERMINAL_STATUSES:
                logger.info(
                    f"Subscription {subscription_id} is {stored.status.value}; "
                    f"invoice {invoice.id} recorded only"
                )
                return Ok(SyncOutcome.RECORDED)

        subscription = await self._stripe.retrieve_subscription(subscription_id)
        status = SubscriptionStatus.from_processor(subscription.status)
        if status in TERMINAL_STATUSES:
            logger.info(
                f"Processor reports subscription {subscription_id} as {status.value}; "
                f"invoice {invoice.id} recorded only"
            )
            return Ok(SyncOutcome.RECORDED)

        tier = await self._tiers.resolve_price(subscription.first_price)
        return await self._sync.sync(
            subscription.to_sync_command(
                account_id,
                tier,
                event.occurred_at,
                status=SubscriptionStatus.ACTIVE,
            )
        )

    async def _handle_invoice_payment_failed(self, event: InboundEvent) -> Result[SyncOutcome]:
        invoice = InvoiceObject.model_validate(event.payload)
        subscription_id = invoice.subscription_id
        if not subscription_id:
            logger.info(f"Failed invoice {invoice.id} has no subscription; nothing to sync")
            return Ok(SyncOutcome.IGNORED)

        account_id = await self._correlate(
            event,
            account_id_from_metadata(invoice.subscription_metadata)
            or account_id_from_metadata(invoice.metadata),
            invoice.customer_id,
            subscription_id,
        )

        recorded = await self._sync.record_payment(
            self._payment_record(invoice, account_id, subscription_id, event, succeeded=False)
        )
        if not recorded.is_ok:
            return recorded

        subscription = await self._stripe.retrieve_subscription(subscription_id)
        status = SubscriptionStatus.from_processor(subscription.status)
        if status not in DELINQUENT_STATUSES:
            # Retries are still pending on the processor side
            logger.info(
                f"Payment failed for account {account_id} but subscription is "
                f"{status.value}; status left unchanged"
            )
            return Ok(SyncOutcome.RECORDED)

        tier = await self._tiers.resolve_price(subscription.first_price)
        return await self._sync.sync(
            subscription.to_sync_command(account_id, tier, event.occurred_at, status=status)
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _correlate(
        self,
        event: InboundEvent,
        account_id: Optional[str],
        customer_id: Optional[str],
        subscription_id: Optional[str],
    ) -> str:
        """
        Recover the internal account id for an event.

        Order: the object's own metadata (or checkout client_reference_id),
        then the customer's metadata, then the stored record for the
        subscription. Raises UnresolvedCorrelationError when all fail.
        """
        if account_id:
            return account_id

        if customer_id:
            try:
                customer = await self._stripe.retrieve_customer(customer_id)
            except ProcessorRequestError as e:
                logger.warning(f"Customer lookup for {customer_id} failed: {e.message}")
                customer = None
            if customer is not None and customer.account_id:
                return customer.account_id

        if subscription_id:
            stored = await self._subscriptions.get_by_external_subscription_id(subscription_id)
            if stored is not None:
                return stored.account_id

        raise UnresolvedCorrelationError(
            f"No account found for {event.type} ({event.id})",
            event_id=event.id,
            event_type=event.type,
        )

    @staticmethod
    def _payment_record(
        invoice: InvoiceObject,
        account_id: str,
        subscription_id: str,
        event: InboundEvent,
        *,
        succeeded: bool,
    ) -> PaymentRecord:
        return PaymentRecord(
            invoice_id=invoice.id,
            account_id=account_id,
            external_subscription_id=subscription_id,
            external_customer_id=invoice.customer_id,
            amount=invoice.amount_paid if succeeded else invoice.amount_due,
            currency=invoice.currency,
            status=invoice.status or ("paid" if succeeded else "open"),
            succeeded=succeeded,
            billing_reason=invoice.billing_reason,
            failure_reason=None if succeeded else invoice.failure_reason,
            next_payment_attempt=from_unix(invoice.next_payment_attempt),
            occurred_at=event.occurred_at,
        )
