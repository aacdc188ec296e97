"""
Service Container

Explicit construction of the reconciliation engine. The application
lifespan and the maintenance scripts build one container per process; tests
build one over in-memory stores.
"""

from dataclasses import dataclass
from typing import Optional

import stripe

from assist.config.settings import Settings
from assist.domain.interfaces import (
    AccountStore,
    PaymentStore,
    SubscriptionStore,
    WebhookEventStore,
)
from assist.infrastructure.db.database import DatabaseManager
from assist.infrastructure.db.repositories import (
    AccountRepository,
    PaymentRepository,
    SubscriptionRepository,
    WebhookEventRepository,
)
from assist.infrastructure.payments import (
    CheckoutSessionFactory,
    EventVerifier,
    StripeService,
)
from assist.infrastructure.services.access_gate import AccessGate
from assist.infrastructure.services.event_router import EventRouter
from assist.infrastructure.services.reconciliation_service import SubscriptionReconciler
from assist.infrastructure.services.subscription_sync_service import SubscriptionSyncService
from assist.infrastructure.services.tier_resolver import TierResolver
from assist.infrastructure.services.webhook_pipeline import WebhookPipeline


@dataclass
class ServiceContainer:
    settings: Settings
    stripe_service: StripeService
    checkout: CheckoutSessionFactory
    verifier: EventVerifier
    sync_service: SubscriptionSyncService
    router: EventRouter
    pipeline: WebhookPipeline
    access_gate: AccessGate
    reconciler: SubscriptionReconciler
    payments: PaymentStore
    db: Optional[DatabaseManager] = None

    async def close(self) -> None:
        if self.db is not None:
            await self.db.close()


def build_container(
    settings: Settings,
    *,
    db: Optional[DatabaseManager] = None,
    stripe_client: Optional[stripe.StripeClient] = None,
    stripe_service: Optional[StripeService] = None,
    subscriptions: Optional[SubscriptionStore] = None,
    accounts: Optional[AccountStore] = None,
    payments: Optional[PaymentStore] = None,
    webhook_events: Optional[WebhookEventStore] = None,
) -> ServiceContainer:
    """
    Wire every component from settings.

    Stores default to the SQL repositories over ``db``; pass explicit stores
    to run without a database.
    """
    stores = (subscriptions, accounts, payments, webhook_events)
    if db is None and any(store is None for store in stores):
        db = DatabaseManager(settings)

    if subscriptions is None:
        subscriptions = SubscriptionRepository(db)
    if accounts is None:
        accounts = AccountRepository(db)
    if payments is None:
        payments = PaymentRepository(db)
    if webhook_events is None:
        webhook_events = WebhookEventRepository(db)
    if stripe_service is None:
        stripe_service = StripeService.from_settings(settings, stripe_client)
    tier_resolver = TierResolver(stripe_service)

    sync_service = SubscriptionSyncService(
        subscriptions,
        accounts,
        payments,
        write_attempts=settings.sync_write_attempts,
        retry_base_delay=settings.retry_base_delay,
        retry_max_delay=settings.retry_max_delay,
    )
    router = EventRouter(stripe_service, sync_service, subscriptions, tier_resolver)

    return ServiceContainer(
        settings=settings,
        stripe_service=stripe_service,
        checkout=CheckoutSessionFactory(stripe_service, settings),
        verifier=EventVerifier(
            settings.stripe_webhook_secret,
            tolerance_seconds=settings.webhook_tolerance_seconds,
            max_payload_bytes=settings.webhook_max_payload_bytes,
        ),
        sync_service=sync_service,
        router=router,
        pipeline=WebhookPipeline(router, webhook_events),
        access_gate=AccessGate(accounts, poll_interval=settings.access_poll_interval_seconds),
        reconciler=SubscriptionReconciler(
            stripe_service,
            sync_service,
            subscriptions,
            accounts,
            tier_resolver=tier_resolver,
            batch_size=settings.reconcile_batch_size,
        ),
        payments=payments,
        db=db,
    )
