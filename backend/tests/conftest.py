"""
Test configuration and fixtures for the Assist backend.

Provides in-memory record stores, a fake processor adapter, webhook signing
and JWT helpers shared by unit and integration tests.
"""

import hashlib
import hmac
import json
import os
import time
from datetime import datetime, timezone
from typing import Optional

# Required secrets must exist before assist.main is imported
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["JWT_SECRET"] = "test-jwt-secret-with-enough-length-for-hs256"
os.environ["RETRY_BASE_DELAY"] = "0"
os.environ["RETRY_MAX_DELAY"] = "0"

import jwt
import pytest
from fastapi.testclient import TestClient

from assist.config.settings import Settings, load_settings
from assist.domain.events import (
    CheckoutSessionObject,
    CustomerObject,
    InboundEvent,
    ProductObject,
    SubscriptionObject,
)
from assist.domain.subscription import (
    AccountAccessFlag,
    PaymentRecord,
    SubscriptionRecord,
    is_stale_write,
)
from assist.infrastructure.container import ServiceContainer, build_container
from assist.infrastructure.exceptions import (
    DatabaseError,
    PersistenceError,
    ProcessorRequestError,
)


WEBHOOK_SECRET = "whsec_test_secret"
JWT_SECRET = "test-jwt-secret-with-enough-length-for-hs256"
BASE_TS = 1_760_000_000


# =============================================================================
# In-memory Record Stores
# =============================================================================

class InMemorySubscriptionStore:
    """SubscriptionStore with the same anti-regression rule as the SQL upsert."""

    def __init__(self):
        self.records: dict[str, SubscriptionRecord] = {}
        self.fail_next_writes = 0
        self.fail_reads = False
        self.write_count = 0

    async def get_by_account_id(self, account_id):
        if self.fail_reads:
            raise DatabaseError("read failed", operation="get_by_account_id")
        return self.records.get(account_id)

    async def get_by_external_subscription_id(self, external_subscription_id):
        for record in self.records.values():
            if record.external_subscription_id == external_subscription_id:
                return record
        return None

    async def upsert_if_current(self, record):
        if self.fail_next_writes:
            self.fail_next_writes -= 1
            raise PersistenceError("write failed", operation="upsert_if_current")
        stored = self.records.get(record.account_id)
        if stored is not None and is_stale_write(stored, record):
            return False
        self.records[record.account_id] = record
        self.write_count += 1
        return True

    async def list_by_status(self, statuses, *, after_account_id=None, limit=100):
        matching = sorted(
            (r for r in self.records.values() if r.status in statuses),
            key=lambda r: r.account_id,
        )
        if after_account_id is not None:
            matching = [r for r in matching if r.account_id > after_account_id]
        return matching[:limit]


class InMemoryAccountStore:

    def __init__(self):
        self.flags: dict[str, AccountAccessFlag] = {}
        self.donations: dict[str, tuple[int, datetime]] = {}
        self.fail_next_flag_writes = 0
        self.fail_reads = False

    async def get_access_flag(self, account_id):
        if self.fail_reads:
            raise DatabaseError("read failed", operation="get_access_flag")
        return self.flags.get(account_id)

    async def upsert_access_flag(self, flag):
        if self.fail_next_flag_writes:
            self.fail_next_flag_writes -= 1
            raise PersistenceError("flag write failed", operation="upsert_access_flag")
        self.flags[flag.account_id] = flag
        return flag

    async def record_donation(self, account_id, amount, occurred_at):
        self.donations[account_id] = (amount, occurred_at)


class InMemoryPaymentStore:

    def __init__(self):
        self.payments: dict[str, PaymentRecord] = {}

    async def record(self, payment):
        self.payments[payment.invoice_id] = payment
        return payment

    async def list_for_account(self, account_id, limit=20):
        rows = [p for p in self.payments.values() if p.account_id == account_id]
        rows.sort(key=lambda p: p.occurred_at, reverse=True)
        return rows[:limit]


class InMemoryWebhookEventStore:

    def __init__(self):
        self.processed: dict[str, str] = {}
        self.fail_lookups = False

    async def is_processed(self, event_id):
        if self.fail_lookups:
            raise DatabaseError("lookup failed", operation="is_processed")
        return event_id in self.processed

    async def mark_processed(self, event_id, event_type):
        self.processed[event_id] = event_type


# =============================================================================
# Fake Processor Adapter
# =============================================================================

class FakeStripeService:
    """
    Stands in for StripeService. Objects are registered as plain dicts;
    ``errors`` maps a method name to the exception it should raise.
    """

    def __init__(self):
        self.subscriptions: dict[str, dict] = {}
        self.products: dict[str, dict] = {}
        self.customers: dict[str, dict] = {}
        self.sessions: dict[str, dict] = {}
        self.created_sessions: list[dict] = []
        self.errors: dict[str, Exception] = {}
        self.calls: list[tuple[str, str]] = []

    def _check(self, method: str, ref: str = "") -> None:
        self.calls.append((method, ref))
        if method in self.errors:
            raise self.errors[method]

    async def create_checkout_session(self, params, *, timeout):
        self._check("create_checkout_session")
        self.created_sessions.append(params)
        session_id = f"cs_test_{len(self.created_sessions)}"
        return CheckoutSessionObject(
            id=session_id,
            url=f"https://checkout.stripe.test/{session_id}",
            mode=params["mode"],
        )

    async def retrieve_checkout_session(self, session_id):
        self._check("retrieve_checkout_session", session_id)
        if session_id not in self.sessions:
            raise ProcessorRequestError(f"No such checkout session: {session_id}", status_code=404)
        return CheckoutSessionObject.model_validate(self.sessions[session_id])

    async def retrieve_subscription(self, subscription_id):
        self._check("retrieve_subscription", subscription_id)
        if subscription_id not in self.subscriptions:
            raise ProcessorRequestError(f"No such subscription: {subscription_id}", status_code=404)
        return SubscriptionObject.model_validate(self.subscriptions[subscription_id])

    async def retrieve_product(self, product_id):
        self._check("retrieve_product", product_id)
        if product_id not in self.products:
            raise ProcessorRequestError(f"No such product: {product_id}", status_code=404)
        return ProductObject.model_validate(self.products[product_id])

    async def retrieve_customer(self, customer_id):
        self._check("retrieve_customer", customer_id)
        if customer_id not in self.customers:
            raise ProcessorRequestError(f"No such customer: {customer_id}", status_code=404)
        customer = CustomerObject.model_validate(self.customers[customer_id])
        return None if customer.deleted else customer


# =============================================================================
# Payload Builders
# =============================================================================

def build_subscription_payload(
    subscription_id: str = "sub_1",
    *,
    status: str = "active",
    account_id: Optional[str] = "u1",
    customer: str = "cus_1",
    price_id: str = "price_monthly",
    product_name: Optional[str] = "Acme Monthly Plan",
    product_id: str = "prod_1",
    period_end: int = BASE_TS + 30 * 86400,
    cancel_at_period_end: bool = False,
) -> dict:
    """Subscription object shaped like the processor's, product expanded."""
    product = {"id": product_id, "name": product_name} if product_name is not None else product_id
    return {
        "id": subscription_id,
        "object": "subscription",
        "customer": customer,
        "status": status,
        "metadata": {"account_id": account_id} if account_id else {},
        "start_date": BASE_TS,
        "cancel_at_period_end": cancel_at_period_end,
        "items": {
            "object": "list",
            "data": [{
                "id": "si_1",
                "price": {"id": price_id, "product": product},
                "current_period_end": period_end,
            }],
        },
    }


def build_event(
    event_type: str,
    obj: dict,
    *,
    event_id: str = "evt_1",
    created: int = BASE_TS,
) -> InboundEvent:
    return InboundEvent.model_validate({
        "id": event_id,
        "object": "event",
        "type": event_type,
        "created": created,
        "livemode": False,
        "data": {"object": obj},
    })


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    """Build a ``Stripe-Signature`` header the way the processor does."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def event_body(event_type: str, obj: dict, *, event_id: str = "evt_1", created: int = BASE_TS) -> bytes:
    return json.dumps({
        "id": event_id,
        "object": "event",
        "type": event_type,
        "created": created,
        "livemode": False,
        "data": {"object": obj},
    }).encode("utf-8")


def make_token(account_id: str = "u1", *, admin: bool = False, expires_in: int = 3600) -> str:
    claims = {
        "sub": account_id,
        "aud": "authenticated",
        "exp": int(time.time()) + expires_in,
    }
    if admin:
        claims["admin"] = True
    return jwt.encode(claims, JWT_SECRET, algorithm="HS256")


def ts(seconds_after_base: int = 0) -> datetime:
    return datetime.fromtimestamp(BASE_TS + seconds_after_base, tz=timezone.utc)


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def settings() -> Settings:
    return load_settings(
        retry_base_delay=0,
        retry_max_delay=0,
        sync_write_attempts=3,
        stripe_subscription_price_id="price_default",
    )


@pytest.fixture
def subscription_store():
    return InMemorySubscriptionStore()


@pytest.fixture
def account_store():
    return InMemoryAccountStore()


@pytest.fixture
def payment_store():
    return InMemoryPaymentStore()


@pytest.fixture
def webhook_event_store():
    return InMemoryWebhookEventStore()


@pytest.fixture
def stripe_service():
    return FakeStripeService()


@pytest.fixture
def container(
    settings,
    stripe_service,
    subscription_store,
    account_store,
    payment_store,
    webhook_event_store,
) -> ServiceContainer:
    return build_container(
        settings,
        stripe_service=stripe_service,
        subscriptions=subscription_store,
        accounts=account_store,
        payments=payment_store,
        webhook_events=webhook_event_store,
    )


@pytest.fixture
def app(settings, container):
    """FastAPI application wired to the in-memory container."""
    from assist.api.rate_limit import limiter
    from assist.main import create_app

    limiter.reset()
    application = create_app(settings)
    application.state.container = container
    return application


@pytest.fixture
def client(app):
    """Get synchronous test client."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers():
    def _headers(account_id: str = "u1", *, admin: bool = False) -> dict:
        return {"Authorization": f"Bearer {make_token(account_id, admin=admin)}"}
    return _headers
