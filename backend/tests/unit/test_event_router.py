"""
Unit tests for EventRouter.

Each event kind is routed against in-memory stores and a fake processor.
"""

import pytest

from assist.domain.result import Err
from assist.domain.subscription import (
    SubscriptionRecord,
    SubscriptionStatus,
    SubscriptionTier,
    SyncOutcome,
)
from assist.infrastructure.exceptions import (
    InvalidArgumentError,
    UnresolvedCorrelationError,
    UpstreamUnavailableError,
)

from conftest import BASE_TS, build_event, build_subscription_payload, ts


@pytest.fixture
def router(container):
    return container.router


def _invoice(invoice_id="in_1", subscription="sub_1", **extra):
    invoice = {
        "id": invoice_id,
        "customer": "cus_1",
        "subscription": subscription,
        "amount_paid": 1000,
        "amount_due": 1000,
        "currency": "usd",
        "status": "paid",
        "billing_reason": "subscription_cycle",
    }
    invoice.update(extra)
    return invoice


class TestUnknownEvents:

    async def test_unknown_type_is_noop(self, router, subscription_store, stripe_service):
        result = await router.route(build_event("customer.created", {"id": "cus_1"}))

        assert result.unwrap() == SyncOutcome.IGNORED
        assert subscription_store.records == {}
        assert stripe_service.calls == []

    async def test_malformed_payload(self, router):
        result = await router.route(build_event("customer.subscription.updated", {"id": "sub_1"}))

        assert isinstance(result, Err)
        assert isinstance(result.error, InvalidArgumentError)
        assert result.error.retryable is False


class TestCheckoutCompleted:

    async def test_subscription_checkout_syncs_with_resolved_tier(
        self, router, stripe_service, subscription_store, account_store
    ):
        stripe_service.subscriptions["sub_1"] = build_subscription_payload(
            account_id=None, product_name="Acme Annual Plan"
        )
        session = {
            "id": "cs_1",
            "mode": "subscription",
            "payment_status": "paid",
            "subscription": "sub_1",
            "customer": "cus_1",
            "metadata": {"account_id": "u1"},
        }

        result = await router.route(build_event("checkout.session.completed", session))

        assert result.unwrap() == SyncOutcome.APPLIED
        record = subscription_store.records["u1"]
        assert record.tier == SubscriptionTier.ANNUAL
        assert record.status == SubscriptionStatus.ACTIVE
        assert record.external_subscription_id == "sub_1"
        assert record.updated_at == ts()
        assert account_store.flags["u1"].has_active_access is True

    async def test_unexpanded_product_is_fetched(self, router, stripe_service, subscription_store):
        stripe_service.subscriptions["sub_1"] = build_subscription_payload(product_name=None)
        stripe_service.products["prod_1"] = {"id": "prod_1", "name": "Lifetime Supporter"}
        session = {
            "id": "cs_1",
            "mode": "subscription",
            "payment_status": "paid",
            "subscription": "sub_1",
            "client_reference_id": "u1",
        }

        await router.route(build_event("checkout.session.completed", session))

        assert subscription_store.records["u1"].tier == SubscriptionTier.LIFETIME
        assert ("retrieve_product", "prod_1") in stripe_service.calls

    async def test_one_time_checkout_records_donation_only(
        self, router, subscription_store, account_store, stripe_service
    ):
        session = {
            "id": "cs_2",
            "mode": "payment",
            "payment_status": "paid",
            "amount_total": 500,
            "metadata": {"account_id": "u1"},
        }

        result = await router.route(build_event("checkout.session.completed", session))

        assert result.unwrap() == SyncOutcome.RECORDED
        assert account_store.donations["u1"] == (500, ts())
        assert subscription_store.records == {}
        assert stripe_service.calls == []

    async def test_checkout_without_any_account_is_dropped(self, router, stripe_service):
        session = {"id": "cs_3", "mode": "payment", "payment_status": "paid", "amount_total": 500}

        result = await router.route(build_event("checkout.session.completed", session))

        assert isinstance(result.error, UnresolvedCorrelationError)
        assert result.error.retryable is False

    async def test_upstream_failure_is_retryable(self, router, stripe_service):
        stripe_service.errors["retrieve_subscription"] = UpstreamUnavailableError("down")
        session = {
            "id": "cs_1",
            "mode": "subscription",
            "payment_status": "paid",
            "subscription": "sub_1",
            "metadata": {"account_id": "u1"},
        }

        result = await router.route(build_event("checkout.session.completed", session))

        assert isinstance(result.error, UpstreamUnavailableError)
        assert result.error.retryable is True


class TestSubscriptionEvents:

    async def test_updated_writes_snapshot(self, router, subscription_store, stripe_service):
        payload = build_subscription_payload(status="past_due", cancel_at_period_end=True)

        result = await router.route(build_event("customer.subscription.updated", payload))

        assert result.unwrap() == SyncOutcome.APPLIED
        record = subscription_store.records["u1"]
        assert record.status == SubscriptionStatus.PAST_DUE
        assert record.cancel_at_period_end is True
        assert record.current_period_end == ts(30 * 86400)
        assert stripe_service.calls == []

    async def test_created_and_updated_share_handler(self, router, subscription_store):
        await router.route(build_event(
            "customer.subscription.created",
            build_subscription_payload(status="trialing"),
        ))
        assert subscription_store.records["u1"].status == SubscriptionStatus.TRIALING

    async def test_deleted_sets_canceled_and_keeps_tier(
        self, router, subscription_store, account_store
    ):
        await router.route(build_event(
            "customer.subscription.updated",
            build_subscription_payload(product_name="Acme Annual Plan"),
            event_id="evt_a",
            created=BASE_TS,
        ))

        result = await router.route(build_event(
            "customer.subscription.deleted",
            build_subscription_payload(status="canceled", product_name="Renamed"),
            event_id="evt_b",
            created=BASE_TS + 10,
        ))

        assert result.unwrap() == SyncOutcome.APPLIED
        record = subscription_store.records["u1"]
        assert record.status == SubscriptionStatus.CANCELED
        assert record.cancel_at_period_end is True
        assert record.tier == SubscriptionTier.ANNUAL
        assert account_store.flags["u1"].has_active_access is False

    async def test_late_update_after_deletion_is_stale(self, router, subscription_store):
        await router.route(build_event(
            "customer.subscription.deleted",
            build_subscription_payload(status="canceled"),
            event_id="evt_del",
            created=BASE_TS + 10,
        ))

        result = await router.route(build_event(
            "customer.subscription.updated",
            build_subscription_payload(status="active"),
            event_id="evt_upd",
            created=BASE_TS + 5,
        ))

        assert result.unwrap() == SyncOutcome.STALE
        assert subscription_store.records["u1"].status == SubscriptionStatus.CANCELED

    async def test_same_second_created_incomplete_cannot_undo_activation(
        self, router, subscription_store, account_store
    ):
        await router.route(build_event(
            "customer.subscription.updated",
            build_subscription_payload(status="active"),
            event_id="evt_upd",
            created=BASE_TS,
        ))

        result = await router.route(build_event(
            "customer.subscription.created",
            build_subscription_payload(status="incomplete"),
            event_id="evt_new",
            created=BASE_TS,
        ))

        assert result.unwrap() == SyncOutcome.STALE
        assert subscription_store.records["u1"].status == SubscriptionStatus.ACTIVE
        assert account_store.flags["u1"].has_active_access is True

    async def test_correlation_falls_back_to_customer(
        self, router, stripe_service, subscription_store
    ):
        stripe_service.customers["cus_1"] = {"id": "cus_1", "metadata": {"account_id": "u7"}}

        await router.route(build_event(
            "customer.subscription.updated",
            build_subscription_payload(account_id=None),
        ))

        assert "u7" in subscription_store.records

    async def test_correlation_falls_back_to_stored_record(
        self, router, stripe_service, subscription_store
    ):
        subscription_store.records["u8"] = SubscriptionRecord(
            account_id="u8",
            status=SubscriptionStatus.ACTIVE,
            tier=SubscriptionTier.MONTHLY,
            external_subscription_id="sub_1",
            updated_at=ts(-100),
        )

        result = await router.route(build_event(
            "customer.subscription.updated",
            build_subscription_payload(account_id=None, status="unpaid"),
        ))

        assert result.is_ok
        assert subscription_store.records["u8"].status == SubscriptionStatus.UNPAID
        assert ("retrieve_customer", "cus_1") in stripe_service.calls

    async def test_uncorrelatable_subscription_is_dropped(self, router, subscription_store):
        result = await router.route(build_event(
            "customer.subscription.updated",
            build_subscription_payload(account_id=None),
        ))

        assert isinstance(result.error, UnresolvedCorrelationError)
        assert subscription_store.records == {}


class TestInvoiceEvents:

    async def test_invoice_without_subscription_is_ignored(self, router, payment_store):
        result = await router.route(build_event("invoice.paid", _invoice(subscription=None)))

        assert result.unwrap() == SyncOutcome.IGNORED
        assert payment_store.payments == {}

    async def test_invoice_paid_reactivates(
        self, router, stripe_service, subscription_store, payment_store, account_store
    ):
        subscription_store.records["u1"] = SubscriptionRecord(
            account_id="u1",
            status=SubscriptionStatus.PAST_DUE,
            tier=SubscriptionTier.MONTHLY,
            external_subscription_id="sub_1",
            updated_at=ts(-10),
        )
        stripe_service.subscriptions["sub_1"] = build_subscription_payload(status="active")

        result = await router.route(build_event("invoice.paid", _invoice()))

        assert result.unwrap() == SyncOutcome.APPLIED
        assert subscription_store.records["u1"].status == SubscriptionStatus.ACTIVE
        assert account_store.flags["u1"].has_active_access is True
        payment = payment_store.payments["in_1"]
        assert payment.succeeded is True
        assert payment.amount == 1000

    async def test_invoice_paid_when_already_active_only_records(
        self, router, stripe_service, subscription_store, payment_store
    ):
        subscription_store.records["u1"] = SubscriptionRecord(
            account_id="u1",
            status=SubscriptionStatus.ACTIVE,
            tier=SubscriptionTier.MONTHLY,
            external_subscription_id="sub_1",
            updated_at=ts(-10),
        )

        result = await router.route(build_event("invoice.paid", _invoice()))

        assert result.unwrap() == SyncOutcome.RECORDED
        assert subscription_store.write_count == 0
        assert "in_1" in payment_store.payments
        assert ("retrieve_subscription", "sub_1") not in stripe_service.calls

    async def test_invoice_paid_after_cancellation_only_records(
        self, router, stripe_service, subscription_store, payment_store, account_store
    ):
        subscription_store.records["u1"] = SubscriptionRecord(
            account_id="u1",
            status=SubscriptionStatus.CANCELED,
            tier=SubscriptionTier.MONTHLY,
            external_subscription_id="sub_1",
            updated_at=ts(-10),
        )

        result = await router.route(build_event("invoice.paid", _invoice()))

        assert result.unwrap() == SyncOutcome.RECORDED
        assert subscription_store.records["u1"].status == SubscriptionStatus.CANCELED
        assert subscription_store.write_count == 0
        assert "u1" not in account_store.flags
        assert payment_store.payments["in_1"].succeeded is True
        assert ("retrieve_subscription", "sub_1") not in stripe_service.calls

    @pytest.mark.parametrize("status", ["canceled", "incomplete_expired"])
    async def test_invoice_paid_for_ended_processor_subscription_only_records(
        self, router, stripe_service, subscription_store, payment_store, status
    ):
        subscription_store.records["u1"] = SubscriptionRecord(
            account_id="u1",
            status=SubscriptionStatus.PAST_DUE,
            tier=SubscriptionTier.MONTHLY,
            external_subscription_id="sub_1",
            updated_at=ts(-10),
        )
        stripe_service.subscriptions["sub_1"] = build_subscription_payload(status=status)

        result = await router.route(build_event("invoice.paid", _invoice()))

        assert result.unwrap() == SyncOutcome.RECORDED
        assert subscription_store.records["u1"].status == SubscriptionStatus.PAST_DUE
        assert subscription_store.write_count == 0
        assert "in_1" in payment_store.payments

    async def test_invoice_paid_reads_new_parent_shape(
        self, router, stripe_service, subscription_store
    ):
        stripe_service.subscriptions["sub_9"] = build_subscription_payload("sub_9", account_id="u9")
        invoice = _invoice(subscription=None, customer="cus_9")
        invoice["parent"] = {
            "subscription_details": {"subscription": "sub_9", "metadata": {"account_id": "u9"}},
        }

        result = await router.route(build_event("invoice.paid", invoice))

        assert result.is_ok
        assert subscription_store.records["u9"].external_subscription_id == "sub_9"

    async def test_payment_failed_while_processor_still_active(
        self, router, stripe_service, subscription_store, payment_store
    ):
        subscription_store.records["u1"] = SubscriptionRecord(
            account_id="u1",
            status=SubscriptionStatus.ACTIVE,
            tier=SubscriptionTier.MONTHLY,
            external_subscription_id="sub_1",
            updated_at=ts(-10),
        )
        stripe_service.subscriptions["sub_1"] = build_subscription_payload(status="active")
        invoice = _invoice(
            status="open",
            amount_paid=0,
            next_payment_attempt=BASE_TS + 86400,
            last_finalization_error={"message": "card declined"},
        )

        result = await router.route(build_event("invoice.payment_failed", invoice))

        assert result.unwrap() == SyncOutcome.RECORDED
        assert subscription_store.records["u1"].status == SubscriptionStatus.ACTIVE
        payment = payment_store.payments["in_1"]
        assert payment.succeeded is False
        assert payment.failure_reason == "card declined"
        assert payment.next_payment_attempt == ts(86400)

    @pytest.mark.parametrize("status", ["past_due", "unpaid"])
    async def test_payment_failed_with_delinquent_status(
        self, router, stripe_service, subscription_store, account_store, status
    ):
        stripe_service.subscriptions["sub_1"] = build_subscription_payload(status=status)
        invoice = _invoice(status="open", amount_paid=0)
        invoice["parent"] = {"subscription_details": {"metadata": {"account_id": "u1"}}}

        result = await router.route(build_event("invoice.payment_failed", invoice))

        assert result.unwrap() == SyncOutcome.APPLIED
        assert subscription_store.records["u1"].status == SubscriptionStatus(status)
        assert account_store.flags["u1"].has_active_access is False
