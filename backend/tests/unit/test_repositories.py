"""
Unit tests for the SQL repositories.

No database is needed: statements are compiled against the PostgreSQL
dialect, and session failures are simulated with a broken session factory.
"""

from contextlib import asynccontextmanager
from unittest.mock import MagicMock

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import OperationalError

from assist.domain.subscription import (
    AccountAccessFlag,
    SubscriptionRecord,
    SubscriptionStatus,
    SubscriptionTier,
)
from assist.infrastructure.db.repositories import (
    AccountRepository,
    SubscriptionRepository,
    WebhookEventRepository,
)
from assist.infrastructure.db.repositories.subscription_repository import build_conditional_upsert
from assist.infrastructure.exceptions import DatabaseError, PersistenceError

from conftest import ts


def _record(**overrides):
    values = dict(
        account_id="u1",
        status=SubscriptionStatus.ACTIVE,
        tier=SubscriptionTier.MONTHLY,
        external_subscription_id="sub_1",
        updated_at=ts(),
    )
    values.update(overrides)
    return SubscriptionRecord(**values)


@pytest.fixture
def broken_db():
    @asynccontextmanager
    async def session():
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))
        yield  # pragma: no cover

    db = MagicMock()
    db.session = session
    return db


class TestConditionalUpsert:

    def test_compiles_to_guarded_upsert(self):
        sql = str(build_conditional_upsert(_record()).compile(dialect=postgresql.dialect()))

        assert "ON CONFLICT (account_id) DO UPDATE SET" in sql
        assert "subscriptions.updated_at < excluded.updated_at" in sql
        assert "subscriptions.updated_at = excluded.updated_at" in sql
        assert "CASE excluded.status WHEN" in sql
        assert "CASE subscriptions.status WHEN" in sql
        assert "RETURNING subscriptions.account_id" in sql

    def test_account_id_is_not_overwritten(self):
        sql = str(build_conditional_upsert(_record()).compile(dialect=postgresql.dialect()))
        set_clause = sql.split("DO UPDATE SET", 1)[1].split("WHERE", 1)[0]

        assert "account_id" not in set_clause
        assert "status = excluded.status" in set_clause
        assert "updated_at = excluded.updated_at" in set_clause

    def test_enum_values_are_bound(self):
        compiled = build_conditional_upsert(
            _record(status=SubscriptionStatus.PAST_DUE, tier=SubscriptionTier.LIFETIME)
        ).compile(dialect=postgresql.dialect())

        params = compiled.params
        assert params["status"] == "past_due"
        assert params["tier"] == "lifetime"


class TestErrorTranslation:

    async def test_subscription_read_failure(self, broken_db):
        with pytest.raises(DatabaseError) as exc_info:
            await SubscriptionRepository(broken_db).get_by_account_id("u1")

        assert not isinstance(exc_info.value, PersistenceError)
        assert exc_info.value.retryable is True

    async def test_subscription_write_failure(self, broken_db):
        with pytest.raises(PersistenceError):
            await SubscriptionRepository(broken_db).upsert_if_current(_record())

    async def test_access_flag_write_failure(self, broken_db):
        with pytest.raises(PersistenceError):
            await AccountRepository(broken_db).upsert_access_flag(
                AccountAccessFlag(account_id="u1", has_active_access=True)
            )

    async def test_webhook_lookup_failure(self, broken_db):
        with pytest.raises(DatabaseError):
            await WebhookEventRepository(broken_db).is_processed("evt_1")
