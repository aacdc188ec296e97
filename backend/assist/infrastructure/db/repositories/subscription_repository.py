"""
Subscription Repository

Data access layer for subscription persistence.
Writes go through a single conditional upsert so that the anti-regression
rule holds even when two workers race on the same account.
"""

import logging
from typing import Optional, Sequence

from sqlalchemy import and_, case, or_, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError

from assist.domain.subscription import (
    STATUS_PRECEDENCE,
    SubscriptionRecord,
    SubscriptionStatus,
    SubscriptionTier,
)
from assist.infrastructure.db.database import DatabaseManager
from assist.infrastructure.db.models.subscription import SubscriptionModel
from assist.infrastructure.exceptions import DatabaseError, PersistenceError


logger = logging.getLogger(__name__)


def _precedence(status_column):
    return case(
        {status.value: rank for status, rank in STATUS_PRECEDENCE.items()},
        value=status_column,
        else_=0,
    )


def build_conditional_upsert(record: SubscriptionRecord):
    """
    INSERT ... ON CONFLICT (account_id) DO UPDATE ... WHERE <row is not newer>.

    Mirrors ``is_stale_write``: the stored row is replaced when it is older,
    or on an equal timestamp when the incoming status does not rank below
    the stored one in ``STATUS_PRECEDENCE``. RETURNING yields a row only when
    the write applied.
    """
    table = SubscriptionModel.__table__
    values = {
        "account_id": record.account_id,
        "external_customer_id": record.external_customer_id,
        "external_subscription_id": record.external_subscription_id,
        "external_price_id": record.external_price_id,
        "status": record.status.value,
        "tier": record.tier.value,
        "start_date": record.start_date,
        "current_period_end": record.current_period_end,
        "cancel_at_period_end": record.cancel_at_period_end,
        "updated_at": record.updated_at,
    }

    stmt = pg_insert(table).values(**values)
    excluded = stmt.excluded

    stmt = stmt.on_conflict_do_update(
        index_elements=[table.c.account_id],
        set_={
            key: getattr(excluded, key)
            for key in values
            if key != "account_id"
        },
        where=or_(
            table.c.updated_at < excluded.updated_at,
            and_(
                table.c.updated_at == excluded.updated_at,
                _precedence(excluded.status) >= _precedence(table.c.status),
            ),
        ),
    )
    return stmt.returning(table.c.account_id)


class SubscriptionRepository:
    """
    Repository for subscription data access.

    Implements the SubscriptionStore protocol with domain model mapping.
    """

    def __init__(self, db: DatabaseManager):
        self._db = db

    # =========================================================================
    # Query Methods
    # =========================================================================

    async def get_by_account_id(self, account_id: str) -> Optional[SubscriptionRecord]:
        statement = select(SubscriptionModel).where(
            SubscriptionModel.account_id == account_id
        )
        return await self._fetch_one(statement, "get_by_account_id")

    async def get_by_external_subscription_id(
        self,
        external_subscription_id: str,
    ) -> Optional[SubscriptionRecord]:
        statement = (
            select(SubscriptionModel)
            .where(SubscriptionModel.external_subscription_id == external_subscription_id)
            .order_by(SubscriptionModel.updated_at.desc())
            .limit(1)
        )
        return await self._fetch_one(statement, "get_by_external_subscription_id")

    async def list_by_status(
        self,
        statuses: Sequence[SubscriptionStatus],
        *,
        after_account_id: Optional[str] = None,
        limit: int = 100,
    ) -> list[SubscriptionRecord]:
        """Keyset-paginated scan ordered by account id."""
        statement = select(SubscriptionModel).where(
            SubscriptionModel.status.in_([s.value for s in statuses])
        )
        if after_account_id is not None:
            statement = statement.where(SubscriptionModel.account_id > after_account_id)
        statement = statement.order_by(SubscriptionModel.account_id).limit(limit)

        try:
            async with self._db.session() as session:
                result = await session.execute(statement)
                return [self._to_domain(model) for model in result.scalars().all()]
        except SQLAlchemyError as e:
            raise DatabaseError(
                f"Failed to list subscriptions: {e}",
                operation="list_by_status",
                table="subscriptions",
                original_error=e,
            ) from e

    # =========================================================================
    # Command Methods
    # =========================================================================

    async def upsert_if_current(self, record: SubscriptionRecord) -> bool:
        """Write ``record`` unless the stored row is newer. True when applied."""
        try:
            async with self._db.session() as session:
                result = await session.execute(build_conditional_upsert(record))
                applied = result.scalar_one_or_none() is not None
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"Failed to upsert subscription for account {record.account_id}: {e}",
                operation="upsert_if_current",
                table="subscriptions",
                original_error=e,
            ) from e

        if applied:
            logger.info(
                f"Stored subscription for account {record.account_id}: "
                f"{record.status.value}/{record.tier.value}"
            )
        return applied

    # =========================================================================
    # Mapping Methods
    # =========================================================================

    async def _fetch_one(self, statement, operation: str) -> Optional[SubscriptionRecord]:
        try:
            async with self._db.session() as session:
                result = await session.execute(statement)
                model = result.scalars().first()
        except SQLAlchemyError as e:
            raise DatabaseError(
                f"Failed to read subscription: {e}",
                operation=operation,
                table="subscriptions",
                original_error=e,
            ) from e
        return self._to_domain(model) if model else None

    def _to_domain(self, model: SubscriptionModel) -> SubscriptionRecord:
        """Convert database model to domain entity."""
        return SubscriptionRecord(
            account_id=model.account_id,
            status=SubscriptionStatus.from_processor(model.status),
            tier=SubscriptionTier(model.tier) if model.tier else SubscriptionTier.FREE,
            external_customer_id=model.external_customer_id,
            external_subscription_id=model.external_subscription_id,
            external_price_id=model.external_price_id,
            start_date=model.start_date,
            current_period_end=model.current_period_end,
            cancel_at_period_end=model.cancel_at_period_end or False,
            updated_at=model.updated_at,
        )
