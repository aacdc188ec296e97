"""
Payment Repository

Invoice outcomes keyed by invoice id. A redelivered invoice event updates
the existing row instead of adding a second one.
"""

import logging

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError

from assist.domain.subscription import PaymentRecord
from assist.infrastructure.db.database import DatabaseManager
from assist.infrastructure.db.models.payment import PaymentModel
from assist.infrastructure.exceptions import DatabaseError, PersistenceError


logger = logging.getLogger(__name__)


class PaymentRepository:
    """Implements the PaymentStore protocol."""

    def __init__(self, db: DatabaseManager):
        self._db = db

    async def record(self, payment: PaymentRecord) -> PaymentRecord:
        values = payment.model_dump()
        stmt = pg_insert(PaymentModel).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["invoice_id"],
            set_={
                key: getattr(stmt.excluded, key)
                for key in values
                if key != "invoice_id"
            },
        )
        try:
            async with self._db.session() as session:
                await session.execute(stmt)
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"Failed to record payment {payment.invoice_id}: {e}",
                operation="record",
                table="payments",
                original_error=e,
            ) from e

        logger.info(
            f"Recorded {payment.status} payment {payment.invoice_id} "
            f"for account {payment.account_id}"
        )
        return payment

    async def list_for_account(self, account_id: str, limit: int = 20) -> list[PaymentRecord]:
        statement = (
            select(PaymentModel)
            .where(PaymentModel.account_id == account_id)
            .order_by(PaymentModel.occurred_at.desc())
            .limit(limit)
        )
        try:
            async with self._db.session() as session:
                result = await session.execute(statement)
                return [
                    PaymentRecord.model_validate(model)
                    for model in result.scalars().all()
                ]
        except SQLAlchemyError as e:
            raise DatabaseError(
                f"Failed to list payments for account {account_id}: {e}",
                operation="list_for_account",
                table="payments",
                original_error=e,
            ) from e
