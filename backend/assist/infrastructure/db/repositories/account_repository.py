"""
Account Repository

Reads and writes the subscription-owned columns of 'accounts'.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError

from assist.domain.subscription import (
    AccountAccessFlag,
    SubscriptionStatus,
    SubscriptionTier,
)
from assist.infrastructure.db.database import DatabaseManager
from assist.infrastructure.db.models.account import AccountModel
from assist.infrastructure.exceptions import DatabaseError, PersistenceError


logger = logging.getLogger(__name__)


class AccountRepository:
    """Implements the AccountStore protocol."""

    def __init__(self, db: DatabaseManager):
        self._db = db

    async def get_access_flag(self, account_id: str) -> Optional[AccountAccessFlag]:
        statement = select(AccountModel).where(AccountModel.account_id == account_id)
        try:
            async with self._db.session() as session:
                result = await session.execute(statement)
                model = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise DatabaseError(
                f"Failed to read account {account_id}: {e}",
                operation="get_access_flag",
                table="accounts",
                original_error=e,
            ) from e

        if model is None:
            return None
        return AccountAccessFlag(
            account_id=model.account_id,
            has_active_access=model.has_active_access,
            status=(
                SubscriptionStatus.from_processor(model.subscription_status)
                if model.subscription_status else None
            ),
            tier=SubscriptionTier(model.subscription_tier or SubscriptionTier.FREE.value),
            updated_at=model.access_updated_at,
        )

    async def upsert_access_flag(self, flag: AccountAccessFlag) -> AccountAccessFlag:
        """Unconditionally overwrite the flag; it is always derived from the record."""
        values = {
            "account_id": flag.account_id,
            "has_active_access": flag.has_active_access,
            "subscription_status": flag.status.value if flag.status else None,
            "subscription_tier": flag.tier.value,
            "access_updated_at": flag.updated_at,
        }
        stmt = pg_insert(AccountModel).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["account_id"],
            set_={
                "has_active_access": stmt.excluded.has_active_access,
                "subscription_status": stmt.excluded.subscription_status,
                "subscription_tier": stmt.excluded.subscription_tier,
                "access_updated_at": stmt.excluded.access_updated_at,
            },
        )
        await self._write(stmt, "upsert_access_flag", flag.account_id)
        return flag

    async def record_donation(
        self,
        account_id: str,
        amount: int,
        occurred_at: datetime,
    ) -> None:
        stmt = pg_insert(AccountModel).values(
            account_id=account_id,
            has_donated=True,
            last_donation_amount=amount,
            last_donation_at=occurred_at,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["account_id"],
            set_={
                "has_donated": True,
                "last_donation_amount": stmt.excluded.last_donation_amount,
                "last_donation_at": stmt.excluded.last_donation_at,
            },
        )
        await self._write(stmt, "record_donation", account_id)
        logger.info(f"Recorded donation of {amount} for account {account_id}")

    async def _write(self, stmt, operation: str, account_id: str) -> None:
        try:
            async with self._db.session() as session:
                await session.execute(stmt)
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"Failed to write account {account_id}: {e}",
                operation=operation,
                table="accounts",
                original_error=e,
            ) from e
