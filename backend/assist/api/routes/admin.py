"""
Admin Routes for Subscription Maintenance

Integrity checks against the processor and payment history lookups.
Protected by the ``admin`` token claim.
"""

import logging

from fastapi import APIRouter, Depends, Query

from assist.api.dependencies import ContainerDep, require_admin
from assist.domain.result import Err
from assist.domain.subscription import PaymentRecord
from assist.infrastructure.services.reconciliation_service import (
    IntegrityCheckResult,
    ReconciliationReport,
)


logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/admin",
    tags=["admin"],
    dependencies=[Depends(require_admin)],  # Protect ALL admin routes
)


@router.post("/subscriptions/{account_id}/reconcile", response_model=IntegrityCheckResult)
async def reconcile_subscription(account_id: str, container: ContainerDep):
    """Compare one account with the processor and repair any drift."""
    logger.info(f"Admin reconciliation requested for account {account_id}")
    result = await container.reconciler.reconcile_account(account_id)
    if isinstance(result, Err):
        raise result.error
    return result.value


@router.post("/subscriptions/reconcile", response_model=ReconciliationReport)
async def reconcile_all_subscriptions(container: ContainerDep):
    """Run the integrity check over every active, trialing or past-due record."""
    return await container.reconciler.reconcile_all()


@router.get("/accounts/{account_id}/payments", response_model=list[PaymentRecord])
async def list_account_payments(
    account_id: str,
    container: ContainerDep,
    limit: int = Query(default=20, ge=1, le=100),
):
    """Most recent invoice outcomes for an account."""
    return await container.payments.list_for_account(account_id, limit=limit)
