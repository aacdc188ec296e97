"""
Checkout API Routes

Endpoints for starting hosted checkouts and for the post-checkout return
page. Subscription state is never written here; the webhook owns that.
"""

import logging

from fastapi import APIRouter, HTTPException, Query, Request, status

from assist.api.dependencies import ContainerDep, CurrentAccountDep
from assist.api.rate_limit import checkout_limit, limiter
from assist.domain.result import Err
from assist.domain.subscription import (
    CheckoutOutcome,
    CheckoutResponse,
    CreateDonationCheckoutRequest,
    CreateSubscriptionCheckoutRequest,
)


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/checkout", tags=["Checkout"])


@router.post("/subscription", response_model=CheckoutResponse)
@limiter.limit(checkout_limit)
async def create_subscription_checkout(
    request: Request,
    checkout_request: CreateSubscriptionCheckoutRequest,
    account_id: CurrentAccountDep,
    container: ContainerDep,
):
    """Start a recurring subscription checkout for the authenticated account."""
    result = await container.checkout.create_subscription_checkout(
        account_id,
        checkout_request.price_id,
        checkout_request.success_url,
        checkout_request.cancel_url,
    )
    if isinstance(result, Err):
        raise result.error

    return CheckoutResponse(session_id=result.value.session_id, checkout_url=result.value.url)


@router.post("/donation", response_model=CheckoutResponse)
@limiter.limit(checkout_limit)
async def create_donation_checkout(
    request: Request,
    checkout_request: CreateDonationCheckoutRequest,
    account_id: CurrentAccountDep,
    container: ContainerDep,
):
    """Start a one-time donation checkout."""
    result = await container.checkout.create_one_time_checkout(
        account_id,
        checkout_request.amount,
        checkout_request.success_url,
        checkout_request.cancel_url,
    )
    if isinstance(result, Err):
        raise result.error

    return CheckoutResponse(session_id=result.value.session_id, checkout_url=result.value.url)


@router.get("/verify", response_model=CheckoutOutcome)
@limiter.limit(checkout_limit)
async def verify_checkout(
    request: Request,
    account_id: CurrentAccountDep,
    container: ContainerDep,
    session_id: str = Query(..., description="Checkout session id from the success redirect"),
):
    """Read back a completed checkout for the return page."""
    result = await container.checkout.verify_checkout_outcome(session_id)
    if isinstance(result, Err):
        raise result.error

    if result.value.account_id != account_id:
        logger.warning(f"Account {account_id} tried to read checkout {session_id} of another account")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Checkout session belongs to another account",
        )
    return result.value
