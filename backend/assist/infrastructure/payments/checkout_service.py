"""
Checkout Session Factory

Creates hosted checkout sessions for recurring subscriptions and one-time
donations, and reads back the outcome of a completed session for the
post-checkout return page.

Every session carries the internal account id in three places (session
metadata, client_reference_id and, for subscriptions, the subscription's own
metadata) so that later webhook events can be correlated back to the account.
"""

import logging
from typing import Optional

from assist.config.settings import Settings
from assist.domain.events import CheckoutSessionObject
from assist.domain.result import Err, Ok, Result
from assist.domain.subscription import (
    ACCOUNT_ID_METADATA_KEY,
    CheckoutMode,
    CheckoutOutcome,
    SessionRef,
)
from assist.infrastructure.exceptions import (
    AssistError,
    InvalidArgumentError,
    MissingCorrelationError,
    NotCompletedError,
)
from assist.infrastructure.payments.stripe_service import StripeService


logger = logging.getLogger(__name__)

SESSION_ID_PLACEHOLDER = "{CHECKOUT_SESSION_ID}"


def with_session_id(success_url: str) -> str:
    """Append the session id placeholder the processor fills in on redirect."""
    separator = "&" if "?" in success_url else "?"
    return f"{success_url}{separator}session_id={SESSION_ID_PLACEHOLDER}"


class CheckoutSessionFactory:
    """Builds checkout sessions through the processor adapter."""

    def __init__(self, stripe_service: StripeService, settings: Settings):
        self._stripe = stripe_service
        self._settings = settings

    # =========================================================================
    # Session Creation
    # =========================================================================

    async def create_subscription_checkout(
        self,
        account_id: str,
        price_id: Optional[str],
        success_url: str,
        cancel_url: str,
    ) -> Result[SessionRef]:
        """
        Create a recurring subscription checkout session.

        ``price_id`` falls back to STRIPE_SUBSCRIPTION_PRICE_ID only when it is
        omitted. An explicitly empty id is rejected.
        """
        if price_id is None:
            price_id = self._settings.stripe_subscription_price_id
        if not price_id or not price_id.strip():
            return Err(InvalidArgumentError("price_id is required", field="price_id"))

        error = self._validate_common(account_id, success_url, cancel_url)
        if error:
            return Err(error)

        metadata = {ACCOUNT_ID_METADATA_KEY: account_id}
        params = {
            "mode": CheckoutMode.SUBSCRIPTION.value,
            "line_items": [{"price": price_id, "quantity": 1}],
            "success_url": with_session_id(success_url),
            "cancel_url": cancel_url,
            "client_reference_id": account_id,
            "metadata": metadata,
            "subscription_data": {"metadata": dict(metadata)},
        }
        return await self._create(params, account_id, CheckoutMode.SUBSCRIPTION)

    async def create_one_time_checkout(
        self,
        account_id: str,
        amount: int,
        success_url: str,
        cancel_url: str,
    ) -> Result[SessionRef]:
        """Create a one-time donation checkout session for ``amount`` minor units."""
        minimum = self._settings.donation_minimum_minor_units
        if isinstance(amount, bool) or not isinstance(amount, int):
            return Err(InvalidArgumentError("amount must be an integer", field="amount"))
        if amount < minimum:
            return Err(InvalidArgumentError(
                f"amount must be at least {minimum} minor units",
                field="amount",
            ))

        error = self._validate_common(account_id, success_url, cancel_url)
        if error:
            return Err(error)

        params = {
            "mode": CheckoutMode.ONE_TIME.value,
            "line_items": [{
                "price_data": {
                    "currency": self._settings.donation_currency,
                    "product_data": {"name": self._settings.donation_product_name},
                    "unit_amount": amount,
                },
                "quantity": 1,
            }],
            "success_url": with_session_id(success_url),
            "cancel_url": cancel_url,
            "client_reference_id": account_id,
            "metadata": {ACCOUNT_ID_METADATA_KEY: account_id},
        }
        return await self._create(params, account_id, CheckoutMode.ONE_TIME)

    # =========================================================================
    # Return Flow
    # =========================================================================

    async def verify_checkout_outcome(self, session_id: str) -> Result[CheckoutOutcome]:
        """
        Read back a completed checkout session.

        Never writes subscription state; the webhook pipeline owns that.
        """
        if not session_id or not session_id.strip():
            return Err(InvalidArgumentError("session_id is required", field="session_id"))

        try:
            session = await self._stripe.retrieve_checkout_session(session_id)
        except AssistError as e:
            return Err(e)

        if session.payment_status != "paid":
            return Err(NotCompletedError(
                f"Checkout session {session_id} is not paid",
                payment_status=session.payment_status,
            ))

        account_id = session.account_id
        if not account_id:
            logger.warning(f"Checkout session {session_id} carries no account id")
            return Err(MissingCorrelationError(
                f"Checkout session {session_id} has no account reference"
            ))

        mode = (
            CheckoutMode.SUBSCRIPTION
            if session.mode == CheckoutMode.SUBSCRIPTION.value
            else CheckoutMode.ONE_TIME
        )
        return Ok(CheckoutOutcome(
            account_id=account_id,
            mode=mode,
            external_subscription_id=(
                session.subscription_id if mode == CheckoutMode.SUBSCRIPTION else None
            ),
            amount_paid=session.amount_total,
        ))

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _validate_common(
        account_id: str,
        success_url: str,
        cancel_url: str,
    ) -> Optional[InvalidArgumentError]:
        if not account_id or not account_id.strip():
            return InvalidArgumentError("account_id is required", field="account_id")
        if not success_url:
            return InvalidArgumentError("success_url is required", field="success_url")
        if not cancel_url:
            return InvalidArgumentError("cancel_url is required", field="cancel_url")
        return None

    async def _create(
        self,
        params: dict,
        account_id: str,
        mode: CheckoutMode,
    ) -> Result[SessionRef]:
        try:
            session: CheckoutSessionObject = await self._stripe.create_checkout_session(
                params,
                timeout=self._settings.checkout_timeout_seconds,
            )
        except AssistError as e:
            logger.error(f"Checkout ({mode.value}) failed for account {account_id}: {e}")
            return Err(e)

        logger.info(f"Created {mode.value} checkout session {session.id} for account {account_id}")
        return Ok(SessionRef(session_id=session.id, url=session.url))
