"""
Stripe Payment Service

Infrastructure adapter over an injected ``stripe.StripeClient``.
Every processor lookup the reconciliation engine needs goes through here so
that transient failures are retried with exponential backoff in one place
and surfaced as UpstreamError subclasses once the retries run out.

The Stripe SDK is synchronous; calls run in a worker thread so the event
loop is never blocked.
"""

import asyncio
import logging
from functools import partial
from typing import Any, Optional

import stripe

from assist.config.settings import Settings
from assist.domain.events import (
    CheckoutSessionObject,
    CustomerObject,
    ProductObject,
    SubscriptionObject,
)
from assist.infrastructure.exceptions import (
    ProcessorRequestError,
    UpstreamTimeoutError,
    UpstreamUnavailableError,
)
from assist.infrastructure.retry import retry_with_backoff


logger = logging.getLogger(__name__)

# Errors worth another attempt: network trouble, throttling, 5xx.
TRANSIENT_STRIPE_ERRORS = (
    stripe.APIConnectionError,
    stripe.RateLimitError,
    stripe.APIError,
)

SUBSCRIPTION_EXPAND = ["items.data.price.product"]


def build_stripe_client(settings: Settings) -> stripe.StripeClient:
    """Construct the processor client from settings."""
    return stripe.StripeClient(
        settings.stripe_secret_key,
        max_network_retries=settings.stripe_max_network_retries,
    )


def _as_dict(obj: Any) -> dict:
    """Turn a StripeObject (or an already plain dict) into a dict."""
    if isinstance(obj, dict) and type(obj) is dict:
        return obj
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return dict(obj)


class StripeService:
    """
    Stripe payment processing service.

    Stateless apart from the injected client; safe to share between
    concurrent requests.
    """

    def __init__(
        self,
        client: stripe.StripeClient,
        *,
        max_retries: int = 3,
        retry_base_delay: float = 1.0,
        retry_max_delay: float = 10.0,
    ):
        self._client = client
        self._max_retries = max_retries
        self._base_delay = retry_base_delay
        self._max_delay = retry_max_delay

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        client: Optional[stripe.StripeClient] = None,
    ) -> "StripeService":
        return cls(
            client or build_stripe_client(settings),
            max_retries=settings.max_retries,
            retry_base_delay=settings.retry_base_delay,
            retry_max_delay=settings.retry_max_delay,
        )

    async def _call(self, operation_name: str, fn, *args, **kwargs) -> Any:
        """Run a blocking SDK call with retry/backoff and error translation."""

        async def attempt():
            return await asyncio.to_thread(partial(fn, *args, **kwargs))

        try:
            return await retry_with_backoff(
                attempt,
                operation_name,
                attempts=self._max_retries,
                base_delay=self._base_delay,
                max_delay=self._max_delay,
                retry_on=TRANSIENT_STRIPE_ERRORS,
            )
        except TRANSIENT_STRIPE_ERRORS as e:
            raise UpstreamUnavailableError(
                f"{operation_name} failed: {e.user_message or e}",
                operation=operation_name,
                attempts=self._max_retries,
                original_error=e,
            ) from e
        except stripe.StripeError as e:
            logger.error(f"{operation_name} rejected by Stripe: {e}")
            raise ProcessorRequestError(
                f"{operation_name} rejected: {e.user_message or e}",
                operation=operation_name,
                status_code=e.http_status,
                original_error=e,
            ) from e

    # =========================================================================
    # Checkout Session
    # =========================================================================

    async def create_checkout_session(
        self,
        params: dict,
        *,
        timeout: float,
    ) -> CheckoutSessionObject:
        """
        Create a hosted Checkout Session.

        The whole call (including retries) is bounded by ``timeout``; on
        expiry the pending session is abandoned, not canceled remotely.
        """
        operation = "Create checkout session"
        try:
            session = await asyncio.wait_for(
                self._call(operation, self._client.checkout.sessions.create, params=params),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            logger.warning(f"{operation} timed out after {timeout:.1f}s")
            raise UpstreamTimeoutError(
                f"{operation} timed out after {timeout:.1f}s",
                operation=operation,
                original_error=e,
            ) from e
        return CheckoutSessionObject.model_validate(_as_dict(session))

    async def retrieve_checkout_session(self, session_id: str) -> CheckoutSessionObject:
        session = await self._call(
            "Retrieve checkout session",
            self._client.checkout.sessions.retrieve,
            session_id,
            params={"expand": ["subscription"]},
        )
        return CheckoutSessionObject.model_validate(_as_dict(session))

    # =========================================================================
    # Subscription / Product / Customer Queries
    # =========================================================================

    async def retrieve_subscription(self, subscription_id: str) -> SubscriptionObject:
        """Retrieve a subscription with its price product expanded."""
        subscription = await self._call(
            "Retrieve subscription",
            self._client.subscriptions.retrieve,
            subscription_id,
            params={"expand": SUBSCRIPTION_EXPAND},
        )
        return SubscriptionObject.model_validate(_as_dict(subscription))

    async def retrieve_product(self, product_id: str) -> ProductObject:
        product = await self._call(
            "Retrieve product",
            self._client.products.retrieve,
            product_id,
        )
        return ProductObject.model_validate(_as_dict(product))

    async def retrieve_customer(self, customer_id: str) -> Optional[CustomerObject]:
        """Retrieve a customer; deleted customers come back as None."""
        customer = await self._call(
            "Retrieve customer",
            self._client.customers.retrieve,
            customer_id,
        )
        parsed = CustomerObject.model_validate(_as_dict(customer))
        if parsed.deleted:
            logger.warning(f"Customer {customer_id} has been deleted")
            return None
        return parsed
