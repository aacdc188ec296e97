"""
Tier Resolver

Resolves the subscription tier for a processor price. The tier table itself
(``assist.domain.subscription.resolve_tier``) is a pure name match; this
service only fetches the product name when the price arrived unexpanded.
"""

import logging
from typing import Optional

from assist.domain.events import PriceObject
from assist.domain.subscription import SubscriptionTier, resolve_tier
from assist.infrastructure.payments.stripe_service import StripeService


logger = logging.getLogger(__name__)


class TierResolver:

    def __init__(self, stripe_service: StripeService):
        self._stripe = stripe_service

    @staticmethod
    def resolve_tier(product_name: Optional[str]) -> SubscriptionTier:
        """Tier for a product name; never raises."""
        return resolve_tier(product_name)

    async def resolve_price(self, price: Optional[PriceObject]) -> SubscriptionTier:
        """
        Tier for ``price``, fetching its product when only the id is known.

        Processor errors propagate; the caller decides whether to retry.
        """
        if price is None:
            return SubscriptionTier.MONTHLY

        name = price.product_name
        if name is None and price.product_id:
            product = await self._stripe.retrieve_product(price.product_id)
            name = product.name

        tier = self.resolve_tier(name)
        logger.debug(f"Resolved product {name!r} to tier {tier.value}")
        return tier
