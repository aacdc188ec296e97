"""
Payments Infrastructure Module

Stripe transport adapter, checkout session factory and webhook verification.
"""

from assist.infrastructure.payments.stripe_service import StripeService, build_stripe_client
from assist.infrastructure.payments.checkout_service import CheckoutSessionFactory
from assist.infrastructure.payments.event_verifier import EventVerifier

__all__ = [
    "StripeService",
    "build_stripe_client",
    "CheckoutSessionFactory",
    "EventVerifier",
]
