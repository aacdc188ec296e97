"""
Subscription Domain Models

Domain models for the payment and subscription bounded context.
Enums, entities, the tier rule table and the anti-regression rule used by
every writer of subscription state.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class SubscriptionStatus(str, Enum):
    """Subscription lifecycle status, mirroring the processor's vocabulary."""
    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    UNPAID = "unpaid"
    CANCELED = "canceled"
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"

    @classmethod
    def from_processor(cls, value: Optional[str]) -> "SubscriptionStatus":
        """
        Map a processor status string onto the internal enum.

        Unrecognized values (e.g. "paused") map to INCOMPLETE so that they
        never grant access.
        """
        try:
            return cls(value)
        except ValueError:
            return cls.INCOMPLETE


class SubscriptionTier(str, Enum):
    """Subscription tier levels."""
    FREE = "free"
    MONTHLY = "monthly"
    ANNUAL = "annual"
    LIFETIME = "lifetime"


class CheckoutMode(str, Enum):
    """Checkout transaction mode, using the processor's mode names."""
    ONE_TIME = "payment"
    SUBSCRIPTION = "subscription"


ACCESS_GRANTING_STATUSES = frozenset({
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.TRIALING,
})

# Metadata key carrying the internal account id on processor objects.
ACCOUNT_ID_METADATA_KEY = "account_id"
# Key written by the previous web client; still present on older customers.
LEGACY_ACCOUNT_ID_METADATA_KEY = "userId"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def from_unix(value: Optional[int]) -> Optional[datetime]:
    """Convert a processor unix timestamp (seconds) into an aware datetime."""
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def grants_access(status: Optional[SubscriptionStatus]) -> bool:
    """Whether a subscription in this status unlocks premium features."""
    return status in ACCESS_GRANTING_STATUSES


# =============================================================================
# Tier Resolution (Business Logic)
# =============================================================================

TIER_NAME_RULES = (
    ("annual", SubscriptionTier.ANNUAL),
    ("lifetime", SubscriptionTier.LIFETIME),
)


def resolve_tier(product_name: Optional[str]) -> SubscriptionTier:
    """
    Map a processor product name to a subscription tier.

    Case-insensitive substring match, first rule wins. Anything that matches
    no rule (including an empty name) is MONTHLY.
    """
    name = (product_name or "").lower()
    for needle, tier in TIER_NAME_RULES:
        if needle in name:
            return tier
    return SubscriptionTier.MONTHLY


# =============================================================================
# Domain Entities
# =============================================================================

class SubscriptionRecord(BaseModel):
    """Stored subscription state for one account."""
    account_id: str
    status: SubscriptionStatus
    tier: SubscriptionTier = SubscriptionTier.FREE
    external_customer_id: Optional[str] = None
    external_subscription_id: Optional[str] = None
    external_price_id: Optional[str] = None
    start_date: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AccountAccessFlag(BaseModel):
    """Denormalized access view stored on the account."""
    account_id: str
    has_active_access: bool = False
    status: Optional[SubscriptionStatus] = None
    tier: SubscriptionTier = SubscriptionTier.FREE
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @classmethod
    def from_record(cls, record: SubscriptionRecord) -> "AccountAccessFlag":
        """Derive the access flag from a subscription record."""
        return cls(
            account_id=record.account_id,
            has_active_access=grants_access(record.status),
            status=record.status,
            tier=record.tier,
            updated_at=record.updated_at,
        )


class SyncCommand(BaseModel):
    """Normalized input to the subscription write protocol."""
    account_id: str
    status: SubscriptionStatus
    tier: SubscriptionTier
    external_customer_id: Optional[str] = None
    external_subscription_id: Optional[str] = None
    external_price_id: Optional[str] = None
    start_date: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    event_timestamp: datetime

    def to_record(self) -> SubscriptionRecord:
        return SubscriptionRecord(
            account_id=self.account_id,
            status=self.status,
            tier=self.tier,
            external_customer_id=self.external_customer_id,
            external_subscription_id=self.external_subscription_id,
            external_price_id=self.external_price_id,
            start_date=self.start_date,
            current_period_end=self.current_period_end,
            cancel_at_period_end=self.cancel_at_period_end,
            updated_at=self.event_timestamp,
        )


# Tie-break order for writes carrying the same timestamp. Higher wins.
STATUS_PRECEDENCE = {
    SubscriptionStatus.CANCELED: 3,
    SubscriptionStatus.ACTIVE: 2,
    SubscriptionStatus.TRIALING: 2,
    SubscriptionStatus.PAST_DUE: 1,
    SubscriptionStatus.UNPAID: 1,
    SubscriptionStatus.INCOMPLETE: 0,
    SubscriptionStatus.INCOMPLETE_EXPIRED: 0,
}


def status_precedence(status: SubscriptionStatus) -> int:
    return STATUS_PRECEDENCE.get(status, 0)


def is_stale_write(stored: SubscriptionRecord, incoming: SubscriptionRecord) -> bool:
    """
    Anti-regression rule shared by the sync service and the stores.

    A write is stale when the stored record is newer. On an exact timestamp
    tie the status with the lower precedence loses, so a deletion and an
    update emitted in the same second resolve to CANCELED in either order and
    a late ``created(incomplete)`` cannot undo an ``updated(active)``. Equal
    precedence applies, which keeps redelivery of the same event idempotent.
    """
    if stored.updated_at > incoming.updated_at:
        return True
    if stored.updated_at == incoming.updated_at:
        return status_precedence(incoming.status) < status_precedence(stored.status)
    return False


class SyncOutcome(str, Enum):
    """What the reconciliation engine did with an event."""
    APPLIED = "applied"
    STALE = "stale"
    IGNORED = "ignored"
    RECORDED = "recorded"


# =============================================================================
# Checkout
# =============================================================================

class SessionRef(BaseModel):
    """Opaque reference to a processor checkout session."""
    session_id: str
    url: Optional[str] = None


class CheckoutOutcome(BaseModel):
    """Result of a completed checkout, read back by the return-flow UI."""
    account_id: str
    mode: CheckoutMode
    external_subscription_id: Optional[str] = None
    amount_paid: Optional[int] = None


class PaymentRecord(BaseModel):
    """One invoice outcome, kept for the admin payments view."""
    invoice_id: str
    account_id: str
    external_subscription_id: Optional[str] = None
    external_customer_id: Optional[str] = None
    amount: int = 0
    currency: Optional[str] = None
    status: str
    succeeded: bool
    billing_reason: Optional[str] = None
    failure_reason: Optional[str] = None
    next_payment_attempt: Optional[datetime] = None
    occurred_at: datetime

    model_config = ConfigDict(from_attributes=True)


# =============================================================================
# Request/Response DTOs
# =============================================================================

class CreateSubscriptionCheckoutRequest(BaseModel):
    """Request DTO for a recurring subscription checkout."""
    price_id: Optional[str] = Field(
        default=None,
        description="Processor price id; defaults to the configured subscription price"
    )
    success_url: str = Field(..., description="Redirect URL after successful payment")
    cancel_url: str = Field(..., description="Redirect URL after cancelled payment")


class CreateDonationCheckoutRequest(BaseModel):
    """Request DTO for a one-time donation checkout."""
    amount: int = Field(..., description="Donation amount in minor currency units")
    success_url: str = Field(..., description="Redirect URL after successful payment")
    cancel_url: str = Field(..., description="Redirect URL after cancelled payment")


class CheckoutResponse(BaseModel):
    """Response DTO for checkout session creation."""
    session_id: str
    checkout_url: Optional[str] = None


class AccessResponse(BaseModel):
    """Response DTO for the access gate."""
    account_id: str
    has_active_access: bool
