"""
Inbound Event Models

Typed views of the processor's webhook envelope and of the objects the
reconciliation engine reads from it. Unknown fields are ignored so that
processor API additions never break parsing.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from assist.domain.subscription import (
    ACCOUNT_ID_METADATA_KEY,
    LEGACY_ACCOUNT_ID_METADATA_KEY,
    SubscriptionStatus,
    SubscriptionTier,
    SyncCommand,
    from_unix,
)


class EventType(str, Enum):
    """Event kinds the router knows how to handle."""
    CHECKOUT_COMPLETED = "checkout.session.completed"
    SUBSCRIPTION_CREATED = "customer.subscription.created"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    INVOICE_PAID = "invoice.paid"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"


def object_id(value: Union[str, dict, None]) -> Optional[str]:
    """Return the id of a processor reference that may or may not be expanded."""
    if value is None:
        return None
    if isinstance(value, str):
        return value or None
    return value.get("id")


def account_id_from_metadata(metadata: Optional[dict]) -> Optional[str]:
    if not metadata:
        return None
    return (
        metadata.get(ACCOUNT_ID_METADATA_KEY)
        or metadata.get(LEGACY_ACCOUNT_ID_METADATA_KEY)
        or None
    )


class _ProcessorObject(BaseModel):
    model_config = ConfigDict(extra="ignore")


# =============================================================================
# Processor Objects
# =============================================================================

class ProductObject(_ProcessorObject):
    id: str
    name: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)


class PriceObject(_ProcessorObject):
    id: str
    product: Union[str, ProductObject, None] = None

    @property
    def product_id(self) -> Optional[str]:
        if isinstance(self.product, ProductObject):
            return self.product.id
        return self.product

    @property
    def product_name(self) -> Optional[str]:
        if isinstance(self.product, ProductObject):
            return self.product.name
        return None


class SubscriptionItemObject(_ProcessorObject):
    price: Optional[PriceObject] = None
    current_period_end: Optional[int] = None


class SubscriptionItemList(_ProcessorObject):
    data: list[SubscriptionItemObject] = Field(default_factory=list)


class SubscriptionObject(_ProcessorObject):
    id: str
    customer: Union[str, dict, None] = None
    status: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    items: SubscriptionItemList = Field(default_factory=SubscriptionItemList)
    start_date: Optional[int] = None
    current_period_end: Optional[int] = None
    cancel_at_period_end: bool = False

    @property
    def customer_id(self) -> Optional[str]:
        return object_id(self.customer)

    @property
    def account_id(self) -> Optional[str]:
        return account_id_from_metadata(self.metadata)

    @property
    def first_price(self) -> Optional[PriceObject]:
        if not self.items.data:
            return None
        return self.items.data[0].price

    @property
    def period_end(self) -> Optional[datetime]:
        # Newer API versions moved the billing period onto the items
        if self.current_period_end is not None:
            return from_unix(self.current_period_end)
        if self.items.data:
            return from_unix(self.items.data[0].current_period_end)
        return None

    def to_sync_command(
        self,
        account_id: str,
        tier: SubscriptionTier,
        occurred_at: datetime,
        *,
        status: Optional[SubscriptionStatus] = None,
        cancel_at_period_end: Optional[bool] = None,
    ) -> SyncCommand:
        """Normalize this snapshot into a write command, optionally overriding status."""
        price = self.first_price
        return SyncCommand(
            account_id=account_id,
            status=status or SubscriptionStatus.from_processor(self.status),
            tier=tier,
            external_customer_id=self.customer_id,
            external_subscription_id=self.id,
            external_price_id=price.id if price else None,
            start_date=from_unix(self.start_date),
            current_period_end=self.period_end,
            cancel_at_period_end=(
                self.cancel_at_period_end
                if cancel_at_period_end is None
                else cancel_at_period_end
            ),
            event_timestamp=occurred_at,
        )


class CustomerObject(_ProcessorObject):
    id: str
    deleted: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def account_id(self) -> Optional[str]:
        return account_id_from_metadata(self.metadata)


class CheckoutSessionObject(_ProcessorObject):
    id: str
    url: Optional[str] = None
    mode: str = "payment"
    payment_status: Optional[str] = None
    customer: Union[str, dict, None] = None
    subscription: Union[str, dict, None] = None
    client_reference_id: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    amount_total: Optional[int] = None
    currency: Optional[str] = None

    @property
    def customer_id(self) -> Optional[str]:
        return object_id(self.customer)

    @property
    def subscription_id(self) -> Optional[str]:
        return object_id(self.subscription)

    @property
    def account_id(self) -> Optional[str]:
        return account_id_from_metadata(self.metadata) or self.client_reference_id or None


class InvoiceObject(_ProcessorObject):
    id: str
    customer: Union[str, dict, None] = None
    subscription: Union[str, dict, None] = None
    parent: Optional[dict[str, Any]] = None
    amount_paid: int = 0
    amount_due: int = 0
    currency: Optional[str] = None
    status: Optional[str] = None
    billing_reason: Optional[str] = None
    created: Optional[int] = None
    next_payment_attempt: Optional[int] = None
    last_finalization_error: Optional[dict[str, Any]] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def customer_id(self) -> Optional[str]:
        return object_id(self.customer)

    @property
    def subscription_id(self) -> Optional[str]:
        """Subscription reference, from either the legacy or the newer invoice shape."""
        direct = object_id(self.subscription)
        if direct:
            return direct
        details = (self.parent or {}).get("subscription_details") or {}
        return object_id(details.get("subscription"))

    @property
    def subscription_metadata(self) -> dict[str, Any]:
        details = (self.parent or {}).get("subscription_details") or {}
        return details.get("metadata") or {}

    @property
    def failure_reason(self) -> Optional[str]:
        if self.last_finalization_error:
            return self.last_finalization_error.get("message")
        return None


# =============================================================================
# Event Envelope
# =============================================================================

class EventData(_ProcessorObject):
    object: dict[str, Any]


class InboundEvent(_ProcessorObject):
    """Verified webhook event."""
    id: str
    type: str
    created: int
    data: EventData
    livemode: bool = False

    @property
    def kind(self) -> Optional[EventType]:
        """The known event kind, or None for types this service ignores."""
        try:
            return EventType(self.type)
        except ValueError:
            return None

    @property
    def occurred_at(self) -> datetime:
        """Processor-assigned event timestamp, the ordering key for writes."""
        return from_unix(self.created)

    @property
    def payload(self) -> dict[str, Any]:
        return self.data.object
