"""Internal shapes for Stripe objects the reconciliation engine consumes.

The gateway builds these from verified Stripe payloads so dispatch never has
to reach into nested provider JSON.
"""
from datetime import datetime
from typing import Literal, Union

from pydantic import BaseModel, Field

from plansync.billing.types import SubscriptionStatus


class SubscriptionItem(BaseModel):
    id: str
    price_id: str | None = None


class SubscriptionSnapshot(BaseModel):
    """Point-in-time read of a Stripe subscription."""

    id: str
    status: SubscriptionStatus
    customer_id: str | None = None
    current_period_end: datetime | None = None
    items: list[SubscriptionItem] = Field(default_factory=list)

    @property
    def first_price_id(self) -> str | None:
        # Plans are sold one price per subscription; only the first item counts.
        return self.items[0].price_id if self.items else None

    def find_item_by_price(self, price_id: str) -> SubscriptionItem | None:
        for item in self.items:
            if item.price_id == price_id:
                return item
        return None


class CheckoutMetadata(BaseModel):
    """Context embedded into a checkout session when it is created."""

    user_id: str | None = None
    plan_id: str | None = None
    plan_kind: str | None = None


class CheckoutSession(BaseModel):
    session_id: str
    url: str


class _BaseEvent(BaseModel):
    event_id: str
    type: str


class CheckoutCompleted(_BaseEvent):
    kind: Literal["checkout_completed"] = "checkout_completed"
    session_id: str
    subscription_id: str | None = None
    customer_id: str | None = None
    metadata: CheckoutMetadata = Field(default_factory=CheckoutMetadata)


class InvoicePaid(_BaseEvent):
    kind: Literal["invoice_paid"] = "invoice_paid"
    invoice_id: str
    subscription_id: str | None = None


class SubscriptionUpdated(_BaseEvent):
    kind: Literal["subscription_updated"] = "subscription_updated"
    subscription_id: str
    # None when Stripe sent a status we do not know; the raw value is kept
    subscription: SubscriptionSnapshot | None = None
    unrecognized_status: str | None = None


class SubscriptionDeleted(_BaseEvent):
    kind: Literal["subscription_deleted"] = "subscription_deleted"
    subscription_id: str
    current_period_end: datetime | None = None


class OtherEvent(_BaseEvent):
    kind: Literal["other"] = "other"


Event = Union[CheckoutCompleted, InvoicePaid, SubscriptionUpdated, SubscriptionDeleted, OtherEvent]
