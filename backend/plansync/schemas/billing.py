"""Pydantic schemas for billing and profile endpoints."""
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from plansync.billing.types import PlanKind, SubscriptionStatus


class PlanOut(BaseModel):
    """Schema for a purchasable plan."""

    id: str
    name: str
    kind: PlanKind
    amount_cents: int | None
    currency: str

    model_config = ConfigDict(from_attributes=True)


class CheckoutRequest(BaseModel):
    plan_id: str | None = Field(default=None, description="Plan to subscribe to")


class CheckoutOut(BaseModel):
    session_id: str
    url: str


class UpgradeOut(BaseModel):
    subscription_id: str
    new_price_id: str


class PortalOut(BaseModel):
    url: str


class BillingProfileOut(BaseModel):
    """Billing fields of the current user."""

    id: UUID
    email: str
    name: str
    provider: str
    subscription_status: SubscriptionStatus | None
    current_plan_id: str | None
    current_plan_kind: PlanKind | None
    subscription_expires_at: datetime | None
    has_billing_account: bool
    is_free_trial_eligible: bool
    has_used_free_trial: bool
    last_login_at: datetime | None

    model_config = ConfigDict(from_attributes=True)


class UserSyncIn(BaseModel):
    """Identity asserted by the OAuth layer after login."""

    provider: str = Field(pattern="^(google|github|microsoft)$")
    provider_id: str = Field(min_length=1)
    email: EmailStr
    name: str = Field(min_length=1)


class UserSyncOut(BaseModel):
    id: UUID
    created: bool
