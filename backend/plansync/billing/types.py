"""Closed vocabularies for plans and subscription state.

Stripe reports statuses as strings; they are converted into
``SubscriptionStatus`` by the gateway and nowhere else. ``None`` stands for
"no subscription" on the billing record.
"""
from enum import Enum


class PlanKind(str, Enum):
    """Billing cadence of a plan."""

    trial = "trial"
    monthly = "monthly"
    yearly = "yearly"


class SubscriptionStatus(str, Enum):
    """Subscription lifecycle as stored on the user."""

    # Local only: a free trial granted without Stripe
    trial = "trial"

    # Mirrors Stripe's subscription.status
    active = "active"
    trialing = "trialing"
    past_due = "past_due"
    canceled = "canceled"
    unpaid = "unpaid"
    incomplete = "incomplete"
    incomplete_expired = "incomplete_expired"
    paused = "paused"

    # Local only: a trial or subscription that ran out
    ended = "ended"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {
        SubscriptionStatus.canceled,
        SubscriptionStatus.incomplete_expired,
        SubscriptionStatus.ended,
    }
)

# Values Stripe may send; ``trial`` and ``ended`` are never accepted from it.
STRIPE_STATUSES = frozenset(
    s for s in SubscriptionStatus if s not in (SubscriptionStatus.trial, SubscriptionStatus.ended)
)
