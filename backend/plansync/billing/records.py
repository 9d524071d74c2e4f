"""Lifecycle rules for the billing fields on ``User``.

Every write here is a single ``UPDATE`` on one row, committed immediately.
Preconditions that a concurrent webhook could invalidate are repeated in the
``WHERE`` clause instead of being trusted from an earlier read, and each
function reports whether a row actually matched.

``current_plan_kind`` is always copied from the ``Plan`` being attached; no
caller can set it independently.
"""
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from plansync.billing.types import SubscriptionStatus
from plansync.core.logging import get_logger
from plansync.db.models.plan import Plan
from plansync.db.models.user import User

logger = get_logger(__name__)


def as_utc(value: datetime | None) -> datetime | None:
    """Some drivers hand back naive timestamps; they are stored as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def get_user(db: Session, user_id: UUID | str) -> User | None:
    if isinstance(user_id, str):
        try:
            user_id = UUID(user_id)
        except ValueError:
            return None
    return db.get(User, user_id, populate_existing=True)


def find_by_subscription(db: Session, subscription_id: str) -> User | None:
    return db.execute(
        select(User).where(User.stripe_subscription_id == subscription_id)
    ).unique().scalar_one_or_none()


def _apply(db: Session, stmt) -> bool:
    result = db.execute(stmt.execution_options(synchronize_session=False))
    db.commit()
    return result.rowcount > 0


def set_customer_if_missing(db: Session, user_id: UUID, customer_id: str) -> str:
    """Store the Stripe customer unless one is already on file.

    Returns the customer id that ended up on the record, which is the
    earlier one if a concurrent checkout got there first.
    """
    stored = _apply(
        db,
        update(User)
        .where(User.id == user_id, User.stripe_customer_id.is_(None))
        .values(stripe_customer_id=customer_id),
    )
    if stored:
        return customer_id

    existing = db.execute(select(User.stripe_customer_id).where(User.id == user_id)).scalar_one()
    if existing != customer_id:
        logger.warning(
            f"User {user_id} already has Stripe customer {existing}; discarding {customer_id}"
        )
    return existing


def attach_subscription(
    db: Session,
    user_id: UUID,
    *,
    subscription_id: str,
    customer_id: str | None,
    plan: Plan,
    status: SubscriptionStatus,
    expires_at: datetime | None,
) -> bool:
    values = dict(
        stripe_subscription_id=subscription_id,
        current_plan_id=plan.id,
        current_plan_kind=plan.kind,
        subscription_status=status,
        subscription_expires_at=expires_at,
    )
    if customer_id:
        # The customer reference never changes once set
        values["stripe_customer_id"] = func.coalesce(User.stripe_customer_id, customer_id)
    return _apply(db, update(User).where(User.id == user_id).values(**values))


def refresh_subscription(
    db: Session,
    subscription_id: str,
    *,
    status: SubscriptionStatus,
    expires_at: datetime | None,
    plan: Plan | None = None,
) -> bool:
    """Copy status and expiry (and optionally plan) onto the subscribed user."""
    values = dict(subscription_status=status, subscription_expires_at=expires_at)
    if plan is not None:
        values.update(current_plan_id=plan.id, current_plan_kind=plan.kind)
    return _apply(
        db,
        update(User).where(User.stripe_subscription_id == subscription_id).values(**values),
    )


def detach_subscription(db: Session, subscription_id: str, *, expires_at: datetime) -> bool:
    return _apply(
        db,
        update(User)
        .where(User.stripe_subscription_id == subscription_id)
        .values(
            stripe_subscription_id=None,
            current_plan_id=None,
            current_plan_kind=None,
            subscription_status=SubscriptionStatus.canceled,
            subscription_expires_at=expires_at,
        ),
    )


def grant_trial(db: Session, user_id: UUID, *, plan: Plan, expires_at: datetime) -> bool:
    """Start the one free trial a user gets. Eligibility flips exactly once."""
    return _apply(
        db,
        update(User)
        .where(
            User.id == user_id,
            User.is_free_trial_eligible.is_(True),
            User.has_used_free_trial.is_(False),
            User.stripe_subscription_id.is_(None),
        )
        .values(
            subscription_status=SubscriptionStatus.trial,
            current_plan_id=plan.id,
            current_plan_kind=plan.kind,
            subscription_expires_at=expires_at,
            is_free_trial_eligible=False,
            has_used_free_trial=True,
        ),
    )


def end_trial_if_due(db: Session, user_id: UUID, *, now: datetime) -> bool:
    return _apply(
        db,
        update(User)
        .where(
            User.id == user_id,
            User.subscription_status == SubscriptionStatus.trial,
            User.stripe_subscription_id.is_(None),
            User.subscription_expires_at <= now,
        )
        .values(
            subscription_status=SubscriptionStatus.ended,
            current_plan_id=None,
            current_plan_kind=None,
        ),
    )
