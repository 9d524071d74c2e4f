"""Subscription reconciliation.

Keeps each user's billing record in agreement with Stripe across three
entry points: checkout initiation, synchronous upgrade/portal actions, and
asynchronous webhook events. Webhook handlers always write the absolute state
read from Stripe, never deltas, so redelivered or reordered events converge.
"""
from datetime import datetime, timedelta, timezone
from typing import Callable

from sqlalchemy.orm import Session

from plansync.billing import records
from plansync.billing.catalog import PlanCatalog
from plansync.billing.events import (
    CheckoutCompleted,
    CheckoutSession,
    Event,
    InvoicePaid,
    SubscriptionDeleted,
    SubscriptionUpdated,
)
from plansync.billing.gateway import StripeGateway
from plansync.billing.types import PlanKind, SubscriptionStatus
from plansync.core.config import Settings
from plansync.core.errors import (
    InternalInconsistency,
    InvalidInput,
    Misconfigured,
    NotFound,
    PreconditionFailed,
    ProviderError,
    ProviderUnavailable,
)
from plansync.core.logging import get_logger
from plansync.db.models.plan import Plan
from plansync.db.models.user import User

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReconciliationEngine:
    def __init__(
        self,
        db: Session,
        gateway: StripeGateway,
        settings: Settings,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.db = db
        self.gateway = gateway
        self.settings = settings
        self.catalog = PlanCatalog(db)
        self.clock = clock

    # ------------------------------------------------------------------
    # User actions
    # ------------------------------------------------------------------

    def list_plans(self) -> list[Plan]:
        return self.catalog.list_active()

    def start_checkout(self, user: User, plan_id: str | None) -> CheckoutSession:
        if not plan_id or not plan_id.strip():
            raise InvalidInput("Plan ID is required to create a checkout session.")
        try:
            plan = self.catalog.find_by_id(plan_id.strip())
        except NotFound:
            raise InvalidInput("Selected plan not found or is inactive.") from None
        if plan.kind == PlanKind.trial:
            raise InvalidInput("The free trial is started without checkout.")
        if user.stripe_subscription_id and not (
            user.subscription_status and user.subscription_status.is_terminal
        ):
            raise PreconditionFailed(
                "You already have a subscription. Use the billing portal or upgrade instead."
            )
        if not plan.stripe_price_id:
            logger.error(f"Plan {plan.id} has no Stripe price")
            raise Misconfigured(f"Plan {plan.id} is misconfigured.")

        customer_id = user.stripe_customer_id
        if not customer_id:
            # Persisted before the session exists so a retry reuses it
            customer_id = records.set_customer_if_missing(
                self.db, user.id, self.gateway.ensure_customer(user)
            )

        frontend = self.settings.FRONTEND_URL
        session = self.gateway.create_checkout_session(
            customer_id,
            plan,
            success_url=f"{frontend}/dashboard?payment=success&session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{frontend}/dashboard?payment=canceled",
            metadata={
                "user_id": str(user.id),
                "plan_id": plan.id,
                "plan_kind": plan.kind.value,
            },
        )
        logger.info(f"Checkout session {session.session_id} created for user {user.id} ({plan.id})")
        return session

    def upgrade_to_yearly(self, user: User) -> dict:
        if (
            not user.stripe_subscription_id
            or user.subscription_status != SubscriptionStatus.active
            or user.current_plan_kind != PlanKind.monthly
        ):
            raise PreconditionFailed("You must have an active Monthly plan to upgrade to Yearly.")

        yearly = self.catalog.find_active_by_kind(PlanKind.yearly)
        if not yearly.stripe_price_id:
            logger.error(f"Yearly plan ({yearly.name}) missing Stripe price ID.")
            raise Misconfigured("Yearly plan misconfigured.")

        current = user.current_plan
        if current is None or not current.stripe_price_id:
            raise InternalInconsistency(f"User {user.id} has no priced plan on file.")

        try:
            snapshot = self.gateway.retrieve_subscription(user.stripe_subscription_id)
        except NotFound:
            raise InternalInconsistency(
                f"Subscription {user.stripe_subscription_id} no longer exists in Stripe."
            ) from None
        item = snapshot.find_item_by_price(current.stripe_price_id)
        if item is None:
            logger.error(
                f"Subscription {snapshot.id} has no item priced {current.stripe_price_id} "
                f"for user {user.id}"
            )
            raise InternalInconsistency("Could not find current subscription item.")

        # The local record follows once customer.subscription.updated arrives
        updated = self.gateway.update_subscription_item(snapshot.id, item.id, yearly.stripe_price_id)
        logger.info(f"User {user.id} upgrade to {yearly.id} requested on {updated.id}")
        return {"subscription_id": updated.id, "new_price_id": yearly.stripe_price_id}

    def manage_portal(self, user: User) -> str:
        if not user.stripe_customer_id:
            raise PreconditionFailed(
                "You do not have an active Stripe customer ID to manage subscriptions."
            )
        return self.gateway.create_portal_session(
            user.stripe_customer_id,
            return_url=f"{self.settings.FRONTEND_URL}/dashboard?portal=return",
        )

    def start_free_trial(self, user: User) -> User:
        if (
            not user.is_free_trial_eligible
            or user.has_used_free_trial
            or user.stripe_subscription_id
        ):
            raise PreconditionFailed("Free trial is not available for this account.")

        plan = self.catalog.find_active_by_kind(PlanKind.trial)
        expires_at = self.clock() + timedelta(days=self.settings.FREE_TRIAL_DAYS)
        if not records.grant_trial(self.db, user.id, plan=plan, expires_at=expires_at):
            # Someone else consumed the trial or subscribed since we read the user
            raise PreconditionFailed("Free trial is not available for this account.")

        logger.info(f"User {user.id} started free trial until {expires_at.isoformat()}")
        return records.get_user(self.db, user.id)

    def expire_trial_if_due(self, user: User) -> User:
        expires_at = records.as_utc(user.subscription_expires_at)
        if (
            user.subscription_status != SubscriptionStatus.trial
            or expires_at is None
            or expires_at > self.clock()
        ):
            return user
        if records.end_trial_if_due(self.db, user.id, now=self.clock()):
            logger.info(f"Free trial for user {user.id} ended")
        return records.get_user(self.db, user.id)

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    def handle_provider_event(self, payload: bytes, signature: str | None) -> Event:
        """Verify, then apply a Stripe event.

        Raises ``VerificationFailure`` for bad signatures and
        ``ProviderUnavailable`` when Stripe cannot be reached mid-handling;
        any other outcome, including dropped events, is a success.
        """
        event = self.gateway.verify_and_parse_event(payload, signature)
        logger.info(f"Stripe event {event.event_id} ({event.type})")

        try:
            if isinstance(event, CheckoutCompleted):
                self._on_checkout_completed(event)
            elif isinstance(event, InvoicePaid):
                self._on_invoice_paid(event)
            elif isinstance(event, SubscriptionUpdated):
                self._on_subscription_updated(event)
            elif isinstance(event, SubscriptionDeleted):
                self._on_subscription_deleted(event)
            else:
                logger.info(f"Unhandled event type {event.type}")
        except ProviderUnavailable:
            raise
        except (NotFound, ProviderError) as e:
            # Redelivery cannot fix these
            logger.error(f"Dropping Stripe event {event.event_id} ({event.type}): {e.message}")
        return event

    def _on_checkout_completed(self, event: CheckoutCompleted) -> None:
        if not event.subscription_id:
            logger.warning(f"Checkout session {event.session_id} completed but no subscription attached.")
            return

        snapshot = self.gateway.retrieve_subscription(event.subscription_id)
        meta = event.metadata
        user = records.get_user(self.db, meta.user_id) if meta.user_id else None
        plan = None
        if meta.plan_id:
            try:
                plan = self.catalog.find_by_id(meta.plan_id, active_only=False)
            except NotFound:
                plan = None
        if user is None or plan is None:
            logger.error(
                f"User or Plan not found for checkout.session.completed. "
                f"UserID: {meta.user_id}, PlanID: {meta.plan_id}"
            )
            return

        if snapshot.status.is_terminal:
            # A replay after cancellation must not re-attach a dead subscription
            logger.warning(
                f"Ignoring checkout {event.session_id}: subscription {snapshot.id} is {snapshot.status.value}"
            )
            return
        if meta.plan_kind and meta.plan_kind != plan.kind.value:
            logger.warning(
                f"Checkout {event.session_id} metadata says {meta.plan_kind} but plan {plan.id} is {plan.kind.value}"
            )
        if (
            user.stripe_subscription_id
            and user.stripe_subscription_id != snapshot.id
            and not (user.subscription_status and user.subscription_status.is_terminal)
        ):
            logger.error(
                f"User {user.id} subscription {user.stripe_subscription_id} is replaced by "
                f"{snapshot.id}; the old one is still live in Stripe"
            )

        customer_id = event.customer_id or snapshot.customer_id
        if user.stripe_customer_id and customer_id and customer_id != user.stripe_customer_id:
            logger.error(
                f"Checkout {event.session_id} paid by customer {customer_id}, "
                f"user {user.id} has {user.stripe_customer_id}; keeping the stored customer"
            )

        records.attach_subscription(
            self.db,
            user.id,
            subscription_id=snapshot.id,
            customer_id=customer_id,
            plan=plan,
            status=snapshot.status,
            expires_at=snapshot.current_period_end,
        )
        logger.info(f"User {user.email} subscription updated to {plan.name}.")

    def _on_invoice_paid(self, event: InvoicePaid) -> None:
        if not event.subscription_id:
            return

        snapshot = self.gateway.retrieve_subscription(event.subscription_id)
        if records.refresh_subscription(
            self.db,
            snapshot.id,
            status=snapshot.status,
            expires_at=snapshot.current_period_end,
        ):
            logger.info(f"Subscription {snapshot.id} extended via invoice {event.invoice_id}.")
        else:
            logger.warning(
                f"User not found for subscription ID {snapshot.id} during invoice.payment_succeeded."
            )

    def _on_subscription_updated(self, event: SubscriptionUpdated) -> None:
        user = records.find_by_subscription(self.db, event.subscription_id)
        if user is None:
            logger.info(f"No user holds subscription {event.subscription_id}; update dropped")
            return
        snapshot = event.subscription
        if snapshot is None:
            logger.error(
                f"Subscription {event.subscription_id} of user {user.id} reported unknown "
                f"status {event.unrecognized_status!r}; update dropped"
            )
            return

        plan = None
        price_id = snapshot.first_price_id
        on_file = user.current_plan.stripe_price_id if user.current_plan else None
        if price_id and price_id != on_file:
            plan = self.catalog.find_by_price_id(price_id)
            if plan is None:
                logger.warning(f"No plan for price {price_id} on subscription {snapshot.id}; plan unchanged")

        records.refresh_subscription(
            self.db,
            snapshot.id,
            status=snapshot.status,
            expires_at=snapshot.current_period_end,
            plan=plan,
        )
        logger.info(
            f"Subscription {snapshot.id} details updated (status: {snapshot.status.value}, "
            f"expires: {snapshot.current_period_end}, plan: {plan.id if plan else 'unchanged'})."
        )

    def _on_subscription_deleted(self, event: SubscriptionDeleted) -> None:
        expires_at = event.current_period_end or self.clock()
        if records.detach_subscription(self.db, event.subscription_id, expires_at=expires_at):
            logger.info(f"Subscription {event.subscription_id} marked as canceled.")
        else:
            logger.warning(f"User not found for deleted subscription {event.subscription_id}")
