"""Stripe gateway.

The only module that talks to Stripe. Calls are blocking, bounded by an
explicit HTTP timeout, and every SDK error leaves here as a ``BillingError``:
``NotFound`` for missing Stripe objects, ``ProviderUnavailable`` for failures
a retry may fix, ``ProviderError`` for everything else.
Stripe's string vocabulary is converted to ``SubscriptionStatus`` in this
module and nowhere else.
"""
import json
from datetime import datetime, timezone
from typing import Any

import stripe

from plansync.billing.events import (
    CheckoutCompleted,
    CheckoutMetadata,
    CheckoutSession,
    Event,
    InvoicePaid,
    OtherEvent,
    SubscriptionDeleted,
    SubscriptionItem,
    SubscriptionSnapshot,
    SubscriptionUpdated,
)
from plansync.billing.types import STRIPE_STATUSES, SubscriptionStatus
from plansync.core.config import Settings, settings
from plansync.core.errors import (
    NotFound,
    ProviderError,
    ProviderUnavailable,
    UnrecognizedStatus,
    VerificationFailure,
)
from plansync.core.logging import get_logger
from plansync.db.models.plan import Plan
from plansync.db.models.user import User

logger = get_logger(__name__)


def configure_stripe(config: Settings) -> None:
    stripe.api_key = config.STRIPE_SECRET_KEY
    stripe.max_network_retries = config.STRIPE_MAX_NETWORK_RETRIES
    stripe.default_http_client = stripe.RequestsClient(timeout=config.STRIPE_TIMEOUT_SECONDS)


if settings.STRIPE_SECRET_KEY:
    configure_stripe(settings)
else:
    logger.warning("STRIPE_SECRET_KEY is not set. Stripe functionality will be unavailable.")


def _get(obj: Any, key: str, default: Any = None) -> Any:
    """Key lookup that works on both dicts and StripeObjects."""
    if obj is None:
        return default
    try:
        value = obj[key]
    except (KeyError, TypeError):
        return default
    return default if value is None else value


def _ref(value: Any) -> str | None:
    """Stripe fields hold either an id or the expanded object."""
    if value is None or isinstance(value, str):
        return value
    return _get(value, "id")


def _timestamp(value: Any) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _status(raw: str) -> SubscriptionStatus:
    try:
        status = SubscriptionStatus(raw)
    except ValueError:
        status = None
    if status not in STRIPE_STATUSES:
        raise UnrecognizedStatus(f"Unknown subscription status from Stripe: {raw!r}")
    return status


def _items(subscription: Any) -> list:
    return list(_get(_get(subscription, "items"), "data", []))


def _period_end(subscription: Any) -> datetime | None:
    # Newer API versions moved current_period_end onto the subscription items
    end = _get(subscription, "current_period_end")
    if end is None:
        items = _items(subscription)
        if items:
            end = _get(items[0], "current_period_end")
    return _timestamp(end)


def _snapshot(subscription: Any) -> SubscriptionSnapshot:
    return SubscriptionSnapshot(
        id=_get(subscription, "id"),
        status=_status(_get(subscription, "status")),
        customer_id=_ref(_get(subscription, "customer")),
        current_period_end=_period_end(subscription),
        items=[
            SubscriptionItem(id=_get(item, "id"), price_id=_ref(_get(item, "price")))
            for item in _items(subscription)
        ],
    )


def _invoice_subscription(invoice: Any) -> str | None:
    subscription = _ref(_get(invoice, "subscription"))
    if subscription is None:
        details = _get(_get(invoice, "parent"), "subscription_details")
        subscription = _ref(_get(details, "subscription"))
    return subscription


def parse_event(data: dict) -> Event:
    """Turn a verified Stripe event body into an internal Event."""
    event_id = data["id"]
    event_type = data["type"]
    obj = data["data"]["object"]

    if event_type == "checkout.session.completed":
        metadata = _get(obj, "metadata", {})
        return CheckoutCompleted(
            event_id=event_id,
            type=event_type,
            session_id=obj["id"],
            subscription_id=_ref(_get(obj, "subscription")),
            customer_id=_ref(_get(obj, "customer")),
            metadata=CheckoutMetadata(
                user_id=_get(metadata, "user_id"),
                plan_id=_get(metadata, "plan_id"),
                plan_kind=_get(metadata, "plan_kind"),
            ),
        )
    if event_type == "invoice.payment_succeeded":
        return InvoicePaid(
            event_id=event_id,
            type=event_type,
            invoice_id=obj["id"],
            subscription_id=_invoice_subscription(obj),
        )
    if event_type == "customer.subscription.updated":
        try:
            snapshot = _snapshot(obj)
        except UnrecognizedStatus:
            return SubscriptionUpdated(
                event_id=event_id,
                type=event_type,
                subscription_id=obj["id"],
                unrecognized_status=str(_get(obj, "status")),
            )
        return SubscriptionUpdated(
            event_id=event_id, type=event_type, subscription_id=snapshot.id, subscription=snapshot
        )
    if event_type == "customer.subscription.deleted":
        return SubscriptionDeleted(
            event_id=event_id,
            type=event_type,
            subscription_id=obj["id"],
            current_period_end=_period_end(obj),
        )
    return OtherEvent(event_id=event_id, type=event_type)


class StripeGateway:
    """Blocking wrapper around the Stripe SDK."""

    def __init__(self, webhook_secret: str | None = None):
        self.webhook_secret = webhook_secret

    def ensure_customer(self, user: User) -> str:
        try:
            customer = stripe.Customer.create(
                email=user.email,
                name=user.name,
                metadata={"user_id": str(user.id)},
                # Concurrent first checkouts get the same customer back
                idempotency_key=f"customer-create-{user.id}",
            )
        except stripe.StripeError as e:
            raise self._provider_error("create customer", e) from e
        return customer.id

    def create_checkout_session(
        self,
        customer_id: str,
        plan: Plan,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
    ) -> CheckoutSession:
        try:
            session = stripe.checkout.Session.create(
                customer=customer_id,
                line_items=[{"price": plan.stripe_price_id, "quantity": 1}],
                mode="subscription",
                success_url=success_url,
                cancel_url=cancel_url,
                metadata=metadata,
                subscription_data={"metadata": {"user_id": metadata["user_id"]}},
                allow_promotion_codes=True,
            )
        except stripe.StripeError as e:
            raise self._provider_error("create checkout session", e) from e
        return CheckoutSession(session_id=session.id, url=session.url)

    def retrieve_subscription(self, subscription_id: str) -> SubscriptionSnapshot:
        try:
            subscription = stripe.Subscription.retrieve(subscription_id)
        except stripe.StripeError as e:
            raise self._provider_error("retrieve subscription", e) from e
        return _snapshot(subscription)

    def update_subscription_item(self, subscription_id: str, item_id: str, price_id: str) -> SubscriptionSnapshot:
        try:
            subscription = stripe.Subscription.modify(
                subscription_id,
                items=[{"id": item_id, "price": price_id}],
            )
        except stripe.StripeError as e:
            raise self._provider_error("update subscription", e) from e
        return _snapshot(subscription)

    def create_portal_session(self, customer_id: str, return_url: str) -> str:
        try:
            session = stripe.billing_portal.Session.create(
                customer=customer_id,
                return_url=return_url,
            )
        except stripe.StripeError as e:
            raise self._provider_error("create portal session", e) from e
        return session.url

    def verify_and_parse_event(self, payload: bytes, signature: str | None) -> Event:
        if not self.webhook_secret:
            raise VerificationFailure("Webhook secret not configured")
        if not signature:
            raise VerificationFailure("Missing Stripe-Signature header")

        try:
            body = payload.decode("utf-8")
            stripe.WebhookSignature.verify_header(
                body, signature, self.webhook_secret, stripe.Webhook.DEFAULT_TOLERANCE
            )
        except UnicodeDecodeError as e:
            raise VerificationFailure("Invalid payload encoding") from e
        except stripe.SignatureVerificationError as e:
            raise VerificationFailure(f"Invalid signature: {e.user_message or e}") from e

        try:
            return parse_event(json.loads(body))
        except (ValueError, KeyError, TypeError) as e:
            raise VerificationFailure(f"Invalid payload: {e}") from e

    @staticmethod
    def _provider_error(action: str, error: stripe.StripeError) -> ProviderError | NotFound:
        message = error.user_message or str(error) or f"Stripe could not {action}"
        if isinstance(error, stripe.InvalidRequestError) and (
            error.http_status == 404 or error.code == "resource_missing"
        ):
            logger.warning(f"Stripe could not {action}: {message}")
            return NotFound(message)

        logger.error(f"Stripe failed to {action}: {message}")
        if isinstance(error, (stripe.APIConnectionError, stripe.RateLimitError)) or (
            error.http_status or 0
        ) >= 500:
            return ProviderUnavailable(message)
        return ProviderError(message)
