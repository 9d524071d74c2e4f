"""
Pytest configuration and fixtures for testing
"""
import hashlib
import hmac
import json
import os
import time
import uuid
from datetime import datetime, timezone

# Settings are read at import time; point everything at test values first.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("AUTH_BRIDGE_TOKEN", "test-bridge-token")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("FRONTEND_URL", "https://app.example.com")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from plansync.api.deps import get_gateway
from plansync.billing.events import CheckoutSession, SubscriptionItem, SubscriptionSnapshot
from plansync.billing.gateway import StripeGateway
from plansync.billing.reconciliation import ReconciliationEngine
from plansync.billing.types import PlanKind, SubscriptionStatus
from plansync.core.config import settings
from plansync.core.errors import NotFound, ProviderUnavailable
from plansync.db.base import Base
from plansync.db.models.plan import Plan
from plansync.db.models.user import User
from plansync.db.session import get_db
from plansync.main import app

WEBHOOK_SECRET = os.environ["STRIPE_WEBHOOK_SECRET"]
BRIDGE_TOKEN = os.environ["AUTH_BRIDGE_TOKEN"]

# One in-memory database shared by the test session and the app's threadpool
test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(bind=test_engine, autocommit=False, autoflush=False)

PERIOD_END = datetime(2026, 11, 18, 12, 0, tzinfo=timezone.utc)


class FakeGateway(StripeGateway):
    """In-memory Stripe. Webhook verification is inherited and real."""

    def __init__(self):
        super().__init__(webhook_secret=WEBHOOK_SECRET)
        self.calls: list[tuple] = []
        self.subscriptions: dict[str, SubscriptionSnapshot] = {}
        # Stripe replays idempotent creates, so one customer per user id
        self.customers: dict = {}
        self.fail_on: set[str] = set()

    def _record(self, name, *args):
        self.calls.append((name, *args))
        if name in self.fail_on:
            raise ProviderUnavailable(f"Stripe is down ({name})")

    def calls_named(self, name):
        return [call for call in self.calls if call[0] == name]

    def ensure_customer(self, user):
        self._record("ensure_customer", user.id)
        return self.customers.setdefault(user.id, f"cus_{len(self.customers) + 1}")

    def create_checkout_session(self, customer_id, plan, success_url, cancel_url, metadata):
        self._record("create_checkout_session", customer_id, plan.id, success_url, cancel_url, metadata)
        return CheckoutSession(session_id="cs_test_1", url="https://checkout.stripe.test/cs_test_1")

    def retrieve_subscription(self, subscription_id):
        self._record("retrieve_subscription", subscription_id)
        if subscription_id not in self.subscriptions:
            raise NotFound(f"No such subscription: '{subscription_id}'")
        return self.subscriptions[subscription_id]

    def update_subscription_item(self, subscription_id, item_id, price_id):
        self._record("update_subscription_item", subscription_id, item_id, price_id)
        current = self.subscriptions[subscription_id]
        return current.model_copy(update={"items": [SubscriptionItem(id=item_id, price_id=price_id)]})

    def create_portal_session(self, customer_id, return_url):
        self._record("create_portal_session", customer_id, return_url)
        return f"https://billing.stripe.test/session/{customer_id}"

    def add_subscription(self, subscription_id="sub_1", status="active", price_id="price_monthly",
                         customer_id="cus_1", period_end=PERIOD_END):
        snapshot = SubscriptionSnapshot(
            id=subscription_id,
            status=SubscriptionStatus(status),
            customer_id=customer_id,
            current_period_end=period_end,
            items=[SubscriptionItem(id=f"si_{subscription_id}", price_id=price_id)],
        )
        self.subscriptions[subscription_id] = snapshot
        return snapshot


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Build a Stripe-Signature header the way Stripe does."""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def stripe_event(event_type: str, obj: dict, event_id: str = "evt_1") -> bytes:
    return json.dumps(
        {"id": event_id, "object": "event", "type": event_type, "data": {"object": obj}}
    ).encode("utf-8")


def subscription_object(subscription_id="sub_1", status="active", price_id="price_monthly",
                        customer="cus_1", period_end=PERIOD_END) -> dict:
    return {
        "id": subscription_id,
        "object": "subscription",
        "status": status,
        "customer": customer,
        "current_period_end": int(period_end.timestamp()) if period_end else None,
        "items": {
            "object": "list",
            "data": [{"id": f"si_{subscription_id}", "price": {"id": price_id, "object": "price"}}],
        },
    }


@pytest.fixture
def db():
    """Fresh schema per test."""
    Base.metadata.create_all(bind=test_engine)
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def plans(db):
    rows = {
        "trial": Plan(id="trial", name="Free Trial", kind=PlanKind.trial, stripe_price_id=None, amount_cents=0),
        "monthly": Plan(id="monthly", name="Monthly", kind=PlanKind.monthly,
                        stripe_price_id="price_monthly", amount_cents=900),
        "yearly": Plan(id="yearly", name="Yearly", kind=PlanKind.yearly,
                       stripe_price_id="price_yearly", amount_cents=9000),
        "legacy": Plan(id="legacy", name="Legacy Monthly", kind=PlanKind.monthly,
                       stripe_price_id="price_legacy", amount_cents=500, is_active=False),
    }
    db.add_all(rows.values())
    db.commit()
    return rows


@pytest.fixture
def make_user(db):
    def _make(**fields):
        n = uuid.uuid4().hex[:8]
        user = User(
            email=f"user-{n}@example.com",
            name=f"User {n}",
            provider="google",
            provider_id=f"google-{n}",
            **fields,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def subscribed_user(make_user, plans):
    """A user on an active monthly Stripe subscription."""
    return make_user(
        stripe_customer_id="cus_1",
        stripe_subscription_id="sub_1",
        subscription_status=SubscriptionStatus.active,
        current_plan_id="monthly",
        current_plan_kind=PlanKind.monthly,
        subscription_expires_at=PERIOD_END,
    )


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def engine(db, gateway):
    return ReconciliationEngine(db, gateway, settings)


@pytest.fixture
def client(db, gateway):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_gateway] = lambda: gateway
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def auth_headers(user) -> dict:
    return {"Authorization": f"Bearer {BRIDGE_TOKEN}", "X-User-Id": str(user.id)}
