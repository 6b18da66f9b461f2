from __future__ import annotations

import hashlib
import hmac
import json
import time
from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from database.models import SubscriberTable
from database.session import build_engine, build_session_factory
from svc.errors import UpstreamFetchError
from svc.events import LineItemTokens
from utils.config import Settings

WEBHOOK_SECRET = "whsec_test_secret"
ADMIN_SECRET = "admin-secret"


class FakeProcessor:
    """In-memory stand-in for the Stripe API."""

    def __init__(self) -> None:
        self.customers: Dict[str, Dict[str, Any]] = {}
        self.subscriptions: Dict[str, Optional[LineItemTokens]] = {}
        self.product_prices: Dict[str, str] = {}
        self.fail_lookups = False
        self.fail_checkout = False
        self.calls: List[tuple] = []

    def get_customer_email(self, customer_id: str) -> Optional[str]:
        self.calls.append(("customer", customer_id))
        if self.fail_lookups:
            raise UpstreamFetchError(f"Failed to retrieve customer {customer_id}")
        customer = self.customers.get(customer_id) or {}
        if customer.get("deleted"):
            return None
        return customer.get("email")

    def get_subscription_tokens(self, subscription_id: str) -> Optional[LineItemTokens]:
        self.calls.append(("subscription", subscription_id))
        if self.fail_lookups:
            raise UpstreamFetchError(f"Failed to retrieve subscription {subscription_id}")
        return self.subscriptions.get(subscription_id)

    def resolve_checkout_price(self, token: str) -> str:
        self.calls.append(("price", token))
        if token.startswith("price_"):
            return token
        if token in self.product_prices:
            return self.product_prices[token]
        raise ValueError(f"No active monthly price for product {token}")

    def create_checkout_url(self, price_id: str, *, success_url: str, cancel_url: str) -> str:
        self.calls.append(("checkout", price_id, success_url, cancel_url))
        if self.fail_checkout:
            raise UpstreamFetchError("Unable to initiate checkout session with Stripe.")
        return f"https://checkout.stripe.test/c/{price_id}"


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    """Build a ``stripe-signature`` header the way Stripe signs deliveries."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def make_event(event_type: str, obj: Dict[str, Any], event_id: str = "evt_test_1") -> Dict[str, Any]:
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "livemode": False,
        "created": 1_700_000_000,
        "data": {"object": obj},
    }


def checkout_session(
    *,
    email: Optional[str] = "a@x.com",
    customer_email: Optional[str] = None,
    customer: Optional[str] = None,
    subscription: Optional[Any] = "sub_basic",
    mode: str = "subscription",
) -> Dict[str, Any]:
    return {
        "id": "cs_test_1",
        "object": "checkout.session",
        "mode": mode,
        "customer": customer,
        "customer_email": customer_email,
        "customer_details": {"email": email} if email is not None else None,
        "subscription": subscription,
    }


def encode(event: Dict[str, Any]) -> bytes:
    return json.dumps(event, separators=(",", ":")).encode("utf-8")


@pytest.fixture
def settings() -> Settings:
    return Settings(
        stripe_secret_key="sk_test_123",
        stripe_webhook_secret=WEBHOOK_SECRET,
        price_basic="price_basic",
        price_pro="price_pro",
        price_elite="price_elite",
        admin_secret=ADMIN_SECRET,
        database_url="sqlite://",
    )


@pytest.fixture
def processor() -> FakeProcessor:
    fake = FakeProcessor()
    fake.subscriptions = {
        "sub_basic": LineItemTokens(price="price_basic", product="prod_basic"),
        "sub_pro": LineItemTokens(price="price_pro", product="prod_pro"),
        "sub_elite": LineItemTokens(price="price_elite", product="prod_elite"),
        "sub_unknown": LineItemTokens(price="price_unknown", product="prod_unknown"),
        "sub_empty": None,
    }
    return fake


@pytest.fixture
def subscribers(settings) -> SubscriberTable:
    return SubscriberTable.from_settings(settings)


@pytest.fixture
def engine(subscribers):
    engine = build_engine("sqlite://")
    subscribers.create(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def client(settings, processor, engine):
    from main import create_app

    app = create_app(settings, processor=processor, engine=engine)
    with TestClient(app) as test_client:
        yield test_client
