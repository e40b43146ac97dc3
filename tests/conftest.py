"""Pytest configuration and fixtures."""

import copy
import itertools
import json
import os
import re
import threading
from pathlib import Path
from typing import Any, Dict, Generator, List, Optional

import pytest
from fastapi.testclient import TestClient

# Set test environment before importing app
os.environ["DEBUG"] = "true"
os.environ["SUPABASE_URL"] = ""
os.environ["SUPABASE_ANON_KEY"] = ""
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test"

from billsync.services import BillingService, InMemoryDirectory, PlanCatalog  # noqa: E402
from billsync.storage import SQLiteBillingStore  # noqa: E402

PERIOD_END = 1893456000  # 2030-01-01T00:00:00Z
VALID_SIGNATURE = "t=1,v1=valid"

OWNER_ID = "user-owner"
MEMBER_ID = "user-member"
OUTSIDER_ID = "user-outsider"
ORG_ID = "org-acme"

PRICE_AMOUNTS = {
    "pro_monthly": (2000, {"interval": "month", "interval_count": 1}),
    "pro_quarterly": (5400, {"interval": "month", "interval_count": 3}),
    "pro_yearly": (19200, {"interval": "year", "interval_count": 1}),
    "max_lifetime": (39900, None),
    "pro_team_monthly": (2500, {"interval": "month", "interval_count": 1}),
    "pro_team_yearly": (24000, {"interval": "year", "interval_count": 1}),
}


def make_price(lookup_key: str) -> Dict[str, Any]:
    amount, recurring = PRICE_AMOUNTS[lookup_key]
    return {
        "id": f"price_{lookup_key}",
        "object": "price",
        "lookup_key": lookup_key,
        "unit_amount": amount,
        "currency": "usd",
        "recurring": recurring,
        "active": True,
    }


class FakeStripeGateway:
    """
    In-memory stand-in for StripeGateway.

    Keeps customers, subscriptions, payment intents and checkout sessions
    as plain dicts and records every call.
    """

    def __init__(self):
        self.calls: List[tuple] = []
        self.customers: Dict[str, Dict[str, Any]] = {}
        self.subscriptions: Dict[str, Dict[str, Any]] = {}
        self.payment_intents: List[Dict[str, Any]] = []
        self.sessions: Dict[str, Dict[str, Any]] = {}
        self.prices: Dict[str, Dict[str, Any]] = {key: make_price(key) for key in PRICE_AMOUNTS}
        self.invoice_preview = {
            "amount_due": 1733,
            "currency": "usd",
            "next_payment_attempt": PERIOD_END,
        }
        self.search_error: Optional[Exception] = None
        self.price_error: Optional[Exception] = None
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def _id(self, prefix: str) -> str:
        with self._lock:
            return f"{prefix}_{next(self._ids)}"

    def _record(self, _call: str, /, **kwargs: Any) -> None:
        with self._lock:
            self.calls.append((_call, kwargs))

    def calls_to(self, name: str) -> List[Dict[str, Any]]:
        return [kwargs for call, kwargs in self.calls if call == name]

    def price_by_id(self, price_id: str) -> Dict[str, Any]:
        return next(p for p in self.prices.values() if p["id"] == price_id)

    # Test setup helpers

    def add_subscription(
        self,
        customer: str,
        lookup_key: str = "pro_monthly",
        status: str = "active",
        quantity: int = 1,
        metadata: Optional[Dict[str, str]] = None,
        cancel_at_period_end: bool = False,
    ) -> Dict[str, Any]:
        subscription_id = self._id("sub")
        subscription = {
            "id": subscription_id,
            "object": "subscription",
            "customer": customer,
            "status": status,
            "cancel_at_period_end": cancel_at_period_end,
            "cancel_at": PERIOD_END if cancel_at_period_end else None,
            "current_period_end": PERIOD_END,
            "metadata": metadata or {},
            "created": next(self._ids),
            "items": {"data": [{
                "id": self._id("si"),
                "price": copy.deepcopy(self.prices[lookup_key]),
                "quantity": quantity,
                "current_period_end": PERIOD_END,
            }]},
        }
        self.subscriptions[subscription_id] = subscription
        return copy.deepcopy(subscription)

    def add_payment_intent(
        self,
        customer: str,
        plan_id: str = "max-lifetime",
        status: str = "succeeded",
    ) -> Dict[str, Any]:
        intent = {
            "id": self._id("pi"),
            "object": "payment_intent",
            "customer": customer,
            "status": status,
            "metadata": {"planId": plan_id, "priceId": "price_max_lifetime"},
        }
        self.payment_intents.append(intent)
        return copy.deepcopy(intent)

    def complete_session(self, session_id: str, status: str = "active") -> Dict[str, Any]:
        """Simulate the customer finishing checkout for a session."""
        session = self.sessions[session_id]
        session["status"] = "complete"
        price = self.price_by_id(session["line_items"][0]["price"])
        if session["mode"] == "subscription":
            subscription = self.add_subscription(
                session["customer"],
                lookup_key=price["lookup_key"],
                status=status,
                quantity=session["line_items"][0]["quantity"],
                metadata=session["metadata"],
            )
            session["subscription"] = subscription["id"]
            session["payment_status"] = "paid"
        else:
            intent = self.add_payment_intent(session["customer"], plan_id=session["metadata"]["planId"])
            session["payment_intent"] = intent["id"]
            session["payment_status"] = "paid"
        return copy.deepcopy(session)

    # Gateway interface

    def search_customers(self, query: str, limit: int = 1) -> List[Dict[str, Any]]:
        self._record("search_customers", query=query, limit=limit)
        if self.search_error is not None:
            raise self.search_error
        key, value = re.match(r"metadata\['(\w+)'\]:'([^']*)'", query).groups()
        matches = [c for c in self.customers.values() if c["metadata"].get(key) == value]
        return copy.deepcopy(matches[:limit])

    def list_customers(self, email: str, limit: int = 1) -> List[Dict[str, Any]]:
        self._record("list_customers", email=email, limit=limit)
        matches = [c for c in self.customers.values() if c["email"] == email]
        return copy.deepcopy(matches[:limit])

    def create_customer(self, email: str, name: Optional[str] = None, metadata: Optional[Dict[str, str]] = None):
        self._record("create_customer", email=email, name=name, metadata=metadata)
        customer = {"id": self._id("cus"), "object": "customer", "email": email, "name": name,
                    "metadata": dict(metadata or {})}
        self.customers[customer["id"]] = customer
        return copy.deepcopy(customer)

    def list_subscriptions(self, customer: str, status: str = "all", limit: int = 1):
        self._record("list_subscriptions", customer=customer, status=status, limit=limit)
        subs = [s for s in self.subscriptions.values() if s["customer"] == customer]
        subs.sort(key=lambda s: s["created"], reverse=True)
        return copy.deepcopy(subs[:limit])

    def retrieve_subscription(self, subscription_id: str, expand: Optional[List[str]] = None):
        self._record("retrieve_subscription", subscription_id=subscription_id, expand=expand)
        return copy.deepcopy(self.subscriptions[subscription_id])

    def update_subscription(self, subscription_id: str, **params: Any):
        self._record("update_subscription", subscription_id=subscription_id, **params)
        subscription = self.subscriptions[subscription_id]
        if "cancel_at_period_end" in params:
            subscription["cancel_at_period_end"] = params["cancel_at_period_end"]
            subscription["cancel_at"] = subscription["current_period_end"] if params["cancel_at_period_end"] else None
        for change in params.get("items", []):
            item = next(i for i in subscription["items"]["data"] if i["id"] == change["id"])
            if "price" in change:
                item["price"] = copy.deepcopy(self.price_by_id(change["price"]))
            if "quantity" in change:
                item["quantity"] = change["quantity"]
        if "metadata" in params:
            subscription["metadata"].update(params["metadata"])
        return copy.deepcopy(subscription)

    def list_payment_intents(self, customer: str, limit: int = 10):
        self._record("list_payment_intents", customer=customer, limit=limit)
        return copy.deepcopy([pi for pi in self.payment_intents if pi["customer"] == customer][:limit])

    def list_prices(self, lookup_key: str):
        self._record("list_prices", lookup_key=lookup_key)
        if self.price_error is not None:
            raise self.price_error
        price = self.prices.get(lookup_key)
        return [copy.deepcopy(price)] if price else []

    def create_invoice_preview(self, **params: Any):
        self._record("create_invoice_preview", **params)
        return dict(self.invoice_preview)

    def create_checkout_session(self, **params: Any):
        self._record("create_checkout_session", **params)
        session_id = self._id("cs")
        session = {
            "id": session_id,
            "object": "checkout.session",
            "url": f"https://checkout.stripe.test/{session_id}",
            "status": "open",
            "payment_status": "unpaid",
            "subscription": None,
            "payment_intent": None,
            **copy.deepcopy(params),
        }
        self.sessions[session_id] = session
        return copy.deepcopy(session)

    def retrieve_checkout_session(self, session_id: str, expand: Optional[List[str]] = None):
        self._record("retrieve_checkout_session", session_id=session_id, expand=expand)
        session = copy.deepcopy(self.sessions[session_id])
        if session.get("subscription"):
            session["subscription"] = copy.deepcopy(self.subscriptions[session["subscription"]])
        if session.get("payment_intent"):
            session["payment_intent"] = next(
                copy.deepcopy(pi) for pi in self.payment_intents if pi["id"] == session["payment_intent"]
            )
        session["line_items"] = {"data": [
            {"price": copy.deepcopy(self.price_by_id(item["price"])), "quantity": item["quantity"]}
            for item in session["line_items"]
        ]}
        return session

    def create_portal_session(self, customer: str, return_url: str):
        self._record("create_portal_session", customer=customer, return_url=return_url)
        return {"id": self._id("bps"), "url": f"https://billing.stripe.test/{customer}"}

    def construct_event(self, payload: bytes, signature: str, secret: str):
        self._record("construct_event", signature=signature, secret=secret)
        if signature != VALID_SIGNATURE:
            raise ValueError("Invalid webhook signature")
        return json.loads(payload)


@pytest.fixture
def fake_gateway() -> FakeStripeGateway:
    return FakeStripeGateway()


@pytest.fixture
def store(tmp_path: Path) -> SQLiteBillingStore:
    """SQLite billing store in a temporary directory."""
    return SQLiteBillingStore(db_path=str(tmp_path / "db" / "billing.db"))


@pytest.fixture
def directory() -> InMemoryDirectory:
    """Three users; the owner and member belong to one organization with a third seat."""
    directory = InMemoryDirectory()
    directory.add_profile(OWNER_ID, "owner@example.com", "Ada Owner")
    directory.add_profile(MEMBER_ID, "member@example.com", "Max Member")
    directory.add_profile(OUTSIDER_ID, "outsider@example.com")
    directory.add_member(ORG_ID, OWNER_ID, role="owner")
    directory.add_member(ORG_ID, MEMBER_ID)
    directory.add_member(ORG_ID, "user-third")
    return directory


@pytest.fixture
def catalog() -> PlanCatalog:
    return PlanCatalog()


@pytest.fixture
def billing_service(fake_gateway, store, directory, catalog) -> BillingService:
    return BillingService(
        gateway=fake_gateway,
        store=store,
        directory=directory,
        catalog=catalog,
        app_url="https://app.example.com",
        webhook_secret="whsec_test",
    )


@pytest.fixture
def current_user() -> Dict[str, Any]:
    """Mutable holder for the user the API client is authenticated as."""
    from api.supabase.models import CurrentUser

    return {"user": CurrentUser(user_id=OWNER_ID, email="owner@example.com")}


@pytest.fixture
def login_as(current_user):
    """Switch the API client's authenticated user."""
    from api.supabase.models import CurrentUser

    def switch(user_id: str) -> None:
        current_user["user"] = CurrentUser(user_id=user_id)

    return switch


@pytest.fixture
def api_client(billing_service, current_user) -> Generator[TestClient, None, None]:
    """Create a FastAPI test client authenticated as the organization owner."""
    from api.dependencies import get_billing_service
    from api.main import app
    from api.supabase.middleware import get_current_user

    app.dependency_overrides[get_billing_service] = lambda: billing_service
    app.dependency_overrides[get_current_user] = lambda: current_user["user"]

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()
