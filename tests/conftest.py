import hashlib
import hmac
import json
import os
import time
import types
import uuid
from typing import Any, Dict, Generator, List, Optional
from unittest.mock import MagicMock

import pytest
import stripe
from fastapi.testclient import TestClient

# Désactive l'init fastapi-limiter (évite toute connexion Redis pendant les tests)
os.environ.setdefault("DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS", "1")

from storefront.app import app as fastapi_app
from storefront.utils.security import get_optional_user, require_admin, require_user

WEBHOOK_SECRET = "whsec_test_secret"

# Marquage automatique selon le dossier
def pytest_collection_modifyitems(config, items):
    for item in items:
        nodeid = item.nodeid.replace("\\", "/")
        if "tests/unit/" in nodeid:
            item.add_marker(pytest.mark.unit)
        elif "tests/integration/" in nodeid:
            item.add_marker(pytest.mark.integration)
        elif "tests/functional/" in nodeid:
            item.add_marker(pytest.mark.functional)

@pytest.fixture(scope="session")
def app():
    return fastapi_app

@pytest.fixture()
def client(app) -> Generator[TestClient, None, None]:
    with TestClient(app) as c:
        yield c

FAKE_USER: Dict[str, Any] = {
    "id": "test-user",
    "email": "test@example.com",
    "role": "user",
    "metadata": {"full_name": "Test User"},
    "token": "fake-token",
}

# Utilisateur authentifié pour les endpoints protégés; visiteur anonyme pour le checkout
@pytest.fixture(autouse=True)
def _override_auth(app):
    app.dependency_overrides[require_user] = lambda: dict(FAKE_USER)
    app.dependency_overrides[get_optional_user] = lambda: None
    try:
        yield
    finally:
        app.dependency_overrides.pop(require_user, None)
        app.dependency_overrides.pop(get_optional_user, None)

@pytest.fixture
def signed_in(app):
    """Le checkout voit un utilisateur connecté."""
    app.dependency_overrides[get_optional_user] = lambda: dict(FAKE_USER)
    return FAKE_USER

@pytest.fixture
def admin_client(app, client):
    app.dependency_overrides[require_admin] = lambda: {"id": "admin-user-id", "role": "admin", "email": "admin@example.com"}
    try:
        yield client
    finally:
        app.dependency_overrides.pop(require_admin, None)


# --- Supabase: aucune requête réseau ---

class _EmptyQuery:
    """Chaîne de requête PostgREST qui ne renvoie jamais de ligne."""

    def __getattr__(self, name):
        return lambda *args, **kwargs: self

    def execute(self):
        return types.SimpleNamespace(data=[])

def _empty_supabase():
    client = MagicMock()
    client.table.return_value = _EmptyQuery()
    return client

@pytest.fixture(scope="function", autouse=True)
def mock_db_dependency(monkeypatch):
    """Remplace les clients Supabase importés par chaque repository."""
    for target in (
        "storefront.infra.supabase_client.get_supabase",
        "storefront.infra.supabase_client.get_service_supabase",
        "storefront.catalog.repository.get_supabase",
        "storefront.referrals.repository.get_service_supabase",
        "storefront.orders.repository.get_service_supabase",
        "storefront.users.repository.get_supabase",
        "storefront.users.repository.get_service_supabase",
        "storefront.health.service.get_service_supabase",
    ):
        monkeypatch.setattr(target, _empty_supabase)


# --- Catalogue en mémoire ---

PRODUCTS: Dict[str, Dict[str, Any]] = {
    "P1": {"id": "P1", "name": "Tote bag", "price": 20.0, "description": "Sac en coton", "image_url": "https://img.test/p1.png", "variants": []},
    "P2": {"id": "P2", "name": "Carnet", "price": 15.0, "description": None, "image_url": None, "variants": []},
    "P3": {
        "id": "P3",
        "name": "Sweat",
        "price": 40.0,
        "description": "Sweat brodé",
        "image_url": "https://img.test/p3.png",
        "variants": [
            {"id": "V-RED", "color_name": "Rouge", "price_adjustment": 2.5, "image_url": "https://img.test/p3-red.png", "is_available": True},
            {"id": "V-OUT", "color_name": "Vert", "price_adjustment": 0, "is_available": False},
        ],
    },
    "SUB1": {"id": "SUB1", "name": "Capsules café", "price": 12.0, "description": "Recharge mensuelle", "image_url": None, "variants": [], "is_subscription": True},
}

@pytest.fixture
def catalog(monkeypatch):
    products = {k: dict(v) for k, v in PRODUCTS.items()}
    monkeypatch.setattr("storefront.catalog.repository.get_product", lambda product_id: products.get(str(product_id)))
    monkeypatch.setattr("storefront.catalog.repository.list_available_products", lambda: list(products.values()))
    monkeypatch.setattr("storefront.catalog.repository.get_categories", lambda: [{"id": "c1", "name": "Goodies", "slug": "goodies"}])
    return products


# --- Registre des commandes en mémoire ---

class InMemoryLedger:
    """
    Tables profiles / orders / referral_usage / referral_payouts en mémoire.
    insert_order reproduit la contrainte UNIQUE sur stripe_payment_intent_id.
    """

    def __init__(self):
        self.profiles: List[Dict[str, Any]] = []
        self.orders: List[Dict[str, Any]] = []
        self.usage: List[Dict[str, Any]] = []
        self.payouts: List[Dict[str, Any]] = []
        self.fail_referral_usage = False
        self.referrer_lookups = 0

    def add_profile(self, user_id: str, email: str, referral_code: Optional[str] = None, display_name: Optional[str] = None):
        row = {"id": user_id, "email": email.lower(), "referral_code": referral_code, "display_name": display_name or user_id}
        self.profiles.append(row)
        return row

    def add_usage(self, referrer_id: str, commission_amount: float, payout_status: str = "pending", **extra):
        row = {
            "id": extra.pop("id", None) or f"ru_{uuid.uuid4().hex[:8]}",
            "referrer_id": referrer_id,
            "order_id": extra.pop("order_id", None) or f"ord_{uuid.uuid4().hex[:8]}",
            "referee_email": extra.pop("referee_email", "friend@example.com"),
            "discount_amount": extra.pop("discount_amount", 0.0),
            "commission_percentage": 5,
            "commission_amount": commission_amount,
            "payout_status": payout_status,
            **extra,
        }
        self.usage.append(row)
        return row

    # profiles
    def find_referrer_by_code(self, code, strict=False):
        self.referrer_lookups += 1
        normalized = (code or "").strip().upper()
        for p in self.profiles:
            if normalized and p.get("referral_code") == normalized:
                return {"id": p["id"], "display_name": p["display_name"]}
        return None

    def get_user_id_by_email(self, email):
        cleaned = (email or "").strip().lower()
        for p in self.profiles:
            if p["email"] == cleaned:
                return p["id"]
        return None

    def get_profile(self, user_id):
        for p in self.profiles:
            if p["id"] == user_id:
                return dict(p)
        return None

    # orders
    def find_order_by_payment_intent(self, pi):
        for o in self.orders:
            if o["stripe_payment_intent_id"] == pi:
                return {"id": o["id"]}
        return None

    def insert_order(self, data):
        if any(o["stripe_payment_intent_id"] == data.get("stripe_payment_intent_id") for o in self.orders):
            return None
        row = {"id": f"ord_{len(self.orders) + 1}", **data}
        self.orders.append(row)
        return dict(row)

    def fetch_orders(self, limit=100):
        return [dict(o) for o in self.orders][:limit]

    def get_order_by_session_id(self, session_id):
        for o in self.orders:
            if o.get("stripe_session_id") == session_id:
                return dict(o)
        return None

    # referral_usage
    def insert_referral_usage(self, data):
        if self.fail_referral_usage:
            return None
        row = {"id": f"ru_{len(self.usage) + 1}", **data}
        self.usage.append(row)
        return dict(row)

    def fetch_referral_usage(self, limit=200):
        return [dict(u) for u in self.usage][:limit]

    def fetch_referral_usage_for_referrer(self, referrer_id):
        return [dict(u) for u in self.usage if u["referrer_id"] == referrer_id]

    def fetch_referral_usage_by_ids(self, ids):
        return [dict(u) for u in self.usage if u["id"] in ids]

    def approve_referral_usage(self, usage_id):
        for u in self.usage:
            if u["id"] == usage_id and u["payout_status"] == "pending":
                u["payout_status"] = "approved"
                return dict(u)
        return None

    def mark_referral_usage_paid(self, ids, referrer_id, method, reference, paid_at):
        updated = []
        for u in self.usage:
            if u["id"] in ids and u["referrer_id"] == referrer_id and u["payout_status"] != "paid":
                u.update({"payout_status": "paid", "payout_method": method, "payout_reference": reference, "payout_date": paid_at})
                updated.append(dict(u))
        return updated

    # referral_payouts
    def insert_payout(self, data):
        row = {"id": f"po_{len(self.payouts) + 1}", **data}
        self.payouts.append(row)
        return dict(row)

    def fetch_payouts(self, limit=100, referrer_id=None):
        rows = [dict(p) for p in self.payouts if not referrer_id or p["referrer_id"] == referrer_id]
        return rows[:limit]

@pytest.fixture
def ledger(monkeypatch):
    store = InMemoryLedger()
    for name in (
        "find_order_by_payment_intent",
        "insert_order",
        "fetch_orders",
        "get_order_by_session_id",
        "insert_referral_usage",
        "fetch_referral_usage",
        "fetch_referral_usage_for_referrer",
        "fetch_referral_usage_by_ids",
        "approve_referral_usage",
        "mark_referral_usage_paid",
        "insert_payout",
        "fetch_payouts",
    ):
        monkeypatch.setattr(f"storefront.orders.repository.{name}", getattr(store, name))
    monkeypatch.setattr("storefront.referrals.repository.find_referrer_by_code", store.find_referrer_by_code)
    monkeypatch.setattr("storefront.users.repository.get_user_id_by_email", store.get_user_id_by_email)
    monkeypatch.setattr("storefront.users.repository.get_profile", store.get_profile)
    return store


# --- Stripe simulé ---

class FakeStripe:
    """Enregistre chaque appel à storefront.payments.stripe_client et simule les objets Stripe."""

    def __init__(self):
        self.calls: List[tuple] = []
        self.sessions: Dict[str, Dict[str, Any]] = {}
        self.customers: List[Dict[str, Any]] = []
        self.prices: Dict[str, Dict[str, Any]] = {}
        self.fail_on: Optional[str] = None

    def _record(self, name, params):
        self.calls.append((name, params))
        if self.fail_on == name:
            raise stripe.APIConnectionError("Network error")

    def calls_named(self, name):
        return [params for n, params in self.calls if n == name]

    def create_product(self, **params):
        self._record("create_product", params)
        return {"id": f"prod_{len(self.calls)}", **params}

    def create_price(self, **params):
        self._record("create_price", params)
        price = {"id": f"price_{len(self.calls)}", **params}
        if params.get("lookup_key"):
            self.prices[params["lookup_key"]] = price
        return price

    def find_price_by_lookup_key(self, lookup_key):
        self._record("find_price_by_lookup_key", {"lookup_key": lookup_key})
        return self.prices.get(lookup_key)

    def create_coupon(self, **params):
        self._record("create_coupon", params)
        return {"id": f"coupon_{len(self.calls)}", **params}

    def find_customer_by_email(self, email):
        self._record("find_customer_by_email", {"email": email})
        for c in self.customers:
            if c["email"] == email:
                return c
        return None

    def create_customer(self, **params):
        self._record("create_customer", params)
        customer = {"id": f"cus_{len(self.customers) + 1}", **params}
        self.customers.append(customer)
        return customer

    def create_session(self, **params):
        self._record("create_session", params)
        session_id = f"cs_test_{len(self.sessions) + 1}"
        session = {"id": session_id, "url": f"https://checkout.stripe.test/c/pay/{session_id}", **params}
        self.sessions[session_id] = session
        return {"id": session_id, "url": session["url"]}

    def get_session(self, session_id):
        self._record("get_session", {"session_id": session_id})
        if session_id not in self.sessions:
            raise stripe.InvalidRequestError("No such checkout.session: %s" % session_id, "id")
        return dict(self.sessions[session_id])

@pytest.fixture
def stripe_gateway(monkeypatch):
    fake = FakeStripe()
    for name in (
        "create_product",
        "create_price",
        "find_price_by_lookup_key",
        "create_coupon",
        "find_customer_by_email",
        "create_customer",
        "create_session",
        "get_session",
    ):
        monkeypatch.setattr(f"storefront.payments.stripe_client.{name}", getattr(fake, name))
    monkeypatch.setattr("storefront.payments.service._PRICE_CACHE", {})
    return fake


# --- Webhook signé (en-tête Stripe-Signature réel: t=<ts>,v1=<hmac sha256>) ---

def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    ts = int(timestamp if timestamp is not None else time.time())
    signed = f"{ts}.{payload.decode('utf-8')}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={signature}"

@pytest.fixture
def webhook_secret(monkeypatch):
    monkeypatch.setattr("storefront.payments.stripe_client.STRIPE_WEBHOOK_SECRET", WEBHOOK_SECRET)
    return WEBHOOK_SECRET

@pytest.fixture
def signed_webhook(webhook_secret):
    """Fabrique (corps, en-têtes) pour un événement Stripe signé avec le secret de test."""
    def _make(event: Dict[str, Any], secret: str = WEBHOOK_SECRET):
        body = event if isinstance(event, bytes) else json.dumps(event).encode("utf-8")
        headers = {"Stripe-Signature": sign_payload(body, secret), "Content-Type": "application/json"}
        return body, headers
    return _make

def completed_event(session: Dict[str, Any], event_id: str = "evt_test_1") -> Dict[str, Any]:
    return {
        "id": event_id,
        "type": "checkout.session.completed",
        "data": {"object": session},
    }

@pytest.fixture
def make_completed_event():
    return completed_event
