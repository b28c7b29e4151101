import itertools
import json
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from auth import create_access_token, hash_password
from config import Settings
from errors import ProcessorError, ValidationError
from main import create_app
from schemas import NewUser, ProductCreate, Role
from storage import MemoryStorage, SqlStorage

PASSWORD = "secret123"
# bcrypt is slow on purpose, hash once for the whole run
PASSWORD_HASH = hash_password(PASSWORD)

WEBHOOK_SECRET = "whsec_test"

SHIPPING = {
    "name": "Ana Popescu",
    "email": "ana@example.com",
    "address": "Strada Lunga 12",
    "city": "Cluj-Napoca",
    "postal_code": "400001",
    "country": "Romania",
    "phone": "+40712345678",
}


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


def signed(secret=WEBHOOK_SECRET):
    return {"stripe-signature": f"sig:{secret}"}


class FakeGateway:
    """Stands in for StripeGateway; records every call."""

    def __init__(self):
        self.customers = []
        self.intents = []
        self.products = []
        self.fail_with = None

    def create_customer(self, email, name=None):
        customer_id = f"cus_test{len(self.customers) + 1}"
        self.customers.append({"id": customer_id, "email": email, "name": name})
        return customer_id

    def create_payment_intent(self, amount_cents, customer_id, metadata, receipt_email=None):
        if self.fail_with:
            raise ProcessorError(self.fail_with)
        intent_id = f"pi_test{len(self.intents) + 1}"
        self.intents.append(
            {
                "id": intent_id,
                "amount": amount_cents,
                "customer": customer_id,
                "metadata": metadata,
                "receipt_email": receipt_email,
            }
        )
        return {"id": intent_id, "client_secret": f"{intent_id}_secret_abc"}

    def construct_event(self, payload, sig_header, secret):
        if sig_header != f"sig:{secret}":
            raise ValidationError("Webhook signature verification failed")
        return json.loads(payload)

    def list_products(self):
        return list(self.products)


@pytest.fixture
def settings():
    return Settings(JWT_SECRET="test-secret", STRIPE_WEBHOOK_SECRET=WEBHOOK_SECRET, SEED_SAMPLE_DATA=False)


@pytest.fixture(params=["memory", "sql"])
def storage(request):
    if request.param == "memory":
        return MemoryStorage()
    return SqlStorage("sqlite://")


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def app(settings, storage, gateway):
    return create_app(settings, storage, gateway)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def make_user(storage, settings):
    """Create a user straight in storage and return ``(user, token)``."""
    counter = itertools.count(1)

    def _make(email=None, role=Role.USER, name="Test Shopper"):
        email = email or f"shopper{next(counter)}@example.com"
        user = storage.create_user(NewUser(email=email, password_hash=PASSWORD_HASH, name=name, role=role))
        return user, create_access_token(user, settings)

    return _make


@pytest.fixture
def make_product(storage):
    counter = itertools.count(1)

    def _make(price="10.00", **fields):
        n = next(counter)
        fields.setdefault("name", f"Test Product {n}")
        return storage.create_product(ProductCreate(stripe_id=f"prod_test{n}", price=Decimal(price), **fields))

    return _make


def succeeded_event(intent_id, user_id, amount_cents, **metadata):
    return {
        "id": f"evt_{intent_id}",
        "type": "payment_intent.succeeded",
        "data": {
            "object": {
                "id": intent_id,
                "amount": amount_cents,
                "amount_received": amount_cents,
                "metadata": {"user_id": str(user_id), **metadata},
            }
        },
    }
