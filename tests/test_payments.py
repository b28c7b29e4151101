import json
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from conftest import SHIPPING, bearer, signed, succeeded_event
from config import Settings
from errors import ConfigurationError
from main import check_webhook_config, create_app
from payments import shipping_from_metadata, shipping_metadata
from schemas import Role, ShippingDetails


@pytest.fixture
def shopper(storage, make_user, make_product):
    """A user holding 2 x 40.00 and 1 x 15.00 in the server cart."""
    user, token = make_user()
    earrings = make_product("40.00", name="Pearl Drop Earrings")
    bracelet = make_product("15.00", name="Thread Bracelet")
    storage.add_to_cart(user.id, earrings.id, 2)
    storage.add_to_cart(user.id, bracelet.id, 1)
    return user, token


def post_event(client, event, headers=None):
    return client.post("/api/webhook", content=json.dumps(event), headers=headers if headers is not None else signed())


def test_intent_charges_cart_total_plus_shipping(client, gateway, storage, shopper):
    user, token = shopper

    response = client.post(
        "/api/create-payment-intent",
        json={"shipping": SHIPPING, "amount": 105.0},
        headers=bearer(token),
    )

    assert response.status_code == 200
    assert response.json() == {"clientSecret": "pi_test1_secret_abc", "amount": 105.0}
    intent = gateway.intents[0]
    assert intent["amount"] == 10500
    assert intent["metadata"]["user_id"] == str(user.id)
    assert intent["metadata"]["shipping_city"] == "Cluj-Napoca"
    assert intent["receipt_email"] == SHIPPING["email"]


def test_intent_ignores_client_estimate(client, gateway, shopper):
    _, token = shopper

    response = client.post("/api/create-payment-intent", json={"amount": 1.0}, headers=bearer(token))

    assert response.json()["amount"] == 105.0
    assert gateway.intents[0]["amount"] == 10500


def test_free_shipping_from_100(client, gateway, storage, make_user, make_product):
    user, token = make_user()
    storage.add_to_cart(user.id, make_product("100.00").id, 1)

    response = client.post("/api/create-payment-intent", json={}, headers=bearer(token))

    assert response.json()["amount"] == 100.0
    assert gateway.intents[0]["amount"] == 10000


def test_customer_is_provisioned_once(client, gateway, storage, shopper):
    user, token = shopper

    client.post("/api/create-payment-intent", json={}, headers=bearer(token))
    client.post("/api/create-payment-intent", json={}, headers=bearer(token))

    assert len(gateway.customers) == 1
    assert storage.get_user(user.id).stripe_customer_id == "cus_test1"
    assert [i["customer"] for i in gateway.intents] == ["cus_test1", "cus_test1"]


def test_intent_errors(client, gateway, make_user, shopper):
    _, empty_token = make_user()
    _, token = shopper

    assert client.post("/api/create-payment-intent", json={}).status_code == 401

    empty = client.post("/api/create-payment-intent", json={}, headers=bearer(empty_token))
    assert empty.status_code == 400
    assert empty.json() == {"detail": "Cart is empty"}

    gateway.fail_with = "Your card was declined."
    declined = client.post("/api/create-payment-intent", json={}, headers=bearer(token))
    assert declined.status_code == 400
    assert declined.json() == {"detail": "Your card was declined."}


def test_intent_without_processor(settings, storage, shopper):
    _, token = shopper
    client = TestClient(create_app(settings, storage, gateway=None))

    response = client.post("/api/create-payment-intent", json={}, headers=bearer(token))

    assert response.status_code == 500
    assert response.json() == {"detail": "Payment processor not configured"}


def test_invalid_shipping_is_rejected(client, shopper):
    _, token = shopper
    shipping = dict(SHIPPING, postal_code="1", phone="123")

    response = client.post("/api/create-payment-intent", json={"shipping": shipping}, headers=bearer(token))

    assert response.status_code == 400
    fields = {e["field"] for e in response.json()["errors"]}
    assert fields == {"shipping.postal_code", "shipping.phone"}


def test_succeeded_event_settles_cart_into_order(client, storage, shopper):
    user, _ = shopper
    event = succeeded_event("pi_live1", user.id, 10500, shipping_city="Cluj-Napoca", shipping_name="Ana Popescu")

    response = post_event(client, event)

    assert response.status_code == 200
    orders = storage.list_orders_by_user(user.id)
    assert response.json() == {"received": True, "order_id": orders[0].id}
    order = orders[0]
    assert order.total == Decimal("105.00")
    assert order.status.value == "paid"
    assert order.shipping == {"city": "Cluj-Napoca", "name": "Ana Popescu"}
    assert sorted((i.quantity, i.price) for i in order.items) == [(1, Decimal("15.00")), (2, Decimal("40.00"))]
    assert storage.get_cart(user.id) == []


def test_replayed_event_creates_no_second_order(client, storage, make_product, shopper):
    user, _ = shopper
    event = succeeded_event("pi_replay", user.id, 10500)
    first = post_event(client, event).json()

    storage.add_to_cart(user.id, make_product("20.00").id, 1)
    second = post_event(client, event).json()

    assert second["order_id"] == first["order_id"]
    assert len(storage.list_orders_by_user(user.id)) == 1
    assert len(storage.get_cart(user.id)) == 1


def test_bad_signature_is_fatal(client, storage, shopper):
    user, _ = shopper

    response = post_event(client, succeeded_event("pi_forged", user.id, 10500), headers=signed("whsec_wrong"))

    assert response.status_code == 400
    assert response.json() == {"detail": "Webhook signature verification failed"}
    assert storage.list_orders() == []
    assert len(storage.get_cart(user.id)) == 2


def test_other_events_are_acknowledged(client, storage, shopper):
    user, _ = shopper
    failed = {
        "type": "payment_intent.payment_failed",
        "data": {"object": {"id": "pi_x", "last_payment_error": {"message": "Insufficient funds"}}},
    }
    unknown = {"type": "customer.created", "data": {"object": {"id": "cus_x"}}}

    for event in (failed, unknown):
        response = post_event(client, event)
        assert response.status_code == 200
        assert response.json() == {"received": True}

    assert storage.list_orders() == []


def test_event_without_user_is_acknowledged_but_ignored(client, storage):
    event = {"type": "payment_intent.succeeded", "data": {"object": {"id": "pi_anon", "amount": 500, "metadata": {}}}}

    response = post_event(client, event)

    assert response.json() == {"received": True, "order_id": None}
    assert storage.list_orders() == []


def test_unsigned_webhooks_only_when_allowed(storage, gateway, shopper):
    user, _ = shopper
    event = succeeded_event("pi_dev", user.id, 10500)

    strict = TestClient(create_app(Settings(SEED_SAMPLE_DATA=False), storage, gateway))
    refused = post_event(strict, event, headers={})
    assert refused.status_code == 500
    assert storage.list_orders() == []

    lenient = TestClient(create_app(Settings(SEED_SAMPLE_DATA=False, ALLOW_UNSIGNED_WEBHOOKS=True), storage, gateway))
    accepted = post_event(lenient, event, headers={})
    assert accepted.status_code == 200
    assert len(storage.list_orders_by_user(user.id)) == 1


def test_startup_refuses_live_key_without_webhook_secret(storage, gateway):
    with pytest.raises(ConfigurationError):
        create_app(Settings(STRIPE_SECRET_KEY="sk_test_123", SEED_SAMPLE_DATA=False), storage, gateway)

    check_webhook_config(Settings(STRIPE_SECRET_KEY="sk_test_123", STRIPE_WEBHOOK_SECRET="whsec_1"))
    check_webhook_config(Settings(STRIPE_SECRET_KEY="sk_test_123", ALLOW_UNSIGNED_WEBHOOKS=True))


def test_shipping_metadata_round_trip():
    shipping = ShippingDetails(**SHIPPING)

    metadata = shipping_metadata(shipping)

    assert metadata["shipping_postal_code"] == "400001"
    assert shipping_from_metadata({"user_id": "1", **metadata}) == SHIPPING
    assert shipping_metadata(None) == {}


def test_sync_products_upserts_by_stripe_id(client, storage, gateway, make_user):
    _, admin_token = make_user(role=Role.ADMIN)
    _, user_token = make_user()
    gateway.products = [
        {
            "id": "prod_stripe1",
            "name": "Opal Ring",
            "description": "Opal on silver",
            "images": ["https://example.com/opal.jpg"],
            "metadata": {"material": "silver"},
            "default_price": {"id": "price_1", "unit_amount": 8900},
        },
        {"id": "prod_noprice", "name": "Draft", "default_price": None},
    ]

    assert client.post("/api/stripe/sync-products", headers=bearer(user_token)).status_code == 403

    first = client.post("/api/stripe/sync-products", headers=bearer(admin_token)).json()
    assert (first["created"], first["updated"], first["skipped"]) == (1, 0, 1)
    product = storage.get_product_by_stripe_id("prod_stripe1")
    assert product.price == Decimal("89.00")
    assert product.attributes == {"material": "silver"}

    gateway.products[0]["default_price"]["unit_amount"] = 9900
    second = client.post("/api/stripe/sync-products", headers=bearer(admin_token)).json()
    assert (second["created"], second["updated"]) == (0, 1)
    assert storage.get_product_by_stripe_id("prod_stripe1").price == Decimal("99.00")
    assert len(storage.list_products()) == 1


def test_orders_are_private(client, storage, make_user, shopper):
    user, token = shopper
    _, other_token = make_user()
    order_id = post_event(client, succeeded_event("pi_mine", user.id, 10500)).json()["order_id"]

    mine = client.get("/api/orders", headers=bearer(token)).json()
    assert [o["id"] for o in mine] == [order_id]
    assert mine[0]["total"] == 105.0

    assert client.get(f"/api/orders/{order_id}", headers=bearer(token)).status_code == 200
    assert client.get(f"/api/orders/{order_id}", headers=bearer(other_token)).status_code == 404
    assert client.get("/api/orders", headers=bearer(other_token)).json() == []
