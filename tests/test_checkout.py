from decimal import Decimal

import httpx
import pytest

from cart import Cart, LocalLine
from checkout import CheckoutError, CheckoutFlow, CheckoutStep, PaymentResult
from client import StorefrontClient
from conftest import SHIPPING, signed


class FakeConfirmer:
    def __init__(self, result=None):
        self.result = result or PaymentResult(succeeded=True, payment_intent_id="pi_test1")
        self.calls = []

    def __call__(self, client_secret, shipping):
        self.calls.append((client_secret, shipping))
        return self.result


@pytest.fixture
def api(client, make_user):
    _, token = make_user()
    return StorefrontClient(http=client, token=token)


@pytest.fixture
def filled_cart(api, make_product):
    earrings = make_product("40.00")
    bracelet = make_product("15.00")
    cart = Cart(api)
    cart.add_item(LocalLine.from_product(api.get_product(earrings.id), quantity=2))
    cart.add_item(LocalLine.from_product(api.get_product(bracelet.id)))
    return cart


def at_payment(cart, api, confirmer=None):
    flow = CheckoutFlow(cart, api, confirmer or FakeConfirmer())
    flow.proceed_to_shipping()
    flow.submit_shipping(SHIPPING)
    return flow


def test_empty_cart_cannot_leave_review(api):
    flow = CheckoutFlow(Cart(api), api, FakeConfirmer())

    with pytest.raises(CheckoutError) as exc:
        flow.proceed_to_shipping()

    assert exc.value.code == "empty_cart"
    assert flow.step is CheckoutStep.CART_REVIEW
    assert flow.last_error == "Your cart is empty"


def test_no_skipping_ahead(filled_cart, api):
    flow = CheckoutFlow(filled_cart, api, FakeConfirmer())

    with pytest.raises(CheckoutError) as exc:
        flow.submit_shipping(SHIPPING)

    assert exc.value.code == "invalid_transition"
    assert flow.step is CheckoutStep.CART_REVIEW


def test_invalid_shipping_stays_on_shipping(filled_cart, api, gateway):
    flow = CheckoutFlow(filled_cart, api, FakeConfirmer())
    flow.proceed_to_shipping()

    with pytest.raises(CheckoutError) as exc:
        flow.submit_shipping(dict(SHIPPING, name="A", email="ana-at-example"))

    assert exc.value.code == "invalid_shipping"
    assert {e["field"] for e in exc.value.errors} == {"name", "email"}
    assert flow.step is CheckoutStep.SHIPPING
    assert gateway.intents == []


def test_payment_step_needs_a_session(filled_cart, api):
    flow = CheckoutFlow(filled_cart, api, FakeConfirmer())
    flow.proceed_to_shipping()
    api.logout()

    with pytest.raises(CheckoutError) as exc:
        flow.submit_shipping(SHIPPING)

    assert exc.value.code == "auth_required"
    assert flow.step is CheckoutStep.SHIPPING
    assert flow.shipping.city == SHIPPING["city"]


def test_intent_failure_keeps_shipping_for_retry(filled_cart, api, gateway):
    flow = CheckoutFlow(filled_cart, api, FakeConfirmer())
    flow.proceed_to_shipping()
    gateway.fail_with = "Processor unavailable"

    with pytest.raises(CheckoutError) as exc:
        flow.submit_shipping(SHIPPING)

    assert exc.value.code == "intent_failed"
    assert flow.last_error == "Processor unavailable"
    assert flow.step is CheckoutStep.SHIPPING
    assert flow.shipping.postal_code == SHIPPING["postal_code"]

    gateway.fail_with = None
    flow.submit_shipping(flow.shipping.model_dump())
    assert flow.step is CheckoutStep.PAYMENT
    assert flow.last_error is None


def test_entering_payment_requests_intent_for_cart_total(filled_cart, api, gateway):
    flow = at_payment(filled_cart, api)

    assert flow.step is CheckoutStep.PAYMENT
    assert flow.summary()["total"] == Decimal("105.00")
    assert flow.amount == Decimal("105.00")
    assert flow.client_secret == "pi_test1_secret_abc"
    assert gateway.intents[0]["amount"] == 10500


def test_declined_payment_stays_on_payment(filled_cart, api):
    confirmer = FakeConfirmer(PaymentResult(succeeded=False, error="Your card was declined."))
    flow = at_payment(filled_cart, api, confirmer)

    with pytest.raises(CheckoutError) as exc:
        flow.confirm_payment()

    assert exc.value.code == "payment_failed"
    assert flow.step is CheckoutStep.PAYMENT
    assert flow.last_error == "Your card was declined."
    assert filled_cart.total_items == 3


def test_successful_payment_confirms_and_clears_local_cart(filled_cart, api, storage):
    confirmer = FakeConfirmer()
    flow = at_payment(filled_cart, api, confirmer)

    flow.confirm_payment()

    assert flow.step is CheckoutStep.CONFIRMATION
    assert flow.payment_intent_id == "pi_test1"
    assert confirmer.calls[0][0] == "pi_test1_secret_abc"
    assert confirmer.calls[0][1].email == SHIPPING["email"]
    assert filled_cart.is_empty
    # the server cart waits for the webhook
    assert len(storage.get_cart(api.me()["id"])) == 2


def test_webhook_after_confirmation_orders_the_cart(client, filled_cart, api, storage, gateway):
    flow = at_payment(filled_cart, api)
    flow.confirm_payment()

    intent = gateway.intents[0]
    event = {
        "type": "payment_intent.succeeded",
        "data": {"object": {**intent, "amount_received": intent["amount"]}},
    }
    response = client.post("/api/webhook", json=event, headers=signed())

    order = storage.get_order(response.json()["order_id"])
    assert order.total == Decimal("105.00")
    assert sorted((i.quantity, i.price) for i in order.items) == [(1, Decimal("15.00")), (2, Decimal("40.00"))]
    assert order.shipping["city"] == SHIPPING["city"]
    assert storage.get_cart(api.me()["id"]) == []
    assert [o["id"] for o in api.list_orders()] == [order.id]


def test_confirmer_network_error_is_reported(filled_cart, api):
    def unreachable(client_secret, shipping):
        raise httpx.ConnectError("processor unreachable")

    flow = at_payment(filled_cart, api, unreachable)

    with pytest.raises(CheckoutError) as exc:
        flow.confirm_payment()

    assert exc.value.code == "payment_failed"
    assert "processor unreachable" in flow.last_error
    assert flow.step is CheckoutStep.PAYMENT
    assert filled_cart.total_items == 3


def test_back_transitions(filled_cart, api):
    flow = at_payment(filled_cart, api)

    flow.back()
    assert flow.step is CheckoutStep.SHIPPING
    assert flow.client_secret is None
    assert flow.shipping is not None

    flow.back()
    assert flow.step is CheckoutStep.CART_REVIEW

    with pytest.raises(CheckoutError) as exc:
        flow.back()
    assert exc.value.code == "invalid_transition"


def test_confirmation_is_terminal(filled_cart, api):
    flow = at_payment(filled_cart, api)
    flow.confirm_payment()

    for move in (flow.back, flow.proceed_to_shipping, flow.confirm_payment):
        with pytest.raises(CheckoutError):
            move()
        assert flow.step is CheckoutStep.CONFIRMATION
