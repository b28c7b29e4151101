"""
Stripe integration: payment-intent creation, webhook settlement and catalog sync.

``StripeGateway`` is the only place that talks to the stripe library; the
service functions below take it as an argument so tests can pass a fake.
A ``None`` gateway means the processor is not configured.
"""

import json
import logging
from typing import Any, Dict, Iterable, Optional

import stripe

from config import Settings
from errors import ConfigurationError, EmptyCartError, NotFoundError, ProcessorError, ValidationError
from pricing import from_cents, subtotal, to_cents, to_money, total_with_shipping
from schemas import OrderDetail, PaymentIntentRequest, ProductCreate, ShippingDetails
from storage import Storage

logger = logging.getLogger(__name__)

SHIPPING_PREFIX = "shipping_"


def _as_dict(obj: Any) -> Dict[str, Any]:
    # StripeObject renders itself as JSON
    return json.loads(str(obj))


class StripeGateway:
    def __init__(self, secret_key: str, currency: str = "eur"):
        stripe.api_key = secret_key
        self.currency = currency

    def create_customer(self, email: str, name: Optional[str] = None) -> str:
        try:
            customer = stripe.Customer.create(email=email, name=name or None)
        except stripe.StripeError as e:
            raise ProcessorError(str(e)) from e
        return customer["id"]

    def create_payment_intent(
        self,
        amount_cents: int,
        customer_id: str,
        metadata: Dict[str, str],
        receipt_email: Optional[str] = None,
    ) -> Dict[str, Any]:
        try:
            intent = stripe.PaymentIntent.create(
                amount=amount_cents,
                currency=self.currency,
                customer=customer_id,
                metadata=metadata,
                receipt_email=receipt_email,
                automatic_payment_methods={"enabled": True},
            )
        except stripe.StripeError as e:
            raise ProcessorError(str(e)) from e
        return {"id": intent["id"], "client_secret": intent["client_secret"]}

    def construct_event(self, payload: bytes, sig_header: Optional[str], secret: str) -> Dict[str, Any]:
        try:
            stripe.Webhook.construct_event(payload=payload, sig_header=sig_header, secret=secret)
        except (ValueError, stripe.SignatureVerificationError) as e:
            raise ValidationError("Webhook signature verification failed") from e
        return json.loads(payload)

    def list_products(self) -> Iterable[Dict[str, Any]]:
        try:
            products = stripe.Product.list(active=True, expand=["data.default_price"], limit=100)
            return [_as_dict(p) for p in products.auto_paging_iter()]
        except stripe.StripeError as e:
            raise ProcessorError(str(e)) from e


def build_gateway(settings: Settings) -> Optional[StripeGateway]:
    if not settings.STRIPE_SECRET_KEY:
        logger.warning("Missing STRIPE_SECRET_KEY, payment routes will report not configured")
        return None
    return StripeGateway(settings.STRIPE_SECRET_KEY, currency=settings.CURRENCY)


def _require(gateway: Optional[StripeGateway]) -> StripeGateway:
    if gateway is None:
        raise ConfigurationError("STRIPE_SECRET_KEY is not set")
    return gateway


def shipping_metadata(shipping: Optional[ShippingDetails]) -> Dict[str, str]:
    if shipping is None:
        return {}
    return {f"{SHIPPING_PREFIX}{k}": str(v) for k, v in shipping.model_dump().items()}


def shipping_from_metadata(metadata: Dict[str, Any]) -> Dict[str, str]:
    return {k[len(SHIPPING_PREFIX):]: v for k, v in metadata.items() if k.startswith(SHIPPING_PREFIX)}


def create_payment_intent(
    storage: Storage,
    gateway: Optional[StripeGateway],
    user_id: int,
    request: PaymentIntentRequest,
) -> Dict[str, Any]:
    """Charge the server-side cart plus shipping and return the client secret."""
    gateway = _require(gateway)

    user = storage.get_user(user_id)
    if user is None:
        raise NotFoundError("User not found")

    lines = storage.get_cart(user.id)
    if not lines:
        raise EmptyCartError()

    amount = total_with_shipping(subtotal((line.product.price, line.quantity) for line in lines))
    if request.amount is not None and to_money(request.amount) != amount:
        logger.warning(f"Client estimated {request.amount} for user {user.id}, charging cart total {amount}")

    customer_id = user.stripe_customer_id
    if not customer_id:
        customer_id = gateway.create_customer(user.email, user.name)
        storage.set_stripe_customer_id(user.id, customer_id)
        logger.info(f"Created Stripe customer {customer_id} for user {user.id}")

    metadata = {"user_id": str(user.id), **shipping_metadata(request.shipping)}
    intent = gateway.create_payment_intent(
        amount_cents=to_cents(amount),
        customer_id=customer_id,
        metadata=metadata,
        receipt_email=request.shipping.email if request.shipping else user.email,
    )
    logger.info(f"Payment intent {intent['id']} created for user {user.id}: {amount}")
    return {"clientSecret": intent["client_secret"], "amount": float(amount)}


def parse_webhook_event(
    settings: Settings,
    gateway: Optional[StripeGateway],
    payload: bytes,
    sig_header: Optional[str],
) -> Dict[str, Any]:
    gateway = _require(gateway)
    if settings.STRIPE_WEBHOOK_SECRET:
        return gateway.construct_event(payload, sig_header, settings.STRIPE_WEBHOOK_SECRET)
    if not settings.ALLOW_UNSIGNED_WEBHOOKS:
        raise ConfigurationError("STRIPE_WEBHOOK_SECRET is not set and unsigned webhooks are not allowed")

    logger.warning("STRIPE_WEBHOOK_SECRET not set, accepting webhook without signature verification")
    try:
        return json.loads(payload)
    except ValueError as e:
        raise ValidationError("Invalid webhook payload") from e


def settle_payment_intent(storage: Storage, intent: Dict[str, Any]) -> Optional[OrderDetail]:
    """Materialize the order for a succeeded payment intent.

    Returns the order, or ``None`` when the intent cannot be tied to a user.
    Replays of the same intent return the order created the first time.
    """
    intent_id = intent.get("id")
    metadata = intent.get("metadata") or {}
    try:
        user_id = int(metadata.get("user_id"))
    except (TypeError, ValueError):
        logger.warning(f"Payment intent {intent_id} has no user_id metadata, skipping settlement")
        return None

    if not intent_id or storage.get_user(user_id) is None:
        logger.warning(f"Payment intent {intent_id} references unknown user {user_id}, skipping settlement")
        return None

    total = from_cents(intent.get("amount_received") or intent.get("amount") or 0)
    order, created = storage.settle_order(user_id, intent_id, total, shipping_from_metadata(metadata))
    if created:
        logger.info(f"Order {order.id} settled for payment intent {intent_id} ({len(order.items)} items, {total})")
    else:
        logger.info(f"Payment intent {intent_id} already settled as order {order.id}, ignoring replay")
    return order


def handle_webhook_event(storage: Storage, event: Dict[str, Any]) -> Dict[str, Any]:
    event_type = event.get("type")
    obj = (event.get("data") or {}).get("object") or {}

    if event_type == "payment_intent.succeeded":
        order = settle_payment_intent(storage, obj)
        return {"received": True, "order_id": order.id if order else None}

    if event_type == "payment_intent.payment_failed":
        error = (obj.get("last_payment_error") or {}).get("message")
        logger.warning(f"Payment intent {obj.get('id')} failed: {error}")
    else:
        logger.info(f"Acknowledging unhandled webhook event {event_type}")
    return {"received": True}


def sync_products(storage: Storage, gateway: Optional[StripeGateway]) -> Dict[str, int]:
    """Copy active Stripe products into the catalog, keyed by Stripe product id."""
    gateway = _require(gateway)
    counts = {"created": 0, "updated": 0, "skipped": 0}

    for sp in gateway.list_products():
        price = sp.get("default_price")
        if not isinstance(price, dict) or not price.get("unit_amount"):
            counts["skipped"] += 1
            continue

        fields: Dict[str, Any] = {
            "name": sp.get("name") or sp["id"],
            "description": sp.get("description") or "",
            "price": from_cents(price["unit_amount"]),
            "images": list(sp.get("images") or []),
            "attributes": dict(sp.get("metadata") or {}),
        }
        existing = storage.get_product_by_stripe_id(sp["id"])
        if existing:
            storage.update_product(existing.id, fields)
            counts["updated"] += 1
        else:
            storage.create_product(ProductCreate(stripe_id=sp["id"], **fields))
            counts["created"] += 1

    logger.info(f"Catalog sync finished: {counts}")
    return counts
