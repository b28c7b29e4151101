"""
Checkout wizard: cart review, shipping, payment, confirmation.

The flow only moves forward through guarded transitions, or one step back.
A failed transition leaves the step untouched, stores the message in
``last_error`` and raises ``CheckoutError``; the shipping details captured so
far are kept so the shopper can retry.

Card confirmation belongs to the processor's client SDK and is injected as a
``PaymentConfirmer``: a callable taking the client secret and the shipping
details and returning a ``PaymentResult``.
"""

import logging
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import httpx
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from cart import Cart
from client import ApiError, StorefrontClient
from schemas import ShippingDetails

logger = logging.getLogger(__name__)


class CheckoutStep(str, Enum):
    CART_REVIEW = "cart_review"
    SHIPPING = "shipping"
    PAYMENT = "payment"
    CONFIRMATION = "confirmation"


PREVIOUS_STEP = {
    CheckoutStep.SHIPPING: CheckoutStep.CART_REVIEW,
    CheckoutStep.PAYMENT: CheckoutStep.SHIPPING,
}


class PaymentResult(BaseModel):
    succeeded: bool
    payment_intent_id: Optional[str] = None
    error: Optional[str] = None


PaymentConfirmer = Callable[[str, ShippingDetails], PaymentResult]


class CheckoutError(Exception):
    """A transition was refused. ``code`` tells the UI what to do about it."""

    def __init__(self, code: str, message: str, errors: Optional[List[Dict[str, str]]] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.errors = errors or []


class CheckoutFlow:
    def __init__(self, cart: Cart, client: StorefrontClient, confirm_payment: PaymentConfirmer):
        self.cart = cart
        self.client = client
        self._confirm = confirm_payment
        self.step = CheckoutStep.CART_REVIEW
        self.shipping: Optional[ShippingDetails] = None
        self.client_secret: Optional[str] = None
        self.amount: Optional[Decimal] = None
        self.payment_intent_id: Optional[str] = None
        self.last_error: Optional[str] = None

    def summary(self) -> Dict[str, Decimal]:
        return self.cart.summary()

    def _fail(self, code: str, message: str, errors: Optional[List[Dict[str, str]]] = None):
        self.last_error = message
        logger.info(f"Checkout {self.step.value}: {code} - {message}")
        raise CheckoutError(code, message, errors)

    def _expect(self, step: CheckoutStep) -> None:
        if self.step is not step:
            self._fail("invalid_transition", f"Expected step {step.value}, checkout is at {self.step.value}")

    def _move(self, step: CheckoutStep) -> None:
        logger.debug(f"Checkout {self.step.value} -> {step.value}")
        self.step = step
        self.last_error = None

    def proceed_to_shipping(self) -> None:
        self._expect(CheckoutStep.CART_REVIEW)
        if self.cart.is_empty:
            self._fail("empty_cart", "Your cart is empty")
        self._move(CheckoutStep.SHIPPING)

    def submit_shipping(self, form: Dict[str, Any]) -> None:
        """Validate the shipping form, then open a payment intent for the cart."""
        self._expect(CheckoutStep.SHIPPING)
        try:
            shipping = ShippingDetails.model_validate(form)
        except PydanticValidationError as e:
            errors = [{"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]} for err in e.errors()]
            self._fail("invalid_shipping", "Please correct the shipping details", errors)
        self.shipping = shipping

        if self.cart.is_empty:
            self._fail("empty_cart", "Your cart is empty")
        if not self.client.is_authenticated:
            self._fail("auth_required", "Please log in to complete your purchase")

        estimate = self.cart.summary()["total"]
        try:
            intent = self.client.create_payment_intent(shipping.model_dump(mode="json"), float(estimate))
        except ApiError as e:
            self._fail("intent_failed", e.detail)
        except httpx.HTTPError as e:
            self._fail("intent_failed", f"An error occurred while setting up payment: {e}")

        self.client_secret = intent["clientSecret"]
        self.amount = Decimal(str(intent["amount"]))
        self._move(CheckoutStep.PAYMENT)

    def confirm_payment(self) -> None:
        self._expect(CheckoutStep.PAYMENT)
        try:
            result = self._confirm(self.client_secret, self.shipping)
        except (ApiError, httpx.HTTPError) as e:
            self._fail("payment_failed", f"An error occurred while confirming payment: {e}")
        if not result.succeeded:
            self._fail("payment_failed", result.error or "Payment failed")

        self.payment_intent_id = result.payment_intent_id
        # the webhook turns the server cart into the order and empties it
        self.cart.clear(sync=False)
        self._move(CheckoutStep.CONFIRMATION)

    def back(self) -> None:
        previous = PREVIOUS_STEP.get(self.step)
        if previous is None:
            self._fail("invalid_transition", f"Cannot go back from {self.step.value}")
        if self.step is CheckoutStep.PAYMENT:
            self.client_secret = None
            self.amount = None
        self._move(previous)
