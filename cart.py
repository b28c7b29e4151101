"""
Shopper-side cart.

Lines are kept locally (and written to a JSON file when a path is given) so
the cart survives restarts whether or not anyone is logged in. Once the
client is authenticated the server is the source of truth:

* every mutation is applied to the local lines first, then mirrored to the
  server; the server's answer (line id, quantity, unit price) overwrites the
  local line;
* a failed mirror call is logged and otherwise ignored, the local line stays
  as it is until the next ``initialize()``;
* ``initialize()`` pushes lines that were added anonymously (no server id)
  into the server cart, where they merge by summing quantities, then replaces
  the local lines with the server cart.

There is one line per product, so a line is addressed by its product id.
"""

import json
import logging
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

import httpx
from pydantic import BaseModel, Field

from client import ApiError, StorefrontClient
from pricing import shipping_for, subtotal, total_with_shipping
from schemas import Money

logger = logging.getLogger(__name__)


class LocalLine(BaseModel):
    product_id: int
    name: str
    price: Money
    image: Optional[str] = None
    quantity: int = Field(1, ge=1)
    server_id: Optional[int] = Field(None, description="Cart item id on the server, once mirrored")

    @classmethod
    def from_product(cls, product: Dict[str, Any], quantity: int = 1) -> "LocalLine":
        images = product.get("images") or []
        return cls(
            product_id=product["id"],
            name=product["name"],
            price=Decimal(str(product["price"])),
            image=images[0] if images else None,
            quantity=quantity,
        )

    @classmethod
    def from_server(cls, item: Dict[str, Any]) -> "LocalLine":
        line = cls.from_product(item["product"], item["quantity"])
        line.server_id = item["id"]
        return line


class CartStore:
    """JSON file holding the cart lines. Without a path it keeps nothing."""

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self.path = Path(path) if path else None

    def load(self) -> List[LocalLine]:
        if self.path is None or not self.path.exists():
            return []
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            return [LocalLine.model_validate(item) for item in data.get("items", [])]
        except ValueError as e:
            logger.warning(f"Ignoring unreadable cart file {self.path}: {e}")
            return []

    def save(self, lines: List[LocalLine]) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"items": [line.model_dump() for line in lines]}
        # prices stay exact as strings
        self.path.write_text(json.dumps(payload, indent=2, default=str), encoding="utf-8")


class Cart:
    def __init__(self, client: StorefrontClient, store: Optional[CartStore] = None):
        self.client = client
        self.store = store or CartStore()
        self.total_items = 0
        self.total_price = Decimal("0.00")
        self._lines: List[LocalLine] = []
        self._commit(self.store.load())

    @property
    def lines(self) -> List[LocalLine]:
        return [line.model_copy() for line in self._lines]

    @property
    def is_empty(self) -> bool:
        return not self._lines

    def find(self, product_id: int) -> Optional[LocalLine]:
        for line in self._lines:
            if line.product_id == product_id:
                return line
        return None

    def summary(self) -> Dict[str, Decimal]:
        return {
            "subtotal": self.total_price,
            "shipping": shipping_for(self.total_price),
            "total": total_with_shipping(self.total_price),
        }

    def _commit(self, lines: List[LocalLine]) -> None:
        self._lines = lines
        self.total_items = sum(line.quantity for line in lines)
        self.total_price = subtotal((line.price, line.quantity) for line in lines)
        self.store.save(lines)

    def _sync(self, action: str, call: Callable[[], Any]) -> Any:
        if not self.client.is_authenticated:
            return None
        try:
            return call()
        except (ApiError, httpx.HTTPError) as e:
            logger.warning(f"Cart sync failed ({action}): {e}")
            return None

    def _reconcile(self, server_item: Optional[Dict[str, Any]]) -> None:
        if not server_item:
            return
        merged = LocalLine.from_server(server_item)
        lines = [merged if line.product_id == merged.product_id else line for line in self._lines]
        self._commit(lines)

    def add_item(self, line: LocalLine) -> None:
        existing = self.find(line.product_id)
        push = line.quantity
        if existing is None:
            self._commit(self._lines + [line.model_copy()])
        else:
            updated = existing.model_copy(update={"quantity": existing.quantity + line.quantity})
            self._commit([updated if other.product_id == line.product_id else other for other in self._lines])
            if existing.server_id is None:
                # the server has never seen this line, send all of it
                push = updated.quantity

        self._reconcile(
            self._sync("add", lambda: self.client.add_cart_item(line.product_id, push))
        )

    def remove_item(self, product_id: int) -> None:
        existing = self.find(product_id)
        if existing is None:
            return
        self._commit([other for other in self._lines if other.product_id != product_id])
        if existing.server_id is not None:
            self._sync("remove", lambda: self.client.remove_cart_item(existing.server_id))

    def update_quantity(self, product_id: int, quantity: int) -> None:
        if quantity < 1:
            raise ValueError("quantity must be at least 1")
        existing = self.find(product_id)
        if existing is None:
            return
        updated = existing.model_copy(update={"quantity": quantity})
        self._commit([updated if other.product_id == product_id else other for other in self._lines])
        if existing.server_id is not None:
            self._reconcile(
                self._sync("update", lambda: self.client.update_cart_item(existing.server_id, quantity))
            )

    def clear(self, sync: bool = True) -> None:
        """Empty the cart. With ``sync=False`` the server cart is left alone."""
        self._commit([])
        if sync:
            self._sync("clear", self.client.clear_cart)

    def initialize(self) -> None:
        """Load the server cart after login, merging anonymous lines into it first."""
        if not self.client.is_authenticated:
            return
        for line in self._lines:
            if line.server_id is None:
                self._sync("merge", lambda line=line: self.client.add_cart_item(line.product_id, line.quantity))

        server_items = self._sync("load", self.client.get_cart)
        if server_items is None:
            return
        self._commit([LocalLine.from_server(item) for item in server_items])
