"""
HTTP client for the storefront API.

Wraps an ``httpx.Client`` (FastAPI's ``TestClient`` works too) and keeps the
bearer token of the logged-in shopper.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)


class ApiError(Exception):
    def __init__(self, status_code: int, detail: str, errors: Optional[List[Dict[str, str]]] = None):
        super().__init__(f"{status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail
        self.errors = errors or []


class StorefrontClient:
    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        http: Optional[httpx.Client] = None,
        token: Optional[str] = None,
    ):
        self.http = http or httpx.Client(base_url=base_url)
        self.token = token
        self.user: Optional[Dict[str, Any]] = None

    @property
    def is_authenticated(self) -> bool:
        return self.token is not None

    def _request(self, method: str, path: str, json: Any = None) -> Any:
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        response = self.http.request(method, path, json=json, headers=headers)
        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = {"detail": response.text}
            raise ApiError(response.status_code, body.get("detail", "Request failed"), body.get("errors"))
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    # Auth

    def _session(self, data: Dict[str, Any]) -> Dict[str, Any]:
        self.token = data["token"]
        self.user = data["user"]
        return self.user

    def register(self, email: str, password: str, **profile: Any) -> Dict[str, Any]:
        return self._session(self._request("POST", "/api/auth/register", {"email": email, "password": password, **profile}))

    def login(self, email: str, password: str) -> Dict[str, Any]:
        return self._session(self._request("POST", "/api/auth/login", {"email": email, "password": password}))

    def logout(self) -> None:
        self.token = None
        self.user = None

    def me(self) -> Dict[str, Any]:
        return self._request("GET", "/api/auth/me")

    # Catalog

    def get_products(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/api/products")

    def get_product(self, product_id: int) -> Dict[str, Any]:
        return self._request("GET", f"/api/products/{product_id}")

    # Cart

    def get_cart(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/api/cart")

    def add_cart_item(self, product_id: int, quantity: int) -> Dict[str, Any]:
        return self._request("POST", "/api/cart", {"product_id": product_id, "quantity": quantity})

    def update_cart_item(self, item_id: int, quantity: int) -> Dict[str, Any]:
        return self._request("PATCH", f"/api/cart/{item_id}", {"quantity": quantity})

    def remove_cart_item(self, item_id: int) -> None:
        self._request("DELETE", f"/api/cart/{item_id}")

    def clear_cart(self) -> None:
        self._request("DELETE", "/api/cart")

    # Checkout & orders

    def create_payment_intent(self, shipping: Optional[Dict[str, Any]], amount: Optional[float] = None) -> Dict[str, Any]:
        return self._request("POST", "/api/create-payment-intent", {"shipping": shipping, "amount": amount})

    def list_orders(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/api/orders")
