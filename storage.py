"""
Persistence interface for the storefront.

``Storage`` is the contract every route and service talks to. Two backends
implement it: ``MemoryStorage`` (dict maps with id counters, used for local
development and tests) and ``SqlStorage`` (SQLAlchemy over any relational
URL). ``build_storage`` picks one from the settings.
"""

import logging
import secrets
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import Settings
from database import (
    ArticleRow,
    CartItemRow,
    CategoryRow,
    NewsletterSubscriberRow,
    OrderItemRow,
    OrderRow,
    PasswordResetTokenRow,
    ProductRow,
    UserRow,
    WishlistItemRow,
    init_db,
    make_engine,
    make_session_factory,
)
from errors import ConflictError, NotFoundError
from pricing import to_money
from schemas import (
    Article,
    ArticleCreate,
    CartItem,
    CartLine,
    Category,
    CategoryCreate,
    NewsletterSubscriber,
    NewUser,
    Order,
    OrderDetail,
    OrderItem,
    OrderItemDetail,
    OrderStatus,
    Product,
    ProductCreate,
    User,
    WishlistItem,
    WishlistLine,
)

logger = logging.getLogger(__name__)

RESET_TOKEN_TTL = timedelta(hours=1)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way back
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class Storage(ABC):
    backend = "abstract"

    # Users
    @abstractmethod
    def get_user(self, user_id: int) -> Optional[User]: ...

    @abstractmethod
    def get_user_by_email(self, email: str) -> Optional[User]: ...

    @abstractmethod
    def create_user(self, new_user: NewUser) -> User: ...

    @abstractmethod
    def update_user(self, user_id: int, changes: Dict[str, Any]) -> User: ...

    @abstractmethod
    def set_stripe_customer_id(self, user_id: int, customer_id: str) -> User: ...

    @abstractmethod
    def update_password(self, user_id: int, password_hash: str) -> User: ...

    @abstractmethod
    def list_users(self) -> List[User]: ...

    @abstractmethod
    def create_password_reset_token(self, email: str) -> Optional[str]: ...

    @abstractmethod
    def reset_password(self, token: str, password_hash: str) -> bool: ...

    # Categories
    @abstractmethod
    def get_category(self, category_id: int) -> Optional[Category]: ...

    @abstractmethod
    def get_category_by_slug(self, slug: str) -> Optional[Category]: ...

    @abstractmethod
    def create_category(self, data: CategoryCreate) -> Category: ...

    @abstractmethod
    def list_categories(self) -> List[Category]: ...

    # Products
    @abstractmethod
    def get_product(self, product_id: int) -> Optional[Product]: ...

    @abstractmethod
    def get_product_by_stripe_id(self, stripe_id: str) -> Optional[Product]: ...

    @abstractmethod
    def create_product(self, data: ProductCreate) -> Product: ...

    @abstractmethod
    def update_product(self, product_id: int, changes: Dict[str, Any]) -> Product: ...

    @abstractmethod
    def list_products(self) -> List[Product]: ...

    @abstractmethod
    def list_products_by_category(self, slug: str) -> List[Product]: ...

    @abstractmethod
    def list_best_sellers(self, limit: Optional[int] = None) -> List[Product]: ...

    @abstractmethod
    def list_new_products(self, limit: Optional[int] = None) -> List[Product]: ...

    # Cart
    @abstractmethod
    def get_cart_item(self, item_id: int) -> Optional[CartLine]: ...

    @abstractmethod
    def get_cart(self, user_id: int) -> List[CartLine]: ...

    @abstractmethod
    def add_to_cart(self, user_id: int, product_id: int, quantity: int) -> CartItem:
        """Insert a line, or add ``quantity`` to the existing line for the same product."""

    @abstractmethod
    def update_cart_quantity(self, item_id: int, quantity: int) -> CartItem: ...

    @abstractmethod
    def remove_from_cart(self, item_id: int) -> None: ...

    @abstractmethod
    def clear_cart(self, user_id: int) -> None: ...

    # Orders
    @abstractmethod
    def get_order(self, order_id: int) -> Optional[OrderDetail]: ...

    @abstractmethod
    def get_order_by_payment_intent(self, payment_intent_id: str) -> Optional[OrderDetail]: ...

    @abstractmethod
    def list_orders_by_user(self, user_id: int) -> List[OrderDetail]: ...

    @abstractmethod
    def list_orders(self) -> List[OrderDetail]: ...

    @abstractmethod
    def update_order_status(self, order_id: int, status: OrderStatus) -> OrderDetail: ...

    @abstractmethod
    def settle_order(
        self, user_id: int, payment_intent_id: str, total: Decimal, shipping: Dict[str, Any]
    ) -> Tuple[OrderDetail, bool]:
        """Turn the user's cart into a paid order, atomically.

        Creates the order, one item per cart line with the product price
        copied in, and clears the cart. Keyed on ``payment_intent_id``: if an
        order already exists for it, that order is returned with
        ``created=False`` and nothing is written.
        """

    # Wishlist
    @abstractmethod
    def list_wishlist(self, user_id: int) -> List[WishlistLine]: ...

    @abstractmethod
    def get_wishlist_item(self, item_id: int) -> Optional[WishlistItem]: ...

    @abstractmethod
    def add_to_wishlist(self, user_id: int, product_id: int) -> WishlistItem: ...

    @abstractmethod
    def remove_from_wishlist(self, item_id: int) -> None: ...

    @abstractmethod
    def is_in_wishlist(self, user_id: int, product_id: int) -> bool: ...

    # Newsletter
    @abstractmethod
    def get_subscriber_by_email(self, email: str) -> Optional[NewsletterSubscriber]: ...

    @abstractmethod
    def create_subscriber(self, email: str) -> NewsletterSubscriber: ...

    @abstractmethod
    def list_subscribers(self) -> List[NewsletterSubscriber]: ...

    # Articles
    @abstractmethod
    def list_articles(self, published_only: bool = False) -> List[Article]: ...

    @abstractmethod
    def get_article(self, article_id: int) -> Optional[Article]: ...

    @abstractmethod
    def get_article_by_slug(self, slug: str) -> Optional[Article]: ...

    @abstractmethod
    def create_article(self, data: ArticleCreate, author_id: Optional[int]) -> Article: ...

    @abstractmethod
    def update_article(self, article_id: int, changes: Dict[str, Any]) -> Article: ...

    @abstractmethod
    def publish_article(self, article_id: int) -> Article: ...


class MemoryStorage(Storage):
    backend = "memory"

    def __init__(self):
        self._lock = threading.RLock()
        self._counters: Dict[str, int] = {}
        self.users: Dict[int, User] = {}
        self.reset_tokens: Dict[str, Tuple[int, datetime]] = {}
        self.categories: Dict[int, Category] = {}
        self.products: Dict[int, Product] = {}
        self.cart_items: Dict[int, CartItem] = {}
        self.orders: Dict[int, Order] = {}
        self.order_items: Dict[int, OrderItem] = {}
        self.wishlist_items: Dict[int, WishlistItem] = {}
        self.subscribers: Dict[int, NewsletterSubscriber] = {}
        self.articles: Dict[int, Article] = {}

    def _next_id(self, table: str) -> int:
        self._counters[table] = self._counters.get(table, 0) + 1
        return self._counters[table]

    @staticmethod
    def _copy(record):
        return record.model_copy(deep=True) if record is not None else None

    # Users

    def get_user(self, user_id):
        return self._copy(self.users.get(user_id))

    def get_user_by_email(self, email):
        email = email.lower()
        for user in self.users.values():
            if user.email.lower() == email:
                return self._copy(user)
        return None

    def create_user(self, new_user):
        with self._lock:
            if self.get_user_by_email(new_user.email):
                raise ConflictError("User already exists")
            user = User(id=self._next_id("users"), created_at=_now(), **new_user.model_dump())
            self.users[user.id] = user
            return self._copy(user)

    def update_user(self, user_id, changes):
        with self._lock:
            user = self.users.get(user_id)
            if user is None:
                raise NotFoundError("User not found")
            updated = user.model_copy(update=changes)
            self.users[user_id] = updated
            return self._copy(updated)

    def set_stripe_customer_id(self, user_id, customer_id):
        return self.update_user(user_id, {"stripe_customer_id": customer_id})

    def update_password(self, user_id, password_hash):
        return self.update_user(user_id, {"password_hash": password_hash})

    def list_users(self):
        return [self._copy(u) for u in self.users.values()]

    def create_password_reset_token(self, email):
        user = self.get_user_by_email(email)
        if user is None:
            return None
        token = secrets.token_urlsafe(32)
        with self._lock:
            self.reset_tokens[token] = (user.id, _now() + RESET_TOKEN_TTL)
        return token

    def reset_password(self, token, password_hash):
        with self._lock:
            entry = self.reset_tokens.pop(token, None)
            if entry is None:
                return False
            user_id, expires_at = entry
            if expires_at < _now() or user_id not in self.users:
                return False
            self.update_password(user_id, password_hash)
            return True

    # Categories

    def get_category(self, category_id):
        return self._copy(self.categories.get(category_id))

    def get_category_by_slug(self, slug):
        for category in self.categories.values():
            if category.slug == slug:
                return self._copy(category)
        return None

    def create_category(self, data):
        with self._lock:
            if self.get_category_by_slug(data.slug):
                raise ConflictError("Category slug already exists")
            category = Category(id=self._next_id("categories"), **data.model_dump())
            self.categories[category.id] = category
            return self._copy(category)

    def list_categories(self):
        return [self._copy(c) for c in self.categories.values()]

    # Products

    def get_product(self, product_id):
        return self._copy(self.products.get(product_id))

    def get_product_by_stripe_id(self, stripe_id):
        for product in self.products.values():
            if product.stripe_id == stripe_id:
                return self._copy(product)
        return None

    def create_product(self, data):
        with self._lock:
            if data.stripe_id and self.get_product_by_stripe_id(data.stripe_id):
                raise ConflictError("Product already exists")
            product = Product(id=self._next_id("products"), created_at=_now(), **data.model_dump())
            self.products[product.id] = product
            return self._copy(product)

    def update_product(self, product_id, changes):
        with self._lock:
            product = self.products.get(product_id)
            if product is None:
                raise NotFoundError("Product not found")
            updated = Product.model_validate({**product.model_dump(), **changes})
            self.products[product_id] = updated
            return self._copy(updated)

    def list_products(self):
        return [self._copy(p) for p in self.products.values()]

    def list_products_by_category(self, slug):
        category = self.get_category_by_slug(slug)
        if category is None:
            return []
        return [self._copy(p) for p in self.products.values() if p.category_id == category.id]

    def list_best_sellers(self, limit=None):
        found = [self._copy(p) for p in self.products.values() if p.is_best_seller]
        return found[:limit] if limit else found

    def list_new_products(self, limit=None):
        found = [self._copy(p) for p in self.products.values() if p.is_new]
        return found[:limit] if limit else found

    # Cart

    def _line(self, item: CartItem) -> Optional[CartLine]:
        product = self.products.get(item.product_id)
        if product is None:
            return None
        return CartLine(**item.model_dump(), product=self._copy(product))

    def get_cart_item(self, item_id):
        item = self.cart_items.get(item_id)
        return self._line(item) if item else None

    def get_cart(self, user_id):
        lines = (self._line(i) for i in self.cart_items.values() if i.user_id == user_id)
        return [line for line in lines if line is not None]

    def add_to_cart(self, user_id, product_id, quantity):
        with self._lock:
            for item in self.cart_items.values():
                if item.user_id == user_id and item.product_id == product_id:
                    item.quantity += quantity
                    return self._copy(item)
            item = CartItem(
                id=self._next_id("cart_items"),
                user_id=user_id,
                product_id=product_id,
                quantity=quantity,
                created_at=_now(),
            )
            self.cart_items[item.id] = item
            return self._copy(item)

    def update_cart_quantity(self, item_id, quantity):
        with self._lock:
            item = self.cart_items.get(item_id)
            if item is None:
                raise NotFoundError("Cart item not found")
            item.quantity = quantity
            return self._copy(item)

    def remove_from_cart(self, item_id):
        with self._lock:
            self.cart_items.pop(item_id, None)

    def clear_cart(self, user_id):
        with self._lock:
            for item_id in [i.id for i in self.cart_items.values() if i.user_id == user_id]:
                del self.cart_items[item_id]

    # Orders

    def _detail(self, order: Order) -> OrderDetail:
        items = [
            OrderItemDetail(**item.model_dump(), product=self._copy(self.products.get(item.product_id)))
            for item in self.order_items.values()
            if item.order_id == order.id
        ]
        return OrderDetail(**order.model_dump(), items=items)

    def get_order(self, order_id):
        order = self.orders.get(order_id)
        return self._detail(order) if order else None

    def get_order_by_payment_intent(self, payment_intent_id):
        for order in self.orders.values():
            if order.stripe_payment_intent_id == payment_intent_id:
                return self._detail(order)
        return None

    def list_orders_by_user(self, user_id):
        found = [o for o in self.orders.values() if o.user_id == user_id]
        return [self._detail(o) for o in sorted(found, key=lambda o: o.id, reverse=True)]

    def list_orders(self):
        return [self._detail(o) for o in sorted(self.orders.values(), key=lambda o: o.id, reverse=True)]

    def update_order_status(self, order_id, status):
        with self._lock:
            order = self.orders.get(order_id)
            if order is None:
                raise NotFoundError("Order not found")
            order.status = status
            return self._detail(order)

    def settle_order(self, user_id, payment_intent_id, total, shipping):
        with self._lock:
            existing = self.get_order_by_payment_intent(payment_intent_id)
            if existing is not None:
                return existing, False
            order = Order(
                id=self._next_id("orders"),
                user_id=user_id,
                stripe_payment_intent_id=payment_intent_id,
                status=OrderStatus.PAID,
                total=to_money(total),
                shipping=dict(shipping),
                created_at=_now(),
            )
            self.orders[order.id] = order
            for line in self.get_cart(user_id):
                item = OrderItem(
                    id=self._next_id("order_items"),
                    order_id=order.id,
                    product_id=line.product_id,
                    quantity=line.quantity,
                    price=line.product.price,
                )
                self.order_items[item.id] = item
            self.clear_cart(user_id)
            return self._detail(order), True

    # Wishlist

    def list_wishlist(self, user_id):
        lines = []
        for item in self.wishlist_items.values():
            product = self.products.get(item.product_id)
            if item.user_id == user_id and product is not None:
                lines.append(WishlistLine(**item.model_dump(), product=self._copy(product)))
        return lines

    def get_wishlist_item(self, item_id):
        return self._copy(self.wishlist_items.get(item_id))

    def add_to_wishlist(self, user_id, product_id):
        with self._lock:
            for item in self.wishlist_items.values():
                if item.user_id == user_id and item.product_id == product_id:
                    return self._copy(item)
            item = WishlistItem(
                id=self._next_id("wishlist_items"), user_id=user_id, product_id=product_id, created_at=_now()
            )
            self.wishlist_items[item.id] = item
            return self._copy(item)

    def remove_from_wishlist(self, item_id):
        with self._lock:
            self.wishlist_items.pop(item_id, None)

    def is_in_wishlist(self, user_id, product_id):
        return any(i.user_id == user_id and i.product_id == product_id for i in self.wishlist_items.values())

    # Newsletter

    def get_subscriber_by_email(self, email):
        email = email.lower()
        for subscriber in self.subscribers.values():
            if subscriber.email.lower() == email:
                return self._copy(subscriber)
        return None

    def create_subscriber(self, email):
        with self._lock:
            if self.get_subscriber_by_email(email):
                raise ConflictError("Email already subscribed")
            subscriber = NewsletterSubscriber(id=self._next_id("subscribers"), email=email, created_at=_now())
            self.subscribers[subscriber.id] = subscriber
            return self._copy(subscriber)

    def list_subscribers(self):
        return [self._copy(s) for s in self.subscribers.values()]

    # Articles

    def list_articles(self, published_only=False):
        found = [a for a in self.articles.values() if a.published or not published_only]
        return [self._copy(a) for a in sorted(found, key=lambda a: a.id, reverse=True)]

    def get_article(self, article_id):
        return self._copy(self.articles.get(article_id))

    def get_article_by_slug(self, slug):
        for article in self.articles.values():
            if article.slug == slug:
                return self._copy(article)
        return None

    def create_article(self, data, author_id):
        with self._lock:
            if self.get_article_by_slug(data.slug):
                raise ConflictError("Article slug already exists")
            now = _now()
            article = Article(
                id=self._next_id("articles"), author_id=author_id, created_at=now, updated_at=now, **data.model_dump()
            )
            self.articles[article.id] = article
            return self._copy(article)

    def update_article(self, article_id, changes):
        with self._lock:
            article = self.articles.get(article_id)
            if article is None:
                raise NotFoundError("Article not found")
            updated = article.model_copy(update={**changes, "updated_at": _now()})
            self.articles[article_id] = updated
            return self._copy(updated)

    def publish_article(self, article_id):
        return self.update_article(article_id, {"published": True, "published_at": _now()})


class SqlStorage(Storage):
    backend = "sql"

    def __init__(self, url: str, create_tables: bool = True):
        self.engine = make_engine(url)
        self.Session = make_session_factory(self.engine)
        if create_tables:
            init_db(self.engine)

    @staticmethod
    def _insert(session: Session, row, message: str):
        session.add(row)
        try:
            session.flush()
        except IntegrityError as e:
            raise ConflictError(message) from e
        return row

    # Users

    def get_user(self, user_id):
        with self.Session() as session:
            row = session.get(UserRow, user_id)
            return User.model_validate(row) if row else None

    def get_user_by_email(self, email):
        with self.Session() as session:
            row = session.scalars(select(UserRow).where(func.lower(UserRow.email) == email.lower())).first()
            return User.model_validate(row) if row else None

    def create_user(self, new_user):
        if self.get_user_by_email(new_user.email):
            raise ConflictError("User already exists")
        with self.Session.begin() as session:
            data = new_user.model_dump()
            data["role"] = new_user.role.value
            row = self._insert(session, UserRow(**data), "User already exists")
            return User.model_validate(row)

    def update_user(self, user_id, changes):
        with self.Session.begin() as session:
            row = session.get(UserRow, user_id)
            if row is None:
                raise NotFoundError("User not found")
            for key, value in changes.items():
                setattr(row, key, value.value if key == "role" else value)
            session.flush()
            return User.model_validate(row)

    def set_stripe_customer_id(self, user_id, customer_id):
        return self.update_user(user_id, {"stripe_customer_id": customer_id})

    def update_password(self, user_id, password_hash):
        return self.update_user(user_id, {"password_hash": password_hash})

    def list_users(self):
        with self.Session() as session:
            return [User.model_validate(r) for r in session.scalars(select(UserRow).order_by(UserRow.id))]

    def create_password_reset_token(self, email):
        user = self.get_user_by_email(email)
        if user is None:
            return None
        token = secrets.token_urlsafe(32)
        with self.Session.begin() as session:
            session.add(PasswordResetTokenRow(user_id=user.id, token=token, expires_at=_now() + RESET_TOKEN_TTL))
        return token

    def reset_password(self, token, password_hash):
        with self.Session.begin() as session:
            row = session.scalars(select(PasswordResetTokenRow).where(PasswordResetTokenRow.token == token)).first()
            if row is None:
                return False
            user_id, expires_at = row.user_id, _aware(row.expires_at)
            session.delete(row)
            if expires_at < _now():
                return False
            user = session.get(UserRow, user_id)
            if user is None:
                return False
            user.password_hash = password_hash
            return True

    # Categories

    def get_category(self, category_id):
        with self.Session() as session:
            row = session.get(CategoryRow, category_id)
            return Category.model_validate(row) if row else None

    def get_category_by_slug(self, slug):
        with self.Session() as session:
            row = session.scalars(select(CategoryRow).where(CategoryRow.slug == slug)).first()
            return Category.model_validate(row) if row else None

    def create_category(self, data):
        with self.Session.begin() as session:
            row = self._insert(session, CategoryRow(**data.model_dump()), "Category slug already exists")
            return Category.model_validate(row)

    def list_categories(self):
        with self.Session() as session:
            return [Category.model_validate(r) for r in session.scalars(select(CategoryRow).order_by(CategoryRow.id))]

    # Products

    def get_product(self, product_id):
        with self.Session() as session:
            row = session.get(ProductRow, product_id)
            return Product.model_validate(row) if row else None

    def get_product_by_stripe_id(self, stripe_id):
        with self.Session() as session:
            row = session.scalars(select(ProductRow).where(ProductRow.stripe_id == stripe_id)).first()
            return Product.model_validate(row) if row else None

    def create_product(self, data):
        with self.Session.begin() as session:
            row = self._insert(session, ProductRow(**data.model_dump()), "Product already exists")
            return Product.model_validate(row)

    def update_product(self, product_id, changes):
        with self.Session.begin() as session:
            row = session.get(ProductRow, product_id)
            if row is None:
                raise NotFoundError("Product not found")
            for key, value in changes.items():
                setattr(row, key, value)
            session.flush()
            return Product.model_validate(row)

    def _products(self, *criteria, limit=None):
        query = select(ProductRow).where(*criteria).order_by(ProductRow.id)
        if limit:
            query = query.limit(limit)
        with self.Session() as session:
            return [Product.model_validate(r) for r in session.scalars(query)]

    def list_products(self):
        return self._products()

    def list_products_by_category(self, slug):
        category = self.get_category_by_slug(slug)
        if category is None:
            return []
        return self._products(ProductRow.category_id == category.id)

    def list_best_sellers(self, limit=None):
        return self._products(ProductRow.is_best_seller.is_(True), limit=limit)

    def list_new_products(self, limit=None):
        return self._products(ProductRow.is_new.is_(True), limit=limit)

    # Cart

    def _cart_lines(self, session: Session, *criteria) -> List[CartLine]:
        query = (
            select(CartItemRow, ProductRow)
            .join(ProductRow, ProductRow.id == CartItemRow.product_id)
            .where(*criteria)
            .order_by(CartItemRow.id)
        )
        return [
            CartLine(**CartItem.model_validate(item).model_dump(), product=Product.model_validate(product))
            for item, product in session.execute(query)
        ]

    def get_cart_item(self, item_id):
        with self.Session() as session:
            lines = self._cart_lines(session, CartItemRow.id == item_id)
            return lines[0] if lines else None

    def get_cart(self, user_id):
        with self.Session() as session:
            return self._cart_lines(session, CartItemRow.user_id == user_id)

    def add_to_cart(self, user_id, product_id, quantity):
        with self.Session.begin() as session:
            row = session.scalars(
                select(CartItemRow).where(CartItemRow.user_id == user_id, CartItemRow.product_id == product_id)
            ).first()
            if row is None:
                row = CartItemRow(user_id=user_id, product_id=product_id, quantity=quantity)
                session.add(row)
            else:
                row.quantity += quantity
            session.flush()
            return CartItem.model_validate(row)

    def update_cart_quantity(self, item_id, quantity):
        with self.Session.begin() as session:
            row = session.get(CartItemRow, item_id)
            if row is None:
                raise NotFoundError("Cart item not found")
            row.quantity = quantity
            session.flush()
            return CartItem.model_validate(row)

    def remove_from_cart(self, item_id):
        with self.Session.begin() as session:
            session.execute(delete(CartItemRow).where(CartItemRow.id == item_id))

    def clear_cart(self, user_id):
        with self.Session.begin() as session:
            session.execute(delete(CartItemRow).where(CartItemRow.user_id == user_id))

    # Orders

    def _order_details(self, session: Session, *criteria) -> List[OrderDetail]:
        orders = session.scalars(select(OrderRow).where(*criteria).order_by(OrderRow.id.desc())).all()
        details = []
        for order in orders:
            rows = session.execute(
                select(OrderItemRow, ProductRow)
                .outerjoin(ProductRow, ProductRow.id == OrderItemRow.product_id)
                .where(OrderItemRow.order_id == order.id)
                .order_by(OrderItemRow.id)
            )
            items = [
                OrderItemDetail(
                    **OrderItem.model_validate(item).model_dump(),
                    product=Product.model_validate(product) if product is not None else None,
                )
                for item, product in rows
            ]
            details.append(OrderDetail(**Order.model_validate(order).model_dump(), items=items))
        return details

    def get_order(self, order_id):
        with self.Session() as session:
            found = self._order_details(session, OrderRow.id == order_id)
            return found[0] if found else None

    def get_order_by_payment_intent(self, payment_intent_id):
        with self.Session() as session:
            found = self._order_details(session, OrderRow.stripe_payment_intent_id == payment_intent_id)
            return found[0] if found else None

    def list_orders_by_user(self, user_id):
        with self.Session() as session:
            return self._order_details(session, OrderRow.user_id == user_id)

    def list_orders(self):
        with self.Session() as session:
            return self._order_details(session)

    def update_order_status(self, order_id, status):
        with self.Session.begin() as session:
            row = session.get(OrderRow, order_id)
            if row is None:
                raise NotFoundError("Order not found")
            row.status = status.value
        return self.get_order(order_id)

    def settle_order(self, user_id, payment_intent_id, total, shipping):
        existing = self.get_order_by_payment_intent(payment_intent_id)
        if existing is not None:
            return existing, False
        try:
            with self.Session.begin() as session:
                order = OrderRow(
                    user_id=user_id,
                    stripe_payment_intent_id=payment_intent_id,
                    status=OrderStatus.PAID.value,
                    total=to_money(total),
                    shipping=dict(shipping),
                )
                session.add(order)
                session.flush()
                for line in self._cart_lines(session, CartItemRow.user_id == user_id):
                    session.add(
                        OrderItemRow(
                            order_id=order.id,
                            product_id=line.product_id,
                            quantity=line.quantity,
                            price=line.product.price,
                        )
                    )
                session.execute(delete(CartItemRow).where(CartItemRow.user_id == user_id))
                order_id = order.id
        except IntegrityError:
            # a concurrent delivery of the same event won the unique constraint
            existing = self.get_order_by_payment_intent(payment_intent_id)
            if existing is None:
                raise
            return existing, False
        return self.get_order(order_id), True

    # Wishlist

    def list_wishlist(self, user_id):
        with self.Session() as session:
            rows = session.execute(
                select(WishlistItemRow, ProductRow)
                .join(ProductRow, ProductRow.id == WishlistItemRow.product_id)
                .where(WishlistItemRow.user_id == user_id)
                .order_by(WishlistItemRow.id)
            )
            return [
                WishlistLine(**WishlistItem.model_validate(item).model_dump(), product=Product.model_validate(product))
                for item, product in rows
            ]

    def get_wishlist_item(self, item_id):
        with self.Session() as session:
            row = session.get(WishlistItemRow, item_id)
            return WishlistItem.model_validate(row) if row else None

    def _wishlist_row(self, session: Session, user_id: int, product_id: int) -> Optional[WishlistItemRow]:
        return session.scalars(
            select(WishlistItemRow).where(WishlistItemRow.user_id == user_id, WishlistItemRow.product_id == product_id)
        ).first()

    def add_to_wishlist(self, user_id, product_id):
        with self.Session.begin() as session:
            row = self._wishlist_row(session, user_id, product_id)
            if row is None:
                row = WishlistItemRow(user_id=user_id, product_id=product_id)
                session.add(row)
                session.flush()
            return WishlistItem.model_validate(row)

    def remove_from_wishlist(self, item_id):
        with self.Session.begin() as session:
            session.execute(delete(WishlistItemRow).where(WishlistItemRow.id == item_id))

    def is_in_wishlist(self, user_id, product_id):
        with self.Session() as session:
            return self._wishlist_row(session, user_id, product_id) is not None

    # Newsletter

    def get_subscriber_by_email(self, email):
        with self.Session() as session:
            row = session.scalars(
                select(NewsletterSubscriberRow).where(func.lower(NewsletterSubscriberRow.email) == email.lower())
            ).first()
            return NewsletterSubscriber.model_validate(row) if row else None

    def create_subscriber(self, email):
        if self.get_subscriber_by_email(email):
            raise ConflictError("Email already subscribed")
        with self.Session.begin() as session:
            row = self._insert(session, NewsletterSubscriberRow(email=email), "Email already subscribed")
            return NewsletterSubscriber.model_validate(row)

    def list_subscribers(self):
        with self.Session() as session:
            rows = session.scalars(select(NewsletterSubscriberRow).order_by(NewsletterSubscriberRow.id))
            return [NewsletterSubscriber.model_validate(r) for r in rows]

    # Articles

    def list_articles(self, published_only=False):
        query = select(ArticleRow).order_by(ArticleRow.id.desc())
        if published_only:
            query = query.where(ArticleRow.published.is_(True))
        with self.Session() as session:
            return [Article.model_validate(r) for r in session.scalars(query)]

    def get_article(self, article_id):
        with self.Session() as session:
            row = session.get(ArticleRow, article_id)
            return Article.model_validate(row) if row else None

    def get_article_by_slug(self, slug):
        with self.Session() as session:
            row = session.scalars(select(ArticleRow).where(ArticleRow.slug == slug)).first()
            return Article.model_validate(row) if row else None

    def create_article(self, data, author_id):
        with self.Session.begin() as session:
            row = self._insert(
                session, ArticleRow(author_id=author_id, **data.model_dump()), "Article slug already exists"
            )
            return Article.model_validate(row)

    def update_article(self, article_id, changes):
        with self.Session.begin() as session:
            row = session.get(ArticleRow, article_id)
            if row is None:
                raise NotFoundError("Article not found")
            for key, value in changes.items():
                setattr(row, key, value)
            row.updated_at = _now()
            session.flush()
            return Article.model_validate(row)

    def publish_article(self, article_id):
        return self.update_article(article_id, {"published": True, "published_at": _now()})


def build_storage(settings: Settings) -> Storage:
    if settings.DATABASE_URL:
        logger.info("Using SQL storage")
        return SqlStorage(settings.DATABASE_URL)
    logger.info("DATABASE_URL not set, using in-memory storage")
    return MemoryStorage()
