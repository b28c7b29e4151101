"""
Schemas for the jewelry storefront

Entity models mirror the tables in database.py one-to-one (field names are the
column names) so rows can be validated with ``from_attributes``. Request
payloads live at the bottom of the module.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, HttpUrl, PlainSerializer, field_validator, model_validator

# Prices are Decimal internally and plain JSON numbers on the wire.
Money = Annotated[
    Decimal,
    Field(max_digits=10, decimal_places=2),
    PlainSerializer(float, return_type=float, when_used="json"),
]


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"


class OrderStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class Record(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# Users

class UserPublic(Record):
    id: int
    email: EmailStr
    name: Optional[str] = None
    role: Role = Role.USER
    address: Optional[str] = None
    phone: Optional[str] = None
    language: str = "en"
    profile_image: Optional[str] = Field(None, description="Avatar URL")
    stripe_customer_id: Optional[str] = None
    created_at: Optional[datetime] = None


class User(UserPublic):
    """Full user row, including the bcrypt hash. Never returned by the API."""
    password_hash: str

    def public(self) -> UserPublic:
        return UserPublic(**self.model_dump(exclude={"password_hash"}))


class NewUser(BaseModel):
    email: EmailStr
    password_hash: str
    name: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    role: Role = Role.USER
    language: str = "en"


# Catalog

class Category(Record):
    id: int
    name: str
    slug: str = Field(..., description="Unique routing key")
    description: Optional[str] = None


class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1)
    slug: str = Field(..., min_length=1, pattern=r"^[a-z0-9-]+$")
    description: Optional[str] = None


class Product(Record):
    id: int
    stripe_id: str = Field(..., description="External catalog id")
    name: str
    description: Optional[str] = None
    price: Money = Field(..., ge=0, description="Unit price")
    images: List[str] = Field(default_factory=list, description="Image URLs, first is the cover")
    category_id: Optional[int] = None
    inventory: int = 0
    is_new: bool = False
    is_best_seller: bool = False
    is_limited: bool = False
    attributes: Dict[str, Any] = Field(default_factory=dict, description="Free-form processor metadata")
    created_at: Optional[datetime] = None


class ProductCreate(BaseModel):
    stripe_id: Optional[str] = Field(None, description="Generated for admin-created products when omitted")
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    price: Money = Field(..., ge=0)
    images: List[str] = Field(default_factory=list)
    category_id: Optional[int] = None
    inventory: int = Field(0, ge=0)
    is_new: bool = False
    is_best_seller: bool = False
    is_limited: bool = False
    attributes: Dict[str, Any] = Field(default_factory=dict)


class ProductMetadataUpdate(BaseModel):
    is_new: Optional[bool] = None
    is_best_seller: Optional[bool] = None
    is_limited: Optional[bool] = None
    category_id: Optional[int] = None


# Cart

class CartItem(Record):
    id: int
    user_id: int
    product_id: int
    quantity: int = Field(..., ge=1)
    created_at: Optional[datetime] = None


class CartLine(CartItem):
    product: Product


class CartItemCreate(BaseModel):
    product_id: int
    quantity: int = Field(1, ge=1)


class CartQuantityUpdate(BaseModel):
    quantity: int = Field(..., ge=1)


# Orders

class Order(Record):
    id: int
    user_id: Optional[int] = None
    stripe_payment_intent_id: Optional[str] = None
    status: OrderStatus = OrderStatus.PENDING
    total: Money
    shipping: Dict[str, Any] = Field(default_factory=dict, description="Snapshot taken at settlement")
    created_at: Optional[datetime] = None


class OrderItem(Record):
    id: int
    order_id: int
    product_id: int
    quantity: int
    price: Money = Field(..., description="Unit price snapshotted at purchase time")


class OrderItemDetail(OrderItem):
    product: Optional[Product] = None


class OrderDetail(Order):
    items: List[OrderItemDetail] = Field(default_factory=list)


class OrderStatusUpdate(BaseModel):
    status: OrderStatus


# Wishlist

class WishlistItem(Record):
    id: int
    user_id: int
    product_id: int
    created_at: Optional[datetime] = None


class WishlistLine(WishlistItem):
    product: Product


class WishlistItemCreate(BaseModel):
    product_id: int


# Newsletter & blog

class NewsletterSubscriber(Record):
    id: int
    email: EmailStr
    confirmed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class SubscribeRequest(BaseModel):
    email: EmailStr


class Article(Record):
    id: int
    title: str
    slug: str
    content: str
    excerpt: Optional[str] = None
    cover_image: Optional[str] = None
    author_id: Optional[int] = None
    published: bool = False
    published_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ArticleCreate(BaseModel):
    title: str = Field(..., min_length=1)
    slug: str = Field(..., min_length=1, pattern=r"^[a-z0-9-]+$")
    content: str
    excerpt: Optional[str] = None
    cover_image: Optional[str] = None


class ArticleUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1)
    content: Optional[str] = None
    excerpt: Optional[str] = None
    cover_image: Optional[str] = None


# Auth & profile payloads

class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    confirm_password: Optional[str] = None
    name: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    language: str = Field("en", max_length=5)

    @model_validator(mode="after")
    def passwords_match(self):
        if self.confirm_password is not None and self.confirm_password != self.password:
            raise ValueError("Passwords don't match")
        return self


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)


class AuthResponse(BaseModel):
    user: UserPublic
    token: str


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str
    password: str = Field(..., min_length=6)


class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    language: Optional[str] = Field(None, max_length=5)

    @field_validator("language")
    @classmethod
    def language_not_null(cls, value):
        # name/address/phone may be cleared, language always has a value
        if value is None:
            raise ValueError("Language cannot be empty")
        return value


class ProfileImageUpdate(BaseModel):
    image_url: HttpUrl


class PasswordUpdate(BaseModel):
    password: str = Field(..., min_length=6)
    confirm_password: str

    @model_validator(mode="after")
    def passwords_match(self):
        if self.confirm_password != self.password:
            raise ValueError("Passwords don't match")
        return self


# Checkout

class ShippingDetails(BaseModel):
    name: str = Field(..., min_length=2, max_length=200, description="Please enter your full name")
    email: EmailStr
    address: str = Field(..., min_length=5, max_length=400, description="Please enter your full address")
    city: str = Field(..., min_length=2, max_length=200, description="Please enter your city")
    postal_code: str = Field(..., min_length=4, max_length=20, description="Please enter a valid postal code")
    country: str = Field(..., min_length=2, max_length=100, description="Please enter your country")
    phone: str = Field(..., min_length=8, max_length=40, description="Please enter a valid phone number")


class PaymentIntentRequest(BaseModel):
    shipping: Optional[ShippingDetails] = None
    amount: Optional[Money] = Field(None, description="Client-side estimate, informational only")
