from typing import List
from uuid import uuid4

from fastapi import APIRouter, Depends

from auth import TokenSubject, require_admin
from deps import get_storage
from errors import NotFoundError
from schemas import (
    Article,
    ArticleCreate,
    ArticleUpdate,
    Category,
    CategoryCreate,
    NewsletterSubscriber,
    OrderDetail,
    OrderStatusUpdate,
    Product,
    ProductCreate,
    ProductMetadataUpdate,
    UserPublic,
)
from storage import Storage

admin_router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(require_admin)])


@admin_router.get("/users", response_model=List[UserPublic])
def list_users(storage: Storage = Depends(get_storage)):
    return [u.public() for u in storage.list_users()]


@admin_router.get("/orders", response_model=List[OrderDetail])
def list_orders(storage: Storage = Depends(get_storage)):
    return storage.list_orders()


@admin_router.patch("/orders/{order_id}", response_model=OrderDetail)
def update_order_status(order_id: int, payload: OrderStatusUpdate, storage: Storage = Depends(get_storage)):
    return storage.update_order_status(order_id, payload.status)


@admin_router.get("/newsletter", response_model=List[NewsletterSubscriber])
def list_subscribers(storage: Storage = Depends(get_storage)):
    return storage.list_subscribers()


# Catalog

@admin_router.post("/categories", response_model=Category, status_code=201)
def create_category(payload: CategoryCreate, storage: Storage = Depends(get_storage)):
    return storage.create_category(payload)


@admin_router.post("/products", response_model=Product, status_code=201)
def create_product(payload: ProductCreate, storage: Storage = Depends(get_storage)):
    if payload.category_id is not None and storage.get_category(payload.category_id) is None:
        raise NotFoundError("Category not found")
    if not payload.stripe_id:
        payload = payload.model_copy(update={"stripe_id": f"local_{uuid4().hex[:16]}"})
    return storage.create_product(payload)


@admin_router.patch("/products/{product_id}", response_model=Product)
def update_product_metadata(
    product_id: int, payload: ProductMetadataUpdate, storage: Storage = Depends(get_storage)
):
    changes = payload.model_dump(exclude_unset=True)
    if changes.get("category_id") is not None and storage.get_category(changes["category_id"]) is None:
        raise NotFoundError("Category not found")
    return storage.update_product(product_id, changes)


# Blog

@admin_router.post("/articles", response_model=Article, status_code=201)
def create_article(
    payload: ArticleCreate,
    subject: TokenSubject = Depends(require_admin),
    storage: Storage = Depends(get_storage),
):
    return storage.create_article(payload, author_id=subject.id)


@admin_router.patch("/articles/{article_id}", response_model=Article)
def update_article(article_id: int, payload: ArticleUpdate, storage: Storage = Depends(get_storage)):
    return storage.update_article(article_id, payload.model_dump(exclude_unset=True))


@admin_router.post("/articles/{article_id}/publish", response_model=Article)
def publish_article(article_id: int, storage: Storage = Depends(get_storage)):
    return storage.publish_article(article_id)
