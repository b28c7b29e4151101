from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from deps import get_storage
from errors import NotFoundError
from schemas import Category, Product
from storage import Storage

catalog_router = APIRouter(prefix="/api", tags=["catalog"])


@catalog_router.get("/products", response_model=List[Product])
def list_products(category: Optional[str] = None, storage: Storage = Depends(get_storage)):
    if category:
        return storage.list_products_by_category(category)
    return storage.list_products()


@catalog_router.get("/products/best-sellers", response_model=List[Product])
def best_sellers(limit: Optional[int] = Query(None, ge=1), storage: Storage = Depends(get_storage)):
    return storage.list_best_sellers(limit)


@catalog_router.get("/products/new", response_model=List[Product])
def new_arrivals(limit: Optional[int] = Query(None, ge=1), storage: Storage = Depends(get_storage)):
    return storage.list_new_products(limit)


@catalog_router.get("/products/{product_id}", response_model=Product)
def get_product(product_id: int, storage: Storage = Depends(get_storage)):
    product = storage.get_product(product_id)
    if product is None:
        raise NotFoundError("Product not found")
    return product


@catalog_router.get("/categories", response_model=List[Category])
def list_categories(storage: Storage = Depends(get_storage)):
    return storage.list_categories()


@catalog_router.get("/categories/{slug}/products", response_model=List[Product])
def category_products(slug: str, storage: Storage = Depends(get_storage)):
    return storage.list_products_by_category(slug)
