"""
Server-side cart for authenticated shoppers.

A line that belongs to another user is reported as missing, exactly like a
line that does not exist.
"""

from typing import List

from fastapi import APIRouter, Depends, Response

from auth import TokenSubject, current_subject
from deps import get_storage
from errors import NotFoundError
from schemas import CartItemCreate, CartLine, CartQuantityUpdate
from storage import Storage

router = APIRouter(prefix="/api/cart", tags=["cart"])


def _owned_line(storage: Storage, item_id: int, user_id: int) -> CartLine:
    line = storage.get_cart_item(item_id)
    if line is None or line.user_id != user_id:
        raise NotFoundError("Cart item not found")
    return line


@router.get("", response_model=List[CartLine])
def get_cart(subject: TokenSubject = Depends(current_subject), storage: Storage = Depends(get_storage)):
    return storage.get_cart(subject.id)


@router.post("", response_model=CartLine, status_code=201)
def add_to_cart(
    payload: CartItemCreate,
    subject: TokenSubject = Depends(current_subject),
    storage: Storage = Depends(get_storage),
):
    if storage.get_product(payload.product_id) is None:
        raise NotFoundError("Product not found")
    item = storage.add_to_cart(subject.id, payload.product_id, payload.quantity)
    return storage.get_cart_item(item.id)


@router.patch("/{item_id}", response_model=CartLine)
def update_quantity(
    item_id: int,
    payload: CartQuantityUpdate,
    subject: TokenSubject = Depends(current_subject),
    storage: Storage = Depends(get_storage),
):
    _owned_line(storage, item_id, subject.id)
    storage.update_cart_quantity(item_id, payload.quantity)
    return storage.get_cart_item(item_id)


@router.delete("/{item_id}", status_code=204)
def remove_item(
    item_id: int,
    subject: TokenSubject = Depends(current_subject),
    storage: Storage = Depends(get_storage),
):
    _owned_line(storage, item_id, subject.id)
    storage.remove_from_cart(item_id)
    return Response(status_code=204)


@router.delete("", status_code=204)
def clear_cart(subject: TokenSubject = Depends(current_subject), storage: Storage = Depends(get_storage)):
    storage.clear_cart(subject.id)
    return Response(status_code=204)
