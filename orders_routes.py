from typing import List

from fastapi import APIRouter, Depends

from auth import TokenSubject, current_subject
from deps import get_storage
from errors import NotFoundError
from schemas import OrderDetail
from storage import Storage

orders_router = APIRouter(prefix="/api/orders", tags=["orders"])


@orders_router.get("", response_model=List[OrderDetail])
def order_history(subject: TokenSubject = Depends(current_subject), storage: Storage = Depends(get_storage)):
    return storage.list_orders_by_user(subject.id)


@orders_router.get("/{order_id}", response_model=OrderDetail)
def get_order(order_id: int, subject: TokenSubject = Depends(current_subject), storage: Storage = Depends(get_storage)):
    order = storage.get_order(order_id)
    if order is None or order.user_id != subject.id:
        raise NotFoundError("Order not found")
    return order
