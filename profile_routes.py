from typing import Dict, List

from fastapi import APIRouter, Depends, Response

from auth import TokenSubject, current_subject, hash_password
from deps import get_storage
from errors import NotFoundError
from schemas import (
    PasswordUpdate,
    ProfileImageUpdate,
    ProfileUpdate,
    UserPublic,
    WishlistItem,
    WishlistItemCreate,
    WishlistLine,
)
from storage import Storage

router = APIRouter(prefix="/api", tags=["profile"])


@router.patch("/profile", response_model=UserPublic)
def update_profile(
    payload: ProfileUpdate,
    subject: TokenSubject = Depends(current_subject),
    storage: Storage = Depends(get_storage),
):
    return storage.update_user(subject.id, payload.model_dump(exclude_unset=True)).public()


@router.post("/profile/image", response_model=UserPublic)
def update_profile_image(
    payload: ProfileImageUpdate,
    subject: TokenSubject = Depends(current_subject),
    storage: Storage = Depends(get_storage),
):
    return storage.update_user(subject.id, {"profile_image": str(payload.image_url)}).public()


@router.post("/profile/password", response_model=UserPublic)
def update_password(
    payload: PasswordUpdate,
    subject: TokenSubject = Depends(current_subject),
    storage: Storage = Depends(get_storage),
):
    return storage.update_password(subject.id, hash_password(payload.password)).public()


# Wishlist

@router.get("/wishlist", response_model=List[WishlistLine])
def get_wishlist(subject: TokenSubject = Depends(current_subject), storage: Storage = Depends(get_storage)):
    return storage.list_wishlist(subject.id)


@router.post("/wishlist", response_model=WishlistItem, status_code=201)
def add_to_wishlist(
    payload: WishlistItemCreate,
    subject: TokenSubject = Depends(current_subject),
    storage: Storage = Depends(get_storage),
):
    if storage.get_product(payload.product_id) is None:
        raise NotFoundError("Product not found")
    return storage.add_to_wishlist(subject.id, payload.product_id)


@router.delete("/wishlist/{item_id}", status_code=204)
def remove_from_wishlist(
    item_id: int,
    subject: TokenSubject = Depends(current_subject),
    storage: Storage = Depends(get_storage),
):
    item = storage.get_wishlist_item(item_id)
    if item is None or item.user_id != subject.id:
        raise NotFoundError("Wishlist item not found")
    storage.remove_from_wishlist(item_id)
    return Response(status_code=204)


@router.get("/wishlist/check/{product_id}")
def check_wishlist(
    product_id: int,
    subject: TokenSubject = Depends(current_subject),
    storage: Storage = Depends(get_storage),
) -> Dict[str, bool]:
    return {"in_wishlist": storage.is_in_wishlist(subject.id, product_id)}
