import logging
from typing import Optional

from errors import ConflictError
from schemas import CategoryCreate, NewUser, ProductCreate, Role
from storage import Storage

logger = logging.getLogger(__name__)

JEWELRY_CATEGORIES = [
    {"name": "Earrings", "slug": "earrings", "description": "Elegant earrings for every occasion"},
    {"name": "Necklaces", "slug": "necklaces", "description": "Beautiful necklaces to complete your look"},
    {"name": "Bracelets", "slug": "bracelets", "description": "Delicate bracelets for your wrist"},
    {"name": "Rings", "slug": "rings", "description": "Stunning rings for every finger"},
]

# category is looked up by slug at seed time
JEWELRY_PRODUCTS = [
    {
        "stripe_id": "prod_sample1",
        "name": "Pearl Drop Earrings",
        "description": "Elegant pearl drop earrings with gold accents",
        "price": 95,
        "images": [
            "https://images.unsplash.com/photo-1588444837495-c6cfeb53f32d?auto=format&fit=crop&w=600&h=600",
        ],
        "category": "earrings",
        "inventory": 10,
        "is_new": True,
        "is_best_seller": True,
    },
    {
        "stripe_id": "prod_sample2",
        "name": "Luna Gold Bracelet",
        "description": "18k gold bracelet with diamond accents",
        "price": 195,
        "images": [],
        "category": "bracelets",
        "inventory": 5,
        "is_best_seller": True,
    },
    {
        "stripe_id": "prod_sample3",
        "name": "Celestial Diamond Necklace",
        "description": "A delicate diamond pendant necklace on gold chain",
        "price": 125,
        "images": [],
        "category": "necklaces",
        "inventory": 8,
        "is_limited": True,
    },
    {
        "stripe_id": "prod_sample4",
        "name": "Minimalist Silver Ring",
        "description": "A silver ring with minimalist design",
        "price": 75,
        "images": [
            "https://images.unsplash.com/photo-1535632066927-ab7c9ab60908?auto=format&fit=crop&w=600&h=600",
        ],
        "category": "rings",
        "inventory": 15,
        "is_best_seller": True,
    },
]


def seed_catalog_if_empty(storage: Storage) -> int:
    """Load the sample jewelry catalog into an empty store. Returns products created."""
    if storage.list_products():
        return 0

    for c in JEWELRY_CATEGORIES:
        try:
            storage.create_category(CategoryCreate(**c))
        except ConflictError:
            logger.debug(f"Category {c['slug']} already present")

    created = 0
    for p in JEWELRY_PRODUCTS:
        data = dict(p)
        category = storage.get_category_by_slug(data.pop("category"))
        data["category_id"] = category.id if category else None
        try:
            storage.create_product(ProductCreate(**data))
            created += 1
        except ConflictError:
            logger.debug(f"Product {data['stripe_id']} already present")
    logger.info(f"Seeded {created} sample products")
    return created


def seed_admin(storage: Storage, email: Optional[str], password_hash: Optional[str]) -> None:
    if not email or not password_hash:
        return
    if storage.get_user_by_email(email):
        return
    storage.create_user(NewUser(email=email, password_hash=password_hash, name="Admin User", role=Role.ADMIN))
    logger.info(f"Created admin account {email}")
