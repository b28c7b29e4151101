"""Catalog, profile, wishlist, newsletter, blog and admin routes."""

from fastapi.testclient import TestClient

from conftest import PASSWORD, bearer
from main import app, create_app
from schemas import CategoryCreate, Role


def test_health_routes(client):
    assert client.get("/").json() == {"message": "DR Bijuteria backend running"}
    status = client.get("/test").json()
    assert status["backend"] == "✅ Running"
    assert status["webhook_signing"] == "✅ Set"


def test_sample_catalog_is_seeded(settings, storage, gateway):
    client = TestClient(create_app(settings.model_copy(update={"SEED_SAMPLE_DATA": True}), storage, gateway))

    products = client.get("/api/products").json()
    assert len(products) == 4
    assert {p["name"] for p in client.get("/api/products/best-sellers").json()} == {
        "Pearl Drop Earrings",
        "Luna Gold Bracelet",
        "Minimalist Silver Ring",
    }
    assert [p["name"] for p in client.get("/api/products?category=rings").json()] == ["Minimalist Silver Ring"]
    assert [p["name"] for p in client.get("/api/categories/earrings/products").json()] == ["Pearl Drop Earrings"]
    assert len(client.get("/api/categories").json()) == 4


def test_product_lookup(client, make_product):
    ring = make_product("75.00", name="Opal Ring", is_new=True)

    assert client.get(f"/api/products/{ring.id}").json()["name"] == "Opal Ring"
    assert [p["id"] for p in client.get("/api/products/new").json()] == [ring.id]
    missing = client.get("/api/products/9999")
    assert missing.status_code == 404
    assert missing.json() == {"detail": "Product not found"}


def test_profile_update_and_password_change(client, make_user):
    user, token = make_user(email="profile@example.com")

    updated = client.patch("/api/profile", json={"name": "Ioana", "language": "ro"}, headers=bearer(token))
    assert updated.json()["name"] == "Ioana"
    assert updated.json()["language"] == "ro"

    mismatch = client.post(
        "/api/profile/password", json={"password": "newpass1", "confirm_password": "other"}, headers=bearer(token)
    )
    assert mismatch.status_code == 400

    client.post("/api/profile/password", json={"password": "newpass1", "confirm_password": "newpass1"}, headers=bearer(token))
    assert client.post("/api/auth/login", json={"email": user.email, "password": PASSWORD}).status_code == 401
    assert client.post("/api/auth/login", json={"email": user.email, "password": "newpass1"}).status_code == 200


def test_wishlist(client, make_user, make_product):
    _, token = make_user()
    _, other_token = make_user()
    ring = make_product()

    added = client.post("/api/wishlist", json={"product_id": ring.id}, headers=bearer(token))
    assert added.status_code == 201
    assert client.get(f"/api/wishlist/check/{ring.id}", headers=bearer(token)).json() == {"in_wishlist": True}
    assert client.get(f"/api/wishlist/check/{ring.id}", headers=bearer(other_token)).json() == {"in_wishlist": False}
    assert [w["product"]["id"] for w in client.get("/api/wishlist", headers=bearer(token)).json()] == [ring.id]

    item_id = added.json()["id"]
    assert client.delete(f"/api/wishlist/{item_id}", headers=bearer(other_token)).status_code == 404
    assert client.delete(f"/api/wishlist/{item_id}", headers=bearer(token)).status_code == 204
    assert client.get("/api/wishlist", headers=bearer(token)).json() == []

    assert client.post("/api/wishlist", json={"product_id": 9999}, headers=bearer(token)).status_code == 404


def test_newsletter_subscribe(client, make_user):
    _, admin_token = make_user(role=Role.ADMIN)

    assert client.post("/api/newsletter/subscribe", json={"email": "fan@example.com"}).status_code == 201
    duplicate = client.post("/api/newsletter/subscribe", json={"email": "fan@example.com"})
    assert duplicate.status_code == 409
    assert client.post("/api/newsletter/subscribe", json={"email": "nope"}).status_code == 400

    subscribers = client.get("/api/admin/newsletter", headers=bearer(admin_token)).json()
    assert [s["email"] for s in subscribers] == ["fan@example.com"]


def test_drafts_are_visible_to_admins_only(client, make_user):
    admin, admin_token = make_user(role=Role.ADMIN)
    _, user_token = make_user()

    created = client.post(
        "/api/admin/articles",
        json={"title": "Caring for pearls", "slug": "caring-for-pearls", "content": "Keep them away from perfume."},
        headers=bearer(admin_token),
    )
    assert created.status_code == 201
    article = created.json()
    assert article["author_id"] == admin.id
    assert article["published"] is False

    assert client.get("/api/articles").json() == []
    assert client.get("/api/articles", headers=bearer(user_token)).json() == []
    assert len(client.get("/api/articles", headers=bearer(admin_token)).json()) == 1
    assert client.get("/api/articles/caring-for-pearls").status_code == 404
    assert client.get("/api/articles/caring-for-pearls", headers=bearer(admin_token)).status_code == 200

    client.post(f"/api/admin/articles/{article['id']}/publish", headers=bearer(admin_token))
    client.patch(f"/api/admin/articles/{article['id']}", json={"excerpt": "Pearl care basics"}, headers=bearer(admin_token))

    public = client.get("/api/articles/caring-for-pearls").json()
    assert public["published"] is True
    assert public["excerpt"] == "Pearl care basics"


def test_admin_catalog_management(client, storage, make_user):
    _, admin_token = make_user(role=Role.ADMIN)
    category = storage.create_category(CategoryCreate(name="Rings", slug="rings"))

    bad_category = client.post(
        "/api/admin/products", json={"name": "Ring", "price": 50, "category_id": 999}, headers=bearer(admin_token)
    )
    assert bad_category.status_code == 404

    created = client.post(
        "/api/admin/products",
        json={"name": "Signet Ring", "price": 120.5, "category_id": category.id},
        headers=bearer(admin_token),
    )
    assert created.status_code == 201
    product = created.json()
    assert product["stripe_id"].startswith("local_")
    assert product["price"] == 120.5

    flagged = client.patch(
        f"/api/admin/products/{product['id']}", json={"is_best_seller": True}, headers=bearer(admin_token)
    )
    assert flagged.json()["is_best_seller"] is True

    duplicate = client.post("/api/admin/categories", json={"name": "Rings", "slug": "rings"}, headers=bearer(admin_token))
    assert duplicate.status_code == 409


def test_admin_advances_order_status(client, storage, make_user, make_product):
    user, _ = make_user()
    _, admin_token = make_user(role=Role.ADMIN)
    storage.add_to_cart(user.id, make_product("30.00").id, 1)
    order, _ = storage.settle_order(user.id, "pi_admin", 40, {})

    listed = client.get("/api/admin/orders", headers=bearer(admin_token)).json()
    assert [o["id"] for o in listed] == [order.id]

    shipped = client.patch(f"/api/admin/orders/{order.id}", json={"status": "shipped"}, headers=bearer(admin_token))
    assert shipped.json()["status"] == "shipped"

    invalid = client.patch(f"/api/admin/orders/{order.id}", json={"status": "teleported"}, headers=bearer(admin_token))
    assert invalid.status_code == 400


def test_profile_language_cannot_be_nulled(client, storage, make_user):
    user, token = make_user()

    response = client.patch("/api/profile", json={"language": None, "name": "Ioana"}, headers=bearer(token))

    assert response.status_code == 400
    assert [e["field"] for e in response.json()["errors"]] == ["language"]
    assert storage.get_user(user.id).language == "en"

    cleared = client.patch("/api/profile", json={"phone": None}, headers=bearer(token))
    assert cleared.status_code == 200
    assert cleared.json()["language"] == "en"


def test_profile_image(client, storage, make_user):
    user, token = make_user()

    updated = client.post(
        "/api/profile/image", json={"image_url": "https://cdn.example.com/avatars/ioana.jpg"}, headers=bearer(token)
    )
    assert updated.status_code == 200
    assert updated.json()["profile_image"] == "https://cdn.example.com/avatars/ioana.jpg"
    assert storage.get_user(user.id).profile_image == "https://cdn.example.com/avatars/ioana.jpg"

    invalid = client.post("/api/profile/image", json={"image_url": "not a url"}, headers=bearer(token))
    assert invalid.status_code == 400
    assert client.post("/api/profile/image", json={"image_url": "https://cdn.example.com/a.jpg"}).status_code == 401


def test_module_level_app_serves_requests():
    response = TestClient(app).get("/")

    assert response.status_code == 200
    assert response.json() == {"message": "DR Bijuteria backend running"}
