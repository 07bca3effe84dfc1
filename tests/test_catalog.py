import json

import pytest
from bson import ObjectId

import catalog
from catalog import derive_status, ensure_primary_image, make_slug, rating_summary
from database import db
from errors import NotFound


# ----------------------- Derivations -----------------------
def test_make_slug():
    assert make_slug("Margherita Pizza!", "abc123") == "margherita-pizza-abc123"
    assert make_slug("  Raw -- Honey  ", "1") == "raw-honey-1"


def test_rating_summary():
    assert rating_summary({}) == (0, 0)
    assert rating_summary({"a": {"rating": 4}, "b": {"rating": 5}}) == (4.5, 2)


@pytest.mark.parametrize("status,quantity,expected", [
    ("active", 0, "out_of_stock"),
    ("out_of_stock", 5, "active"),
    ("active", 5, "active"),
    ("inactive", 0, "inactive"),
    ("discontinued", 10, "discontinued"),
])
def test_derive_status(status, quantity, expected):
    assert derive_status(status, quantity) == expected


def test_ensure_primary_image():
    images = [{"public_id": "a", "is_primary": False}, {"public_id": "b", "is_primary": False}]
    assert ensure_primary_image(images)[0]["is_primary"] is True
    images = [{"public_id": "a", "is_primary": False}, {"public_id": "b", "is_primary": True}]
    assert ensure_primary_image(images)[0]["is_primary"] is False
    assert ensure_primary_image([]) == []


# ----------------------- Listings -----------------------
def test_create_listing(make_user, make_product):
    seller = make_user("seller")
    product = make_product(seller)
    assert product["slug"] == f"margherita-pizza-{product['id']}"
    assert product["status"] == "active"
    assert product["stock"] == {"quantity": 50, "unit": "pieces"}
    assert product["primary_image"]["is_primary"] is True
    assert product["seller"]["business_name"] == "Pizza Roma"
    assert product["average_rating"] == 0
    assert product["reviews"] == []


def test_create_listing_requires_image(client, make_user):
    seller = make_user("seller")
    form = {
        "name": "No Photo",
        "description": "A listing without any photos at all.",
        "category": "bakery",
        "price": "3",
        "unit": "per_piece",
        "stock.quantity": "5",
        "stock.unit": "pieces",
    }
    res = client.post("/api/products", data=form, headers=seller["headers"])
    assert res.status_code == 400
    assert res.json()["message"] == "At least one product image is required"


def test_create_listing_rejects_bad_fields_before_upload(client, make_user, media):
    seller = make_user("seller")
    form = {
        "name": "Bad Category",
        "description": "This category does not exist in the catalog.",
        "category": "electronics",
        "price": "3",
        "unit": "per_piece",
        "stock.quantity": "5",
        "stock.unit": "pieces",
    }
    files = [("images", ("photo.jpg", b"fake", "image/jpeg"))]
    res = client.post("/api/products", data=form, files=files, headers=seller["headers"])
    assert res.status_code == 400
    assert media.uploaded == []


def test_buyer_cannot_create_listing(client, make_user):
    buyer = make_user("buyer")
    files = [("images", ("photo.jpg", b"fake", "image/jpeg"))]
    res = client.post("/api/products", data={"name": "x"}, files=files, headers=buyer["headers"])
    assert res.status_code == 403


def test_tags_are_normalized(make_user, make_product):
    seller = make_user("seller")
    product = make_product(seller, tags=json.dumps([" Pizza ", "VEGGIE", ""]))
    assert product["tags"] == ["pizza", "veggie"]


def test_get_product_counts_views(client, make_user, make_product):
    seller = make_user("seller")
    product = make_product(seller)
    first = client.get(f"/api/products/{product['id']}")
    second = client.get(f"/api/products/{product['id']}")
    assert first.json()["data"]["product"]["views"] == 1
    assert second.json()["data"]["product"]["views"] == 2


def test_get_missing_product(client):
    res = client.get(f"/api/products/{ObjectId()}")
    assert res.status_code == 404
    assert res.json()["message"] == "Product not found"
    assert client.get("/api/products/not-an-id").status_code == 404


def test_update_listing_renames_and_reslugs(client, make_user, make_product):
    seller = make_user("seller")
    product = make_product(seller)
    res = client.put(
        f"/api/products/{product['id']}",
        data={"name": "Quattro Formaggi", "price": "21.5", "details": json.dumps({"organic": True})},
        headers=seller["headers"],
    )
    assert res.status_code == 200
    updated = res.json()["data"]["product"]
    assert updated["slug"] == f"quattro-formaggi-{product['id']}"
    assert updated["price"] == 21.5
    assert updated["details"]["organic"] is True
    assert updated["details"]["locally_grown"] is True


def test_update_listing_by_other_seller(client, make_user, make_product):
    owner = make_user("seller")
    other = make_user("seller", business_name="Other Shop")
    product = make_product(owner)
    res = client.put(f"/api/products/{product['id']}", data={"price": "1"}, headers=other["headers"])
    assert res.status_code == 403


def test_delete_listing_by_other_seller(client, make_user, make_product, media):
    owner = make_user("seller")
    other = make_user("seller", business_name="Other Shop")
    product = make_product(owner)
    res = client.delete(f"/api/products/{product['id']}", headers=other["headers"])
    assert res.status_code == 403
    assert media.deleted == []
    stored = db["product"].find_one({"_id": ObjectId(product["id"])})
    assert stored["images"] == product["images"]


def test_update_listing_cannot_remove_last_image(client, make_user, make_product, media):
    seller = make_user("seller")
    product = make_product(seller)
    public_id = product["images"][0]["public_id"]
    res = client.put(
        f"/api/products/{product['id']}",
        data={"remove_images": json.dumps([public_id])},
        headers=seller["headers"],
    )
    assert res.status_code == 400
    assert media.deleted == []


def test_update_listing_swaps_images(client, make_user, make_product, media):
    seller = make_user("seller")
    product = make_product(seller)
    old_id = product["images"][0]["public_id"]
    res = client.put(
        f"/api/products/{product['id']}",
        data={"remove_images": json.dumps([old_id])},
        files=[("new_images", ("new.jpg", b"fake", "image/jpeg"))],
        headers=seller["headers"],
    )
    assert res.status_code == 200
    images = res.json()["data"]["product"]["images"]
    assert [img["public_id"] for img in images] != [old_id]
    assert len(images) == 1
    assert images[0]["is_primary"] is True
    assert media.deleted == [old_id]


def test_update_listing_keeps_image_the_host_failed_to_release(client, make_user, make_product, media):
    seller = make_user("seller")
    product = make_product(seller)
    old_id = product["images"][0]["public_id"]
    media.fail_on.add(old_id)
    res = client.put(
        f"/api/products/{product['id']}",
        data={"remove_images": json.dumps([old_id])},
        files=[("new_images", ("new.jpg", b"fake", "image/jpeg"))],
        headers=seller["headers"],
    )
    assert res.status_code == 200
    data = res.json()["data"]
    assert data["unreleased_images"] == [old_id]
    assert old_id in [img["public_id"] for img in data["product"]["images"]]


def test_rejected_update_leaves_no_upload_behind(client, make_user, make_product, media):
    seller = make_user("seller")
    product = make_product(seller)
    res = client.put(
        f"/api/products/{product['id']}",
        data={"category": "electronics"},
        files=[("new_images", ("new.jpg", b"fake", "image/jpeg"))],
        headers=seller["headers"],
    )
    assert res.status_code == 400
    assert media.uploaded == [product["images"][0]["public_id"]]
    stored = db["product"].find_one({"_id": ObjectId(product["id"])})
    assert stored["category"] == "bakery"
    assert len(stored["images"]) == 1


def test_update_listing_releases_uploads_when_listing_vanishes(client, make_user, make_product, media, monkeypatch):
    seller = make_user("seller")
    product = make_product(seller)

    def vanish(host, product, staged, new_images):
        raise NotFound("Product not found")

    monkeypatch.setattr(catalog, "update_listing", vanish)
    res = client.put(
        f"/api/products/{product['id']}",
        data={"price": "20"},
        files=[("new_images", ("new.jpg", b"fake", "image/jpeg"))],
        headers=seller["headers"],
    )
    assert res.status_code == 404
    assert media.deleted == [media.uploaded[-1]]


def test_delete_listing(client, make_user, make_product, media):
    seller = make_user("seller")
    product = make_product(seller)
    res = client.delete(f"/api/products/{product['id']}", headers=seller["headers"])
    assert res.status_code == 200
    assert res.json()["message"] == "Product deleted successfully"
    assert media.deleted == [product["images"][0]["public_id"]]
    assert client.get(f"/api/products/{product['id']}").status_code == 404


def test_delete_listing_reports_unreleased_images(client, make_user, make_product, media):
    seller = make_user("seller")
    product = make_product(seller)
    public_id = product["images"][0]["public_id"]
    media.fail_on.add(public_id)
    res = client.delete(f"/api/products/{product['id']}", headers=seller["headers"])
    assert res.status_code == 200
    assert res.json()["data"]["unreleased_images"] == [public_id]
    assert db["product"].count_documents({}) == 0


# ----------------------- Reviews & stock -----------------------
def test_review_replaces_previous_review(client, make_user, make_product):
    seller = make_user("seller")
    buyer = make_user("buyer")
    other = make_user("buyer")
    product = make_product(seller)
    url = f"/api/products/{product['id']}/reviews"

    assert client.post(url, json={"rating": 4, "comment": "Tasty"}, headers=buyer["headers"]).status_code == 201
    res = client.post(url, json={"rating": 2}, headers=buyer["headers"])
    reviewed = res.json()["data"]["product"]
    assert reviewed["total_reviews"] == 1
    assert reviewed["average_rating"] == 2

    res = client.post(url, json={"rating": 4}, headers=other["headers"])
    reviewed = res.json()["data"]["product"]
    assert reviewed["total_reviews"] == 2
    assert reviewed["average_rating"] == 3
    assert reviewed["reviews"][0]["user"]["id"] == other["user"]["id"]


def test_owner_cannot_review(client, make_user, make_product):
    seller = make_user("seller")
    product = make_product(seller)
    res = client.post(f"/api/products/{product['id']}/reviews", json={"rating": 5}, headers=seller["headers"])
    assert res.status_code == 400
    assert res.json()["message"] == "You cannot review your own product"


def test_review_rating_out_of_range(client, make_user, make_product):
    seller = make_user("seller")
    buyer = make_user("buyer")
    product = make_product(seller)
    res = client.post(f"/api/products/{product['id']}/reviews", json={"rating": 6}, headers=buyer["headers"])
    assert res.status_code == 400


def test_stock_updates_drive_status(client, make_user, make_product):
    seller = make_user("seller")
    product = make_product(seller, quantity=5)
    url = f"/api/products/{product['id']}/stock"

    res = client.put(url, json={"quantity": 10, "operation": "subtract"}, headers=seller["headers"])
    assert res.json()["data"]["product"]["stock"]["quantity"] == 0
    assert res.json()["data"]["product"]["status"] == "out_of_stock"

    res = client.put(url, json={"quantity": 3, "operation": "add"}, headers=seller["headers"])
    assert res.json()["data"]["product"]["stock"]["quantity"] == 3
    assert res.json()["data"]["product"]["status"] == "active"

    res = client.put(url, json={"quantity": 7}, headers=seller["headers"])
    assert res.json()["data"]["product"]["stock"]["quantity"] == 7


def test_stock_update_rejects_unknown_operation(client, make_user, make_product):
    seller = make_user("seller")
    product = make_product(seller)
    res = client.put(f"/api/products/{product['id']}/stock", json={"quantity": 1, "operation": "double"}, headers=seller["headers"])
    assert res.status_code == 400


def test_stale_listing_copy_keeps_reviews_and_views(client, make_user, make_product):
    seller = make_user("seller")
    buyer = make_user("buyer")
    product = make_product(seller, quantity=5)
    stale = catalog.load_product(product["id"])

    client.post(f"/api/products/{product['id']}/reviews", json={"rating": 5}, headers=buyer["headers"])
    client.get(f"/api/products/{product['id']}")
    catalog.adjust_stock(stale, 10, "set")
    catalog.add_review(stale, buyer["user"]["id"], 3)

    stored = db["product"].find_one({"_id": ObjectId(product["id"])})
    assert stored["stock"]["quantity"] == 10
    assert stored["views"] == 1
    assert stored["total_reviews"] == 1
    assert stored["average_rating"] == 3


def test_stale_listing_copy_keeps_concurrent_edit(client, make_user, make_product):
    seller = make_user("seller")
    product = make_product(seller, quantity=5)
    stale = catalog.load_product(product["id"])
    client.put(f"/api/products/{product['id']}", data={"price": "25"}, headers=seller["headers"])

    staged = catalog.stage_listing_update(stale, {"description": "Now with extra basil."}, [])
    doc, failed = catalog.update_listing(None, stale, staged, [])
    assert failed == []
    assert doc["price"] == 25
    assert doc["description"] == "Now with extra basil."


def test_subtract_floors_at_zero_in_storage(client, make_user, make_product):
    seller = make_user("seller")
    product = make_product(seller, quantity=2)
    doc = catalog.decrement_stock(ObjectId(product["id"]), 5)
    assert doc["stock"]["quantity"] == 0
    stored = db["product"].find_one({"_id": ObjectId(product["id"])})
    assert stored["stock"]["quantity"] == 0
    assert stored["status"] == "out_of_stock"
    assert catalog.decrement_stock(ObjectId(), 1) is None


# ----------------------- Search -----------------------
def test_search_filters_and_sorts(client, make_user, make_product):
    seller = make_user("seller")
    make_product(seller, name="Margherita Pizza", price=18.99)
    make_product(seller, name="Garlic Bread", price=5)
    make_product(seller, name="Heirloom Tomatoes", price=4.25, category="vegetables", details=json.dumps({"organic": True}))

    res = client.get("/api/products", params={"sort": "price_asc"})
    names = [p["name"] for p in res.json()["data"]["products"]]
    assert names == ["Heirloom Tomatoes", "Garlic Bread", "Margherita Pizza"]

    res = client.get("/api/products", params={"search": "PIZZA"})
    assert [p["name"] for p in res.json()["data"]["products"]] == ["Margherita Pizza"]

    res = client.get("/api/products", params={"category": "bakery", "max_price": 10})
    assert [p["name"] for p in res.json()["data"]["products"]] == ["Garlic Bread"]

    res = client.get("/api/products", params={"organic": "true"})
    assert [p["name"] for p in res.json()["data"]["products"]] == ["Heirloom Tomatoes"]


def test_search_escapes_regex(client, make_user, make_product):
    seller = make_user("seller")
    make_product(seller, name="Margherita Pizza")
    res = client.get("/api/products", params={"search": ".*"})
    assert res.json()["data"]["products"] == []


def test_search_pagination(client, make_user, make_product):
    seller = make_user("seller")
    for i in range(3):
        make_product(seller, name=f"Loaf {i}")
    res = client.get("/api/products", params={"limit": 2, "page": 2})
    data = res.json()["data"]
    assert len(data["products"]) == 1
    assert data["pagination"] == {
        "current_page": 2,
        "total_pages": 2,
        "total_products": 3,
        "has_next_page": False,
        "has_prev_page": True,
    }


def test_search_hides_inactive_listings(client, make_user, make_product):
    seller = make_user("seller")
    product = make_product(seller, quantity=1)
    client.put(f"/api/products/{product['id']}/stock", json={"quantity": 0}, headers=seller["headers"])
    assert client.get("/api/products").json()["data"]["products"] == []


def test_search_limit_is_capped(client):
    assert client.get("/api/products", params={"limit": 51}).status_code == 400
    assert client.get("/api/products", params={"sort": "random"}).status_code == 400


def test_categories_and_seller_listings(client, make_user, make_product):
    seller = make_user("seller")
    make_product(seller, name="Sourdough", category="bakery")
    make_product(seller, name="Carrots", category="vegetables")
    res = client.get("/api/products/categories")
    assert res.json()["data"]["categories"] == ["bakery", "vegetables"]
    res = client.get(f"/api/products/seller/{seller['user']['id']}")
    assert {p["name"] for p in res.json()["data"]["products"]} == {"Sourdough", "Carrots"}
