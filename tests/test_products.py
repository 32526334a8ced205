from datetime import datetime

import pytest
from bson import ObjectId
from conftest import insert_product, insert_user, product_payload
from pymongo.errors import DuplicateKeyError

MISSING_ID = "65a000000000000000000000"


# --- create ------------------------------------------------------------------
def test_admin_creates_product(client, db, admin_headers) -> None:
    response = client.post("/products", json=product_payload(), headers=admin_headers)
    assert response.status_code == 201
    product = response.get_json()["product"]
    assert product["product_name"] == "Trail Runner"
    assert product["sales"] == {"isSale": False}
    stored = db.products.find_one({"_id": ObjectId(product["id"])})
    assert isinstance(stored["created_at"], datetime)


def test_create_requires_authentication(client, db) -> None:
    assert client.post("/products", json=product_payload()).status_code == 401
    assert db.products.count_documents({}) == 0


def test_create_rejects_invalid_payload(client, db, admin_headers) -> None:
    response = client.post(
        "/products", json=product_payload(price=-5), headers=admin_headers
    )
    assert response.status_code == 400
    assert response.get_json() == {"message": '"price" must be greater than or equal to 0'}
    assert db.products.count_documents({}) == 0


def test_create_rejects_duplicate_name(client, db, admin_headers) -> None:
    assert client.post("/products", json=product_payload(), headers=admin_headers).status_code == 201
    response = client.post("/products", json=product_payload(), headers=admin_headers)
    assert response.status_code == 400
    assert response.get_json() == {"message": "This product already exists."}
    assert db.products.count_documents({}) == 1


def test_product_name_uniqueness_is_enforced_by_index(db, app) -> None:
    insert_product(db, product_name="Trail Runner")
    with pytest.raises(DuplicateKeyError):
        insert_product(db, product_name="Trail Runner")


# --- listing -----------------------------------------------------------------
def test_empty_catalogue_is_not_found(client) -> None:
    response = client.get("/products")
    assert response.status_code == 404
    assert response.get_json() == {"message": "No products have been found."}


def test_list_products_newest_first(client, db) -> None:
    insert_product(db, product_name="Older", age_minutes=5)
    insert_product(db, product_name="Newer", age_minutes=1)
    response = client.get("/products")
    assert response.status_code == 200
    assert [p["product_name"] for p in response.get_json()] == ["Newer", "Older"]


def test_category_match_is_case_insensitive_and_exact(client, db) -> None:
    insert_product(db, product_name="Runner", category="Shoes")
    insert_product(db, product_name="Lace", category="Shoes accessories")
    response = client.get("/products/category/sHOES")
    assert response.status_code == 200
    assert [p["product_name"] for p in response.get_json()] == ["Runner"]


def test_category_pattern_characters_are_literal(client, db) -> None:
    insert_product(db, product_name="Runner", category="Shoes")
    assert client.get("/products/category/.*").status_code == 404


# --- detail ------------------------------------------------------------------
def test_get_product_populates_reviews_with_public_author_fields(client, db) -> None:
    author = insert_user(
        db,
        "reviewer@example.com",
        profile={
            "firstName": "Rae",
            "lastName": "Viewer",
            "phone": "0521234567",
            "avatar": {"url": "https://cdn.example.com/rae.png", "alt": "Rae"},
        },
    )
    review_id = db.reviews.insert_one(
        {"user": author["_id"], "rating": 5, "comment": "Great grip"}
    ).inserted_id
    product = insert_product(db, reviews=[review_id])

    response = client.get(f"/products/{product['_id']}")
    assert response.status_code == 200
    reviews = response.get_json()["reviews"]
    assert len(reviews) == 1
    assert reviews[0]["comment"] == "Great grip"
    assert reviews[0]["user"] == {
        "id": str(author["_id"]),
        "email": "reviewer@example.com",
        "profile": {
            "firstName": "Rae",
            "lastName": "Viewer",
            "avatar": {"url": "https://cdn.example.com/rae.png", "alt": "Rae"},
        },
    }


def test_get_missing_product_is_not_found(client) -> None:
    assert client.get(f"/products/{MISSING_ID}").status_code == 404
    assert client.get("/products/not-an-id").status_code == 404


# --- update ------------------------------------------------------------------
def test_put_updates_fields(client, db, admin_headers) -> None:
    product = insert_product(db, price=10.0)
    response = client.put(
        f"/products/{product['_id']}",
        json={"price": 12.5, "discount": 20},
        headers=admin_headers,
    )
    assert response.status_code == 200
    body = response.get_json()
    assert (body["price"], body["discount"]) == (12.5, 20)
    assert db.products.find_one({"_id": product["_id"]})["price"] == 12.5


def test_put_missing_product_is_not_found(client, admin_headers) -> None:
    response = client.put(f"/products/{MISSING_ID}", json={"price": 1}, headers=admin_headers)
    assert response.status_code == 404


def test_put_to_existing_name_is_duplicate(client, db, admin_headers) -> None:
    insert_product(db, product_name="Taken")
    product = insert_product(db, product_name="Free")
    response = client.put(
        f"/products/{product['_id']}", json={"product_name": "Taken"}, headers=admin_headers
    )
    assert response.status_code == 400


def test_patch_renames_the_addressed_product(client, db, admin_headers) -> None:
    first = insert_product(db, product_name="First")
    second = insert_product(db, product_name="Second")
    response = client.patch(
        f"/products/{second['_id']}", json={"product_name": "Renamed"}, headers=admin_headers
    )
    assert response.status_code == 200
    assert response.get_json()["product_name"] == "Renamed"
    assert db.products.find_one({"_id": first["_id"]})["product_name"] == "First"


def test_patch_requires_product_name(client, db, admin_headers) -> None:
    product = insert_product(db)
    response = client.patch(f"/products/{product['_id']}", json={}, headers=admin_headers)
    assert response.status_code == 400


def test_customer_cannot_update(client, db, customer_headers) -> None:
    product = insert_product(db)
    response = client.put(
        f"/products/{product['_id']}", json={"price": 1}, headers=customer_headers
    )
    assert response.status_code == 403


# --- delete ------------------------------------------------------------------
def test_delete_then_fetch_is_not_found(client, db, admin_headers) -> None:
    product = insert_product(db)
    response = client.delete(f"/products/{product['_id']}", headers=admin_headers)
    assert response.status_code == 200
    assert client.get(f"/products/{product['_id']}").status_code == 404


def test_delete_missing_product_is_not_found(client, admin_headers) -> None:
    assert client.delete(f"/products/{MISSING_ID}", headers=admin_headers).status_code == 404


def test_customer_cannot_delete(client, db, customer_headers) -> None:
    product = insert_product(db)
    response = client.delete(f"/products/{product['_id']}", headers=customer_headers)
    assert response.status_code == 403
    assert db.products.count_documents({}) == 1


def test_create_ignores_explicit_nulls(client, db, admin_headers) -> None:
    response = client.post(
        "/products",
        json=product_payload(description=None, sales=None, discount=None),
        headers=admin_headers,
    )
    assert response.status_code == 201
    stored = db.products.find_one({"product_name": "Trail Runner"})
    assert stored["description"] == ""
    assert stored["discount"] == 0
    assert stored["sales"] == {"isSale": False}
