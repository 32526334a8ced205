from datetime import datetime, timedelta
from typing import Dict, Optional

import jwt
import mongomock
import pytest

from backend import create_app
from backend.credentials import hash_password

TEST_SECRET = "test-signing-secret"
DEFAULT_PASSWORD = "correct-horse-9"


def registration_payload(**overrides) -> Dict:
    payload = {
        "email": "dana@example.com",
        "password": DEFAULT_PASSWORD,
        "profile": {
            "firstName": "Dana",
            "lastName": "Levi",
            "phone": "0521234567",
            "address": {"city": "Haifa", "street": "Herzl", "houseNo": "12"},
        },
        "role": "customer",
    }
    payload.update(overrides)
    return payload


def product_payload(**overrides) -> Dict:
    payload = {
        "product_name": "Trail Runner",
        "category": "Shoes",
        "manufacturer": "Stride",
        "price": 89.9,
        "quantity_in_stock": 12,
    }
    payload.update(overrides)
    return payload


def insert_user(
    db,
    email: str,
    role: str = "customer",
    password: str = DEFAULT_PASSWORD,
    created_at: Optional[datetime] = None,
    **extra,
):
    document = {
        "email": email,
        "password": hash_password(password),
        "profile": {"firstName": email.split("@")[0], "lastName": "Tester", "phone": "0501234567"},
        "role": role,
        "isActive": True,
        "lastLogin": None,
        "created_at": created_at or datetime.utcnow(),
    }
    document.update(extra)
    db.users.insert_one(document)
    return document


def insert_product(db, age_minutes: int = 0, **fields):
    document = {
        "product_name": f"Product {db.products.count_documents({}) + 1}",
        "category": "Shoes",
        "manufacturer": "Stride",
        "price": 50.0,
        "discount": 0,
        "quantity_in_stock": 5,
        "sales": {"isSale": False},
        "reviews": [],
        "created_at": datetime.utcnow() - timedelta(minutes=age_minutes),
    }
    document.update(fields)
    db.products.insert_one(document)
    return document


def bearer(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def expired_token(user_id, secret: str = TEST_SECRET, **claims) -> str:
    issued_at = datetime.utcnow() - timedelta(hours=2)
    payload = {
        "sub": str(user_id),
        "type": "access",
        "fresh": False,
        "iat": issued_at,
        "nbf": issued_at,
        "exp": issued_at + timedelta(hours=1),
    }
    payload.update(claims)
    return jwt.encode(payload, secret, algorithm="HS256")


def login(client, email: str, password: str = DEFAULT_PASSWORD) -> str:
    response = client.post("/users/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.get_json()
    return response.get_json()["token"]


@pytest.fixture
def db():
    return mongomock.MongoClient().storefront


@pytest.fixture
def app(db):
    return create_app({"TESTING": True, "JWT_SECRET_KEY": TEST_SECRET}, database=db)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin_headers(client, db):
    insert_user(db, "admin@example.com", role="admin")
    return bearer(login(client, "admin@example.com"))


@pytest.fixture
def customer_headers(client, db):
    insert_user(db, "customer@example.com", role="customer")
    return bearer(login(client, "customer@example.com"))
