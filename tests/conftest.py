import os

# Keep tests off any real database configured in the environment or a .env file.
os.environ["DATABASE_URL"] = ""
os.environ["DATABASE_NAME"] = ""
os.environ["ENVIRONMENT"] = "test"

import mongomock  # noqa: E402
import pytest  # noqa: E402
from bson import ObjectId  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

import database  # noqa: E402
from auth import RequestContext, create_token  # noqa: E402
from database import create_document  # noqa: E402
from schemas import Product, User  # noqa: E402


@pytest.fixture(autouse=True)
def mongo_db(monkeypatch):
    """Fresh in-memory database per test."""
    mock_db = mongomock.MongoClient()["storefront_test"]
    monkeypatch.setattr(database, "db", mock_db)
    database.ensure_indexes()
    yield mock_db


@pytest.fixture()
def client():
    from main import app

    return TestClient(app)


def _make_user(name, email, role="user", password_hash="not-a-real-hash", addresses=None):
    user_id = create_document(
        "user",
        User(name=name, email=email, password_hash=password_hash, role=role, addresses=addresses or []),
    )
    return RequestContext(id=user_id, email=email, name=name, role=role)


@pytest.fixture()
def make_user():
    return _make_user


@pytest.fixture()
def user():
    return _make_user("Alice Buyer", "alice@example.com")


@pytest.fixture()
def other_user():
    return _make_user("Bob Buyer", "bob@example.com")


@pytest.fixture()
def admin():
    return _make_user("Ada Admin", "admin@example.com", role="admin")


@pytest.fixture()
def make_product():
    def _make_product(**overrides):
        data = {
            "name": "Wireless Headphones",
            "price": 50.0,
            "category": "Electronics",
            "brand": "Acme",
            "images": ["/images/headphones.jpg"],
            "stock": 10,
        }
        data.update(overrides)
        return create_document("product", Product(**data))

    return _make_product


@pytest.fixture()
def product_stock(mongo_db):
    def _stock(product_id):
        return mongo_db["product"].find_one({"_id": ObjectId(product_id)})["stock"]

    return _stock


def auth_headers(ctx: RequestContext) -> dict:
    return {"Authorization": f"Bearer {create_token(ctx.model_dump())}"}


@pytest.fixture()
def headers_for():
    return auth_headers
