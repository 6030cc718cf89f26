"""Pytest fixtures for the marketplace tests."""

from datetime import datetime, timezone

import mongomock
import pytest
from fastapi.testclient import TestClient

from auth import token_for_user
from database import ensure_indexes
from hubs import FirstHubPicker


@pytest.fixture
def db():
    """A fresh in-memory MongoDB database with the production indexes."""
    database = mongomock.MongoClient()["marketplace_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def client(db, monkeypatch):
    import billing
    from database import get_db
    from main import app

    monkeypatch.setattr(billing, "default_picker", FirstHubPicker)

    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    """Insert a user directly, skipping password hashing."""

    def _make(role, username, **profile):
        doc = {
            "username": username,
            "email": f"{username}@example.com",
            "password_hash": "not-a-real-hash",
            "role": role,
            "created_at": datetime.now(timezone.utc),
            **profile,
        }
        doc["_id"] = db["user"].insert_one(doc).inserted_id
        return doc

    return _make


@pytest.fixture
def hub(db):
    hub_id = db["distributionhub"].insert_one({"hub_name": "Hanoi", "hub_location": "Cau Giay"}).inserted_id
    return str(hub_id)


@pytest.fixture
def other_hub(db):
    hub_id = db["distributionhub"].insert_one({"hub_name": "Da Nang", "hub_location": "Hai Chau"}).inserted_id
    return str(hub_id)


@pytest.fixture
def customer(make_user):
    return make_user("CUSTOMER", "alice", name="Alice Nguyen", address="12 Hang Bai, Hanoi")


@pytest.fixture
def other_customer(make_user):
    return make_user("CUSTOMER", "bob", name="Bob Tran", address="5 Le Loi, Hue")


@pytest.fixture
def vendor(make_user):
    return make_user("VENDOR", "gadgets", business_name="Gadget House", business_address="1 Tech St")


@pytest.fixture
def other_vendor(make_user):
    return make_user("VENDOR", "books", business_name="Book Nook", business_address="2 Paper Rd")


@pytest.fixture
def shipper(make_user, hub):
    return make_user("SHIPPER", "carrier", hub_id=hub)


@pytest.fixture
def far_shipper(make_user, other_hub):
    return make_user("SHIPPER", "faraway", hub_id=other_hub)


@pytest.fixture
def make_product(db):
    def _make(vendor, price, stock, sale=0, name="Sample product"):
        doc = {
            "name": name,
            "price": price,
            "available_stock": stock,
            "sale_percentage": sale,
            "vendor_id": str(vendor["_id"]),
            "image_url": "https://img.example.com/p.png",
            "category": "OTHERS",
        }
        return str(db["product"].insert_one(doc).inserted_id)

    return _make


@pytest.fixture
def picker():
    return FirstHubPicker()


def auth_headers(user):
    return {"Authorization": f"Bearer {token_for_user(user)}"}


def stock_of(db, product_id):
    from bson import ObjectId

    return db["product"].find_one({"_id": ObjectId(product_id)})["available_stock"]


class CollectionProxy:
    """A collection with some methods replaced, to stage concurrent writers."""

    def __init__(self, collection, **overrides):
        self._collection = collection
        self.__dict__.update(overrides)

    def __getattr__(self, name):
        return getattr(self._collection, name)


class DatabaseProxy:
    """A database handing out CollectionProxy objects for some collections."""

    def __init__(self, database, **collections):
        self._database = database
        self._collections = collections

    def __getitem__(self, name):
        if name in self._collections:
            return self._collections[name]
        return self._database[name]

    def __getattr__(self, name):
        return getattr(self._database, name)
