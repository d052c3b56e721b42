"""Pytest fixtures for the store API tests."""

import mongomock
import pytest
from fastapi.testclient import TestClient

from database import create_document, ensure_indexes, get_db
from schemas import Coupon, Generator, Part

USER = {"X-User-Id": "user-1"}
OTHER_USER = {"X-User-Id": "user-2"}
STAFF = {"X-User-Id": "staff-1", "X-User-Role": "STAFF"}
ADMIN = {"X-User-Id": "admin-1", "X-User-Role": "ADMIN"}


@pytest.fixture
def db():
    """A fresh in-memory database with the production indexes."""
    database = mongomock.MongoClient()["pakautose_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def client(db):
    from main import app

    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_generator(db):
    """Insert a generator and return its id."""
    counter = {"n": 0}

    def factory(**overrides):
        counter["n"] += 1
        data = {
            "name": f"Test Generator {counter['n']}",
            "slug": f"test-generator-{counter['n']}",
            "description": "A dependable diesel generator",
            "power_kva": 10,
            "power_kw": 8,
            "fuel_type": "DIESEL",
            "brand": "Perkins",
            "price": 8000,
            "stock": 5,
        }
        data.update(overrides)
        return create_document("generator", Generator(**data), database=db)

    return factory


@pytest.fixture
def make_part(db):
    """Insert a spare part and return its id."""
    counter = {"n": 0}

    def factory(**overrides):
        counter["n"] += 1
        data = {
            "name": f"Test Part {counter['n']}",
            "slug": f"test-part-{counter['n']}",
            "description": "Replacement oil filter",
            "price": 1500,
            "stock": 20,
        }
        data.update(overrides)
        return create_document("part", Part(**data), database=db)

    return factory


@pytest.fixture
def make_coupon(db):
    """Insert a coupon and return its id."""

    def factory(code, type, value, **overrides):
        data = {"code": code, "type": type, "value": value}
        data.update(overrides)
        return create_document("coupon", Coupon(**data), database=db)

    return factory


def checkout_body(items=None, **overrides):
    body = {
        "shipping_name": "Ali Khan",
        "shipping_phone": "03001234567",
        "shipping_email": "ali@example.com",
        "shipping_address_line": "12 Mall Road",
        "shipping_city": "Lahore",
        "shipping_state": "Punjab",
        "shipping_postal_code": "54000",
        "payment_method": "CASH_ON_DELIVERY",
    }
    if items is not None:
        body["items"] = items
    body.update(overrides)
    return body


def line(product_id, quantity=1, item_type="GENERATOR"):
    return {"item_type": item_type, "product_id": product_id, "quantity": quantity}
