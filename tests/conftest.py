from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from app.db import Database, set_database
from app.services import catalog
from app.services.cart import CartService


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kw) -> datetime:
        self.now = self.now + timedelta(**kw)
        return self.now


PRODUCTS = [
    {
        "id": "croissant",
        "name": "Croissant",
        "image": "croissant.jpg",
        "category": "viennoiserie",
        "is_active": True,
        "has_egg": True,
        "price": 3.5,
        "variants": [],
    },
    {
        "id": "cake",
        "name": "Chocolate Cake",
        "image": "cake.jpg",
        "category": "cakes",
        "is_active": True,
        "has_egg": False,
        "price": 20.0,
        "variants": [
            {"quantity": 500, "measuringUnit": "g", "price": 20.0, "stock": 3, "isStockActive": True},
            {"quantity": 1, "measuringUnit": "kg", "price": 38.0, "stock": 0, "isStockActive": False},
        ],
    },
    {
        "id": "retired",
        "name": "Old Tart",
        "is_active": False,
        "price": 5.0,
        "variants": [],
    },
]


@pytest.fixture
def db(tmp_path):
    database = Database(f"sqlite+pysqlite:///{tmp_path / 'test.sqlite3'}")
    database.create_all()
    set_database(database)
    yield database
    set_database(None)
    database.dispose()


@pytest.fixture
def products(db):
    return {p["id"]: catalog.upsert_product(db, p) for p in PRODUCTS}


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 6, 12, 6, 0, tzinfo=timezone.utc))


@pytest.fixture
def service(db, products, clock):
    return CartService(db, expiry_seconds=3600, backoff=lambda attempt: 0, clock=clock)


@pytest.fixture
def client(db, products):
    from app.main import app

    yield TestClient(app)
    app.dependency_overrides.clear()
