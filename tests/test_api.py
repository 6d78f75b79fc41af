import base64
import json
from datetime import datetime, timezone
from typing import Optional, get_type_hints

import pytest

from app.core.config import settings
from app.core.errors import VersionConflict
from app.db import Database, init_database, set_database
from app.deps.services import get_cart_service

ALICE = {"X-User-Id": "uid-alice"}


def bearer(claims):
    payload = base64.urlsafe_b64encode(json.dumps(claims).encode()).decode().rstrip("=")
    return {"Authorization": f"Bearer header.{payload}.signature"}


# -------------------- cart --------------------

def test_cart_requires_identity(client):
    r = client.get("/cart")
    assert r.status_code == 401


def test_empty_cart(client):
    r = client.get("/cart", headers=ALICE)
    assert r.status_code == 200
    assert r.headers["cache-control"] == "no-store"
    body = r.json()
    assert body["_id"] is None
    assert body["userId"] == "uid-alice"
    assert body["items"] == []
    assert body["cartExpirySeconds"] == settings.cart_expiry_seconds


def test_add_update_remove_flow(client):
    r = client.post("/cart", json={"productId": "croissant", "quantity": 2}, headers=ALICE)
    assert r.status_code == 200
    assert r.json()["cartCount"] == 2
    assert isinstance(r.json()["_id"], int)

    assert client.get("/cart/count", headers=ALICE).json() == {"count": 2}

    r = client.put("/cart/croissant", json={"quantity": 5}, headers=ALICE)
    assert r.json()["items"][0]["quantity"] == 5
    assert r.json()["cartTotal"] == 17.5

    r = client.put("/cart/croissant", json={"quantity": 0}, headers=ALICE)
    assert r.json()["items"] == []

    assert client.delete("/cart/croissant", headers=ALICE).status_code == 404


def test_add_errors(client):
    r = client.post("/cart", json={"productId": "nope"}, headers=ALICE)
    assert r.status_code == 404
    assert r.json()["detail"] == "Product not found"

    r = client.post("/cart", json={"productId": "croissant", "quantity": 0}, headers=ALICE)
    assert r.status_code == 400

    r = client.post("/cart", json={"productId": "cake", "quantity": 4}, headers=ALICE)
    assert r.status_code == 400
    assert r.json()["detail"].startswith("Insufficient stock available")


def test_clear_cart(client):
    client.post("/cart", json={"productId": "croissant"}, headers=ALICE)
    r = client.delete("/cart", headers=ALICE)
    assert r.status_code == 200
    assert r.json()["items"] == []
    assert client.get("/cart/count", headers=ALICE).json() == {"count": 0}


def test_bearer_token_identity(client):
    headers = bearer({"sub": "jwt-user", "email": "jwt@example.com"})
    r = client.post("/cart", json={"productId": "croissant"}, headers=headers)
    assert r.json()["userId"] == "jwt-user"


def test_expiry_override_outside_production(client, monkeypatch):
    monkeypatch.setattr(settings, "APP_ENV", "development")
    r = client.get("/cart", params={"expiryTestMinutes": 1}, headers=ALICE)
    assert r.json()["cartExpirySeconds"] == 60


def test_expiry_override_ignored_in_production(client, monkeypatch):
    monkeypatch.setattr(settings, "APP_ENV", "production")
    r = client.get("/cart", params={"expiryTestMinutes": 1}, headers=ALICE)
    assert r.json()["cartExpirySeconds"] == settings.cart_expiry_seconds


def test_retry_exhaustion_is_500(client):
    from app.main import app

    class Conflicted:
        def add_item(self, *args, **kwargs):
            raise VersionConflict("uid-alice")

    app.dependency_overrides[get_cart_service] = lambda: Conflicted()
    r = client.post("/cart", json={"productId": "croissant"}, headers=ALICE)
    assert r.status_code == 500
    assert r.json()["detail"] == "Failed to add item to cart"


# -------------------- products --------------------

def test_products_list_carries_shop_status(client):
    body = client.get("/products").json()
    assert body["count"] == 2
    assert {p["id"] for p in body["items"]} == {"croissant", "cake"}
    assert set(body["shopStatus"]) >= {"isOpen", "nextOpenTime", "closingTime", "timezone", "message"}
    assert "warning" not in body


def test_product_detail_and_upsert(client):
    assert client.get("/products/nope").status_code == 404
    r = client.post("/products", json={
        "id": "eclair", "name": "Eclair", "price": 4.25,
        "variants": [{"quantity": 1, "measuringUnit": "pc", "stock": 10, "isStockActive": True}],
    })
    assert r.status_code == 200
    got = client.get("/products/eclair").json()
    assert got["price"] == 4.25
    assert got["variants"][0]["stock"] == 10


# -------------------- time settings / shop status --------------------

def test_shop_status_endpoints(client):
    r = client.get("/shop-status")
    assert r.status_code == 200
    body = r.json()
    assert body["timezone"] == settings.DEFAULT_TZ
    assert "warning" not in body
    assert client.get("/time-settings/status").json()["timezone"] == body["timezone"]


def test_shop_status_fallback_warning(client, tmp_path):
    broken = Database(f"sqlite+pysqlite:///{tmp_path / 'no-tables.sqlite3'}")
    set_database(broken)
    try:
        body = client.get("/shop-status").json()
    finally:
        broken.dispose()
    assert body["isOpen"] is True
    assert body["warning"]


def test_admin_key_required_when_configured(client, monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_API_KEY", "s3cret")
    assert client.get("/time-settings").status_code == 401
    assert client.get("/time-settings", headers={"X-API-Key": "wrong"}).status_code == 401
    r = client.get("/time-settings", headers={"X-API-Key": "s3cret"})
    assert r.status_code == 200
    assert r.json()["success"] is True
    assert "nextOpeningLabel" in r.json()["shopStatus"]


def test_update_time_settings_merges_patch(client):
    r = client.put("/time-settings", json={"weekday": {"startTime": "8:30"}, "dailyPauseWindows": [
        {"startTime": "13:00", "endTime": "14:00"},
    ]})
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["weekday"] == {"startTime": "08:30", "endTime": "21:00", "isActive": True}
    assert data["dailyPauseWindows"][0]["startTime"] == "13:00"
    assert r.json()["message"] == "Time settings updated successfully"


@pytest.mark.parametrize("patch", [
    {"timezone": "Mars/Olympus"},
    {"weekend": {"endTime": "25:00"}},
])
def test_update_time_settings_rejects_invalid(client, patch):
    assert client.put("/time-settings", json=patch).status_code == 422


def test_special_day_add_replace_remove(client):
    r = client.post("/time-settings/special-day", json={
        "date": "2024-12-25", "isClosed": True, "description": "Christmas",
    })
    assert r.status_code == 200
    assert r.json()["data"]["specialDays"][0]["date"] == "2024-12-25"

    r = client.post("/time-settings/special-day", json={
        "date": "2024-12-25T00:00:00.000Z", "isClosed": False, "startTime": "10:00", "endTime": "14:00",
    })
    days = r.json()["data"]["specialDays"]
    assert len(days) == 1
    assert days[0]["isClosed"] is False

    assert client.delete("/time-settings/special-day/2024-12-25").status_code == 200
    assert client.delete("/time-settings/special-day/2024-12-25").status_code == 404


# -------------------- websocket --------------------

def test_websocket_authenticate(client):
    with client.websocket_connect("/ws") as ws:
        ws.send_text(json.dumps({"type": "authenticate", "userId": "uid-alice"}))
        assert ws.receive_json() == {"event": "authenticated", "data": {"userId": "uid-alice"}}
        ws.send_text(json.dumps({"type": "ping"}))
        assert ws.receive_json()["event"] == "pong"


def test_health(client):
    assert client.get("/health").json()["ok"] is True


# -------------------- unreachable database --------------------

def test_shop_status_served_when_database_unreachable(client, monkeypatch):
    monkeypatch.setattr(settings, "DATABASE_URL", "postgresql://u:p@127.0.0.1:1/nodb")
    set_database(None)
    for path in ("/shop-status", "/time-settings/status"):
        r = client.get(path)
        assert r.status_code == 200, path
        assert r.json()["isOpen"] is True
        assert r.json()["warning"]


def test_init_database_reports_failure(db, tmp_path):
    broken = Database(f"sqlite+pysqlite:///{tmp_path / 'missing' / 'shop.sqlite3'}")
    set_database(broken)
    try:
        assert init_database() is False
    finally:
        broken.dispose()


def test_broadcast_status_falls_back_when_database_unreachable(db, tmp_path):
    from app.main import _current_status

    broken = Database(f"sqlite+pysqlite:///{tmp_path / 'missing' / 'shop.sqlite3'}")
    set_database(broken)
    try:
        status = _current_status(datetime(2024, 6, 12, 4, 30, tzinfo=timezone.utc))
    finally:
        broken.dispose()
    assert status.isOpen is True
    assert status.timezone == "Asia/Kolkata"


def test_admin_view_message_is_optional():
    from app.api.settings import _admin_view
    from app.schemas.settings import TimeSettings

    assert get_type_hints(_admin_view)["message"] == Optional[str]
    view = _admin_view(TimeSettings(timezone="Asia/Kolkata"))
    assert "message" not in view
    assert _admin_view(TimeSettings(timezone="Asia/Kolkata"), "saved")["message"] == "saved"
