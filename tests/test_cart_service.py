from concurrent.futures import ThreadPoolExecutor

import pytest
from fastapi import HTTPException
from sqlalchemy import delete, update
from sqlalchemy.orm.exc import StaleDataError

from app.core.errors import VersionConflict
from app.models.cart import CartRow
from app.models.product import ProductRow
from app.services import catalog
from app.services.cart import CartService
from app.services.cart_keys import CartUser, LegacyCartResolver

ALICE = CartUser(uid="uid-alice", email="alice@example.com", legacy_id="legacy-42")


def test_empty_cart_shape(service):
    cart = service.get_cart(ALICE)
    assert cart.id is None
    assert cart.userId == "uid-alice"
    assert cart.items == []
    assert cart.cartTotal == 0
    assert cart.cartCount == 0
    assert cart.expiredRemovedItems == []
    assert cart.cartExpirySeconds == 3600


def test_add_snapshots_product_and_totals(service):
    service.add_item(ALICE, "croissant", 2)
    cart = service.add_item(ALICE, "cake", 1, variant_index=0)

    assert cart.cartCount == 3
    assert cart.cartTotal == 27.0
    cake = next(i for i in cart.items if i.productId == "cake")
    assert cake.productDetails.price == 20.0
    assert cake.productDetails.variantLabel == "500 g"
    assert cake.productDetails.selectedVariant["measuringUnit"] == "g"
    assert [i.productId for i in cart.items] == ["croissant", "cake"]


def test_adding_same_product_accumulates(service):
    service.add_item(ALICE, "croissant", 2)
    cart = service.add_item(ALICE, "croissant", 1)
    assert len(cart.items) == 1
    assert cart.items[0].quantity == 3
    assert service.get_count(ALICE) == 3


@pytest.mark.parametrize("product_id, quantity, status, detail", [
    (None, 1, 400, "Product ID is required"),
    ("croissant", 0, 400, "Quantity must be greater than 0"),
    ("nope", 1, 404, "Product not found"),
    ("retired", 1, 400, "Product is not available"),
])
def test_add_rejects_bad_requests(service, product_id, quantity, status, detail):
    with pytest.raises(HTTPException) as err:
        service.add_item(ALICE, product_id, quantity)
    assert err.value.status_code == status
    assert err.value.detail == detail
    assert service.store.find(ALICE.uid) is None


def test_add_respects_tracked_stock(service):
    service.add_item(ALICE, "cake", 2, variant_index=0)
    with pytest.raises(HTTPException) as err:
        service.add_item(ALICE, "cake", 2, variant_index=0)
    assert err.value.status_code == 400
    assert err.value.detail == "Insufficient stock available. Only 1 more can be added."
    assert service.get_count(ALICE) == 2


def test_untracked_variant_ignores_stock(service):
    cart = service.add_item(ALICE, "cake", 50, variant_index=1)
    assert cart.items[0].quantity == 50
    assert cart.items[0].productDetails.price == 38.0


def test_unknown_variant_index_falls_back_to_first(service):
    cart = service.add_item(ALICE, "cake", 1, variant_index=9)
    assert cart.items[0].productDetails.variantIndex == 0
    assert cart.items[0].productDetails.price == 20.0


def test_expired_items_are_purged_and_reported(service, clock):
    service.add_item(ALICE, "croissant", 2)
    clock.advance(minutes=40)
    service.add_item(ALICE, "cake", 1)
    clock.advance(minutes=30)

    cart = service.get_cart(ALICE)
    assert [i.productId for i in cart.items] == ["cake"]
    assert [(e.productId, e.quantity, e.name) for e in cart.expiredRemovedItems] == [("croissant", 2, "Croissant")]

    again = service.get_cart(ALICE)
    assert again.expiredRemovedItems == []
    assert [i.productId for i in again.items] == ["cake"]


def test_fully_expired_cart_is_deleted(service, clock):
    service.add_item(ALICE, "croissant", 1)
    clock.advance(hours=2)
    assert service.get_count(ALICE) == 0
    assert service.store.find(ALICE.uid) is None


def test_per_request_expiry_override(service, clock):
    service.add_item(ALICE, "croissant", 1)
    clock.advance(minutes=2)
    cart = service.get_cart(ALICE, expiry_seconds=60)
    assert cart.items == []
    assert cart.cartExpirySeconds == 60
    assert len(cart.expiredRemovedItems) == 1


def test_update_quantity(service):
    service.add_item(ALICE, "cake", 1)
    cart = service.update_item(ALICE, "cake", 3)
    assert cart.items[0].quantity == 3
    cart = service.update_item(ALICE, "cake", 2)
    assert cart.items[0].quantity == 2


def test_update_increase_checks_stock(service):
    service.add_item(ALICE, "cake", 1)
    with pytest.raises(HTTPException) as err:
        service.update_item(ALICE, "cake", 4)
    assert err.value.status_code == 400
    assert err.value.detail == "Only 3 items available in stock"


def test_update_to_zero_removes_and_deletes_empty_cart(service):
    service.add_item(ALICE, "croissant", 1)
    cart = service.update_item(ALICE, "croissant", 0)
    assert cart.items == []
    assert service.store.find(ALICE.uid) is None


def test_update_missing_item(service):
    service.add_item(ALICE, "croissant", 1)
    with pytest.raises(HTTPException) as err:
        service.update_item(ALICE, "cake", 2)
    assert err.value.status_code == 404
    with pytest.raises(HTTPException) as err:
        service.update_item(ALICE, "croissant", -1)
    assert err.value.status_code == 400


def test_remove_item(service):
    service.add_item(ALICE, "croissant", 1)
    service.add_item(ALICE, "cake", 1)

    cart = service.remove_item(ALICE, "croissant")
    assert [i.productId for i in cart.items] == ["cake"]

    with pytest.raises(HTTPException) as err:
        service.remove_item(ALICE, "croissant")
    assert err.value.status_code == 404

    service.remove_item(ALICE, "cake")
    assert service.store.find(ALICE.uid) is None


def test_clear_cart(service):
    service.add_item(ALICE, "croissant", 2)
    cart = service.clear_cart(ALICE)
    assert cart.items == []
    assert service.store.find(ALICE.uid) is None
    assert service.clear_cart(ALICE).items == []


def test_price_is_pinned_but_display_fields_refresh(service, db, products):
    service.add_item(ALICE, "croissant", 1)
    catalog.upsert_product(db, {**_as_data(products["croissant"]), "name": "Butter Croissant", "price": 4.0})

    item = service.get_cart(ALICE).items[0]
    assert item.productDetails.name == "Butter Croissant"
    assert item.productDetails.price == 3.5

    readd = service.add_item(ALICE, "croissant", 1)
    assert readd.items[0].productDetails.price == 4.0
    assert readd.cartTotal == 8.0


def test_price_refresh_on_read_policy(db, products, clock):
    svc = CartService(db, expiry_seconds=3600, backoff=lambda n: 0, refresh_price_on_read=True, clock=clock)
    svc.add_item(ALICE, "croissant", 2)
    catalog.upsert_product(db, {**_as_data(products["croissant"]), "price": 4.0})
    cart = svc.get_cart(ALICE)
    assert cart.items[0].productDetails.price == 4.0
    assert cart.cartTotal == 8.0


def test_missing_product_is_kept_but_unavailable(service, db):
    service.add_item(ALICE, "croissant", 1)
    with db.session_scope() as s:
        s.execute(delete(ProductRow).where(ProductRow.id == "croissant"))

    item = service.get_cart(ALICE).items[0]
    assert item.productId == "croissant"
    assert item.isAvailable is False
    assert item.productDetails.isActive is False
    assert item.productDetails.price == 3.5


def test_legacy_email_cart_is_rekeyed(service):
    service.add_item(CartUser(uid="alice@example.com"), "croissant", 2)

    cart = service.get_cart(ALICE)
    assert cart.userId == "uid-alice"
    assert cart.items[0].quantity == 2
    assert service.store.find("alice@example.com") is None


def test_legacy_id_cart_is_rekeyed(service):
    service.add_item(CartUser(uid="legacy-42"), "cake", 1)
    assert service.get_count(ALICE) == 1
    assert service.store.find("legacy-42") is None
    assert service.store.find("uid-alice").items[0].product_id == "cake"


def test_canonical_cart_wins_over_legacy_duplicate(service):
    service.add_item(ALICE, "croissant", 1)
    service.add_item(CartUser(uid="alice@example.com"), "cake", 1)

    resolver = LegacyCartResolver(service.store)
    winner = resolver._migrate("alice@example.com", "uid-alice", "email")

    assert [i.product_id for i in winner.items] == ["croissant"]
    assert service.store.find("alice@example.com") is None


def test_rekey_racing_a_writer_is_retried(service, db, monkeypatch):
    service.add_item(CartUser(uid="alice@example.com"), "croissant", 2)
    real_clock = service.store.clock
    raced = []

    def clock_with_concurrent_write():
        if not raced:
            raced.append(True)
            with db.session_scope() as s:
                s.execute(
                    update(CartRow)
                    .where(CartRow.user_id == "alice@example.com")
                    .values(version=CartRow.version + 1)
                )
        return real_clock()

    monkeypatch.setattr(service.store, "clock", clock_with_concurrent_write)
    cart = service.get_cart(ALICE)

    assert raced
    assert cart.userId == "uid-alice"
    assert cart.items[0].quantity == 2
    assert service.store.find("alice@example.com") is None


def test_stale_rekey_surfaces_as_version_conflict(service, monkeypatch):
    service.add_item(CartUser(uid="alice@example.com"), "croissant", 1)

    def stale(*args, **kwargs):
        raise StaleDataError("cart row changed")

    monkeypatch.setattr(service.store.db, "session_scope", stale)
    with pytest.raises(VersionConflict):
        service.store.rename("alice@example.com", "uid-alice")


def test_merge_moves_only_missing_lines(service):
    service.add_item(CartUser(uid="old"), "croissant", 5)
    service.add_item(CartUser(uid="old"), "cake", 1)
    service.add_item(CartUser(uid="new"), "croissant", 1)

    merged = service.store.merge_into("old", "new")

    assert {i.product_id: i.quantity for i in merged.items} == {"croissant": 1, "cake": 1}
    assert service.store.find("old") is None


def test_concurrent_adds_do_not_lose_updates(db, products):
    # shipped retry bound: each add can lose at most one race per other writer
    svc = CartService(db)
    assert svc.max_attempts == 3
    with ThreadPoolExecutor(max_workers=3) as pool:
        list(pool.map(lambda _: svc.add_item(ALICE, "croissant", 1), range(3)))
    assert svc.get_count(ALICE) == 3


def test_conflict_propagates_after_retries(service, monkeypatch):
    calls = []

    def always_conflict(user_id, apply):
        calls.append(user_id)
        raise VersionConflict(user_id)

    monkeypatch.setattr(service.store, "mutate", always_conflict)
    with pytest.raises(VersionConflict):
        service.add_item(ALICE, "croissant", 1)
    assert len(calls) == 3


def _as_data(p):
    return {
        "id": p.id,
        "name": p.name,
        "image": p.image,
        "category": p.category,
        "is_active": p.is_active,
        "has_egg": p.has_egg,
        "price": p.price,
        "variants": p.variants,
    }
