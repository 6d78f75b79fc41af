# app/services/cart.py
"""
Per-user cart operations.

Every operation first re-keys a legacy cart if needed, then purges lines
older than the expiry window, then serves the request. Whole-cart writes run
under `with_retry`; a VersionConflict that survives every attempt propagates
to the HTTP layer.

Stock is checked on add / quantity increase but never reserved: it is only
decremented when an order completes.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from app.core.retry import Backoff, linear_jitter, with_retry
from app.core.utils import iso_utc, utcnow
from app.db import Database
from app.models.cart import CartRow
from app.schemas.cart import CartItemOut, CartOut, ExpiredItemOut, ProductDetails
from app.services import catalog
from app.services.cart_keys import CartUser, LegacyCartResolver
from app.services.cart_store import CartSnapshot, CartStore, ItemSnapshot
from app.services.catalog import ProductRecord

logger = logging.getLogger(__name__)

# refreshed from the live product on every read; price only by policy
DISPLAY_FIELDS = ("name", "image", "category", "isActive", "hasEgg", "variants", "selectedVariant", "variantLabel")


def product_details(product: ProductRecord, variant_index: int) -> Dict[str, Any]:
    idx = product.resolved_variant_index(variant_index)
    variant = product.variant(idx)
    return ProductDetails(
        name=product.name,
        price=product.unit_price(idx),
        image=product.image or "",
        category=product.category,
        isActive=product.is_active,
        hasEgg=product.has_egg,
        variantIndex=idx,
        variants=list(product.variants),
        selectedVariant=dict(variant) if variant else None,
        variantLabel=catalog.variant_label(variant),
    ).model_dump()


class CartService:
    def __init__(
        self,
        db: Database,
        expiry_seconds: int = 24 * 3600,
        max_attempts: int = 3,
        backoff: Optional[Backoff] = None,
        refresh_price_on_read: bool = False,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.clock = clock
        self.store = CartStore(db, clock=clock)
        self.resolver = LegacyCartResolver(self.store)
        self.expiry_seconds = expiry_seconds
        self.max_attempts = max_attempts
        self.backoff = backoff or linear_jitter()
        self.refresh_price_on_read = refresh_price_on_read

    # -------------------- shared steps --------------------

    def _resolve(self, user: CartUser) -> Optional[CartSnapshot]:
        return self._retry(lambda: self.resolver.resolve(user))

    def _prepare(self, user: CartUser, expiry_seconds: Optional[int]) -> List[ItemSnapshot]:
        self._resolve(user)
        window = expiry_seconds or self.expiry_seconds
        cutoff = self.clock() - timedelta(seconds=window)
        return self.store.purge_expired(user.uid, cutoff)

    def _retry(self, attempt):
        return with_retry(attempt, max_attempts=self.max_attempts, backoff=self.backoff)

    def _render(self, user: CartUser, cart: Optional[CartSnapshot], expired: List[ItemSnapshot],
                expiry_seconds: Optional[int], refresh: bool = True) -> CartOut:
        window = expiry_seconds or self.expiry_seconds
        expired_out = [
            ExpiredItemOut(
                productId=it.product_id,
                quantity=it.quantity,
                name=str(it.product_details.get("name") or ""),
                addedAt=iso_utc(it.added_at),
            )
            for it in expired
        ]
        if cart is None or not cart.items:
            return CartOut(userId=user.uid, expiredRemovedItems=expired_out, cartExpirySeconds=window)

        live = catalog.get_products(self.db, [it.product_id for it in cart.items]) if refresh else {}
        items: List[CartItemOut] = []
        for it in cart.items:
            details = dict(it.product_details)
            available = True
            if refresh:
                product = live.get(it.product_id)
                if product is None:
                    available = False
                    details["isActive"] = False
                else:
                    fresh = product_details(product, int(details.get("variantIndex") or 0))
                    for key in DISPLAY_FIELDS:
                        details[key] = fresh[key]
                    if self.refresh_price_on_read:
                        details["price"] = fresh["price"]
                    available = product.is_active
            items.append(CartItemOut(
                productId=it.product_id,
                quantity=it.quantity,
                productDetails=ProductDetails.model_validate(details),
                addedAt=iso_utc(it.added_at),
                isAvailable=available,
            ))
        total = sum(i.productDetails.price * i.quantity for i in items)
        return CartOut(
            id=cart.id,
            userId=cart.user_id,
            items=items,
            cartTotal=round(total, 2),
            cartCount=sum(i.quantity for i in items),
            lastUpdated=iso_utc(cart.last_updated),
            expiredRemovedItems=expired_out,
            cartExpirySeconds=window,
        )

    # -------------------- operations --------------------

    def get_cart(self, user: CartUser, expiry_seconds: Optional[int] = None) -> CartOut:
        expired = self._prepare(user, expiry_seconds)
        cart = self.store.find(user.uid)
        return self._render(user, cart, expired, expiry_seconds)

    def get_count(self, user: CartUser, expiry_seconds: Optional[int] = None) -> int:
        self._prepare(user, expiry_seconds)
        return self.store.count(user.uid)

    def add_item(self, user: CartUser, product_id: Optional[str], quantity: int = 1,
                 variant_index: int = 0, expiry_seconds: Optional[int] = None) -> CartOut:
        if not product_id:
            raise HTTPException(status_code=400, detail="Product ID is required")
        if quantity is None or quantity <= 0:
            raise HTTPException(status_code=400, detail="Quantity must be greater than 0")

        product = catalog.get_product(self.db, product_id)
        if product is None:
            raise HTTPException(status_code=404, detail="Product not found")
        if not product.is_active:
            raise HTTPException(status_code=400, detail="Product is not available")

        details = product_details(product, variant_index)
        variant = product.variant(details["variantIndex"])
        tracks_stock = catalog.variant_tracks_stock(variant)
        stock = catalog.variant_stock(variant)
        pid = str(product.id)

        expired = self._prepare(user, expiry_seconds)

        def apply(cart: CartRow, _s: Session) -> None:
            existing = next((it for it in cart.items if it.product_id == pid), None)
            in_cart = existing.quantity if existing is not None else 0
            if tracks_stock and in_cart + quantity > stock:
                left = max(0, stock - in_cart)
                raise HTTPException(
                    status_code=400,
                    detail=f"Insufficient stock available. Only {left} more can be added.",
                )
            if existing is not None:
                existing.quantity = in_cart + quantity
                existing.product_details = details
            else:
                self.store.append_item(cart, pid, quantity, details)

        cart = self._retry(lambda: self.store.mutate(user.uid, apply))
        logger.info("cart add: user=%s product=%s qty=%d", user.uid, pid, quantity)
        return self._render(user, cart, expired, expiry_seconds)

    def update_item(self, user: CartUser, product_id: str, quantity: int,
                    expiry_seconds: Optional[int] = None) -> CartOut:
        if quantity is None or quantity < 0:
            raise HTTPException(status_code=400, detail="Quantity cannot be negative")
        pid = str(product_id)
        expired = self._prepare(user, expiry_seconds)

        if quantity == 0:
            if not self.store.pull_item(user.uid, pid):
                raise HTTPException(status_code=404, detail="Item not found in cart")
            logger.info("cart update->remove: user=%s product=%s", user.uid, pid)
            return self._render(user, self.store.find(user.uid), expired, expiry_seconds)

        current = self.store.find(user.uid)
        line = current.item(pid) if current is not None else None
        if line is None:
            raise HTTPException(status_code=404, detail="Item not found in cart")

        if quantity > line.quantity:
            product = catalog.get_product(self.db, pid)
            if product is None:
                raise HTTPException(status_code=404, detail="Product not found")
            variant = product.variant(int(line.product_details.get("variantIndex") or 0))
            if catalog.variant_tracks_stock(variant) and quantity > catalog.variant_stock(variant):
                raise HTTPException(
                    status_code=400,
                    detail=f"Only {catalog.variant_stock(variant)} items available in stock",
                )

        if not self.store.set_quantity(user.uid, pid, quantity):
            # removed (or expired) by a concurrent request
            raise HTTPException(status_code=404, detail="Item not found in cart")
        logger.info("cart update: user=%s product=%s qty=%d", user.uid, pid, quantity)
        return self._render(user, self.store.find(user.uid), expired, expiry_seconds)

    def remove_item(self, user: CartUser, product_id: str, expiry_seconds: Optional[int] = None) -> CartOut:
        pid = str(product_id)
        expired = self._prepare(user, expiry_seconds)
        if not self.store.pull_item(user.uid, pid):
            raise HTTPException(status_code=404, detail="Item not found in cart")
        logger.info("cart remove: user=%s product=%s", user.uid, pid)
        return self._render(user, self.store.find(user.uid), expired, expiry_seconds)

    def clear_cart(self, user: CartUser, expiry_seconds: Optional[int] = None) -> CartOut:
        self._resolve(user)
        dropped = self.store.clear(user.uid)
        logger.info("cart clear: user=%s lines=%d", user.uid, dropped)
        return self._render(user, None, [], expiry_seconds)
