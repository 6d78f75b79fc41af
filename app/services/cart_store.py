# app/services/cart_store.py
"""
Cart persistence.

One cart row per user key plus its item rows. Whole-cart writes go through
`mutate`, which is a single optimistic attempt: the cart row carries a
version (SQLAlchemy `version_id_col`) and a stale save surfaces as
VersionConflict for the caller's retry loop. Single-line changes
(`set_quantity`, `pull_item`, `purge_expired`) are set-based statements that
bump the version themselves, so a concurrent whole-cart writer retries
instead of overwriting them.

A cart row never outlives its last item.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import delete, exists, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified
from sqlalchemy.orm.exc import StaleDataError

from app.core.errors import VersionConflict
from app.core.utils import as_utc, utcnow
from app.db import Database
from app.models.cart import CartItemRow, CartRow

logger = logging.getLogger(__name__)

_carts = CartRow.__table__
_items = CartItemRow.__table__


@dataclass
class ItemSnapshot:
    product_id: str
    quantity: int
    product_details: Dict[str, Any]
    added_at: datetime


@dataclass
class CartSnapshot:
    id: int
    user_id: str
    version: int
    last_updated: Optional[datetime]
    items: List[ItemSnapshot] = field(default_factory=list)

    def item(self, product_id: str) -> Optional[ItemSnapshot]:
        for it in self.items:
            if it.product_id == str(product_id):
                return it
        return None


def _snapshot(cart: CartRow) -> CartSnapshot:
    return CartSnapshot(
        id=cart.id,
        user_id=cart.user_id,
        version=cart.version,
        last_updated=as_utc(cart.last_updated) if cart.last_updated else None,
        items=[
            ItemSnapshot(
                product_id=it.product_id,
                quantity=int(it.quantity),
                product_details=dict(it.product_details or {}),
                added_at=as_utc(it.added_at),
            )
            for it in cart.items
        ],
    )


Mutation = Callable[[CartRow, Session], None]


class CartStore:
    def __init__(self, db: Database, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock

    # -------------------- reads --------------------

    def find(self, user_id: str) -> Optional[CartSnapshot]:
        with self.db.session_scope() as s:
            cart = s.execute(select(CartRow).where(CartRow.user_id == user_id)).scalar_one_or_none()
            return _snapshot(cart) if cart is not None else None

    def count(self, user_id: str) -> int:
        with self.db.session_scope() as s:
            total = s.execute(
                select(func.coalesce(func.sum(CartItemRow.quantity), 0))
                .select_from(CartItemRow)
                .join(CartRow, CartRow.id == CartItemRow.cart_id)
                .where(CartRow.user_id == user_id)
            ).scalar_one()
            return int(total or 0)

    # -------------------- whole-cart optimistic write --------------------

    def mutate(self, user_id: str, apply: Mutation) -> Optional[CartSnapshot]:
        """
        One optimistic attempt: load (or start) the cart, apply, save.
        Returns the saved cart, or None if the mutation left it empty
        (in which case the row is deleted).
        Raises VersionConflict if another writer committed in between.
        """
        try:
            with self.db.session_scope() as s:
                cart = s.execute(select(CartRow).where(CartRow.user_id == user_id)).scalar_one_or_none()
                is_new = cart is None
                if is_new:
                    cart = CartRow(user_id=user_id, last_updated=self.clock())
                apply(cart, s)
                cart.last_updated = self.clock()
                if not is_new:
                    # always UPDATE the cart row so its version moves
                    flag_modified(cart, "last_updated")
                if not cart.items:
                    if not is_new:
                        s.delete(cart)
                    return None
                if is_new:
                    s.add(cart)
                s.flush()
                return _snapshot(cart)
        except (StaleDataError, IntegrityError) as e:
            raise VersionConflict(user_id) from e

    def next_position(self, cart: CartRow) -> int:
        return max((it.position for it in cart.items), default=-1) + 1

    def append_item(self, cart: CartRow, product_id: str, quantity: int, details: Dict[str, Any]) -> CartItemRow:
        row = CartItemRow(
            product_id=str(product_id),
            quantity=quantity,
            product_details=details,
            added_at=self.clock(),
            position=self.next_position(cart),
        )
        cart.items.append(row)
        return row

    # -------------------- atomic single-statement writes --------------------

    def _bump(self, s: Session, cart_id: int) -> None:
        s.execute(
            update(_carts)
            .where(_carts.c.id == cart_id)
            .values(version=_carts.c.version + 1, last_updated=self.clock())
        )

    def _delete_if_empty(self, s: Session, cart_id: int) -> bool:
        res = s.execute(
            delete(_carts).where(
                _carts.c.id == cart_id,
                ~exists().where(_items.c.cart_id == cart_id),
            )
        )
        return bool(res.rowcount)

    def _cart_id(self, s: Session, user_id: str) -> Optional[int]:
        return s.execute(select(_carts.c.id).where(_carts.c.user_id == user_id)).scalar_one_or_none()

    def set_quantity(self, user_id: str, product_id: str, quantity: int) -> bool:
        """Positional update of one line; False if the line does not exist."""
        with self.db.session_scope() as s:
            cart_id = self._cart_id(s, user_id)
            if cart_id is None:
                return False
            res = s.execute(
                update(_items)
                .where(_items.c.cart_id == cart_id, _items.c.product_id == str(product_id))
                .values(quantity=quantity)
            )
            if not res.rowcount:
                return False
            self._bump(s, cart_id)
            return True

    def pull_item(self, user_id: str, product_id: str) -> bool:
        """Remove one line; deletes the cart if it was the last one."""
        with self.db.session_scope() as s:
            cart_id = self._cart_id(s, user_id)
            if cart_id is None:
                return False
            res = s.execute(
                delete(_items).where(_items.c.cart_id == cart_id, _items.c.product_id == str(product_id))
            )
            if not res.rowcount:
                return False
            if not self._delete_if_empty(s, cart_id):
                self._bump(s, cart_id)
            return True

    def purge_expired(self, user_id: str, cutoff: datetime) -> List[ItemSnapshot]:
        """
        Drop every line added before `cutoff`; returns what was dropped.
        Running it twice with the same cutoff removes nothing the second time.
        """
        with self.db.session_scope() as s:
            cart_id = self._cart_id(s, user_id)
            if cart_id is None:
                return []
            stale = s.execute(
                select(_items).where(_items.c.cart_id == cart_id, _items.c.added_at < cutoff)
            ).mappings().all()
            if not stale:
                return []
            s.execute(
                delete(_items).where(
                    _items.c.id.in_([r["id"] for r in stale]),
                    _items.c.added_at < cutoff,
                )
            )
            if not self._delete_if_empty(s, cart_id):
                self._bump(s, cart_id)
            removed = [
                ItemSnapshot(
                    product_id=r["product_id"],
                    quantity=int(r["quantity"]),
                    product_details=dict(r["product_details"] or {}),
                    added_at=as_utc(r["added_at"]),
                )
                for r in stale
            ]
        logger.info("cart purge: user=%s removed=%d", user_id, len(removed))
        return removed

    def clear(self, user_id: str) -> int:
        """Empty the cart and delete it; returns how many lines were dropped."""
        with self.db.session_scope() as s:
            cart_id = self._cart_id(s, user_id)
            if cart_id is None:
                return 0
            res = s.execute(delete(_items).where(_items.c.cart_id == cart_id))
            s.execute(delete(_carts).where(_carts.c.id == cart_id))
            return int(res.rowcount or 0)

    # -------------------- key migration --------------------

    def rename(self, old_key: str, new_key: str) -> Optional[CartSnapshot]:
        """
        Re-key a cart. Raises IntegrityError if `new_key` is already taken and
        VersionConflict if another writer touched the cart meanwhile.
        """
        try:
            with self.db.session_scope() as s:
                cart = s.execute(select(CartRow).where(CartRow.user_id == old_key)).scalar_one_or_none()
                if cart is None:
                    return None
                cart.user_id = new_key
                cart.last_updated = self.clock()
                s.flush()
                return _snapshot(cart)
        except StaleDataError as e:
            raise VersionConflict(new_key) from e

    def merge_into(self, source_key: str, target_key: str) -> Optional[CartSnapshot]:
        """
        Move every line of `source_key` that `target_key` lacks, then delete
        the source cart. Creates the target if needed.
        """
        try:
            with self.db.session_scope() as s:
                source = s.execute(select(CartRow).where(CartRow.user_id == source_key)).scalar_one_or_none()
                target = s.execute(select(CartRow).where(CartRow.user_id == target_key)).scalar_one_or_none()
                if source is None:
                    return _snapshot(target) if target is not None else None
                moved = [
                    (it.product_id, it.quantity, dict(it.product_details or {}), it.added_at)
                    for it in source.items
                ]
                s.delete(source)
                s.flush()
                if target is None:
                    target = CartRow(user_id=target_key, last_updated=self.clock())
                    s.add(target)
                have = {it.product_id for it in target.items}
                for product_id, quantity, details, added_at in moved:
                    if product_id in have:
                        continue
                    target.items.append(CartItemRow(
                        product_id=product_id,
                        quantity=quantity,
                        product_details=details,
                        added_at=added_at,
                        position=self.next_position(target),
                    ))
                target.last_updated = self.clock()
                if not target.items:
                    if target in s.new:
                        s.expunge(target)
                    else:
                        s.delete(target)
                    return None
                s.flush()
                return _snapshot(target)
        except (StaleDataError, IntegrityError) as e:
            raise VersionConflict(target_key) from e

    def delete(self, user_id: str) -> None:
        with self.db.session_scope() as s:
            s.execute(delete(_carts).where(_carts.c.user_id == user_id))
