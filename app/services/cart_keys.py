"""
Which cart belongs to a user.

Carts used to be keyed by e-mail, then by an older account id; today they are
keyed by the auth uid. Lookups walk the strategies in priority order and the
first legacy hit is re-keyed to the uid.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError

from app.services.cart_store import CartSnapshot, CartStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CartUser:
    uid: str
    email: Optional[str] = None
    legacy_id: Optional[str] = None


@dataclass(frozen=True)
class KeyStrategy:
    name: str
    key: Callable[[CartUser], Optional[str]]


DEFAULT_STRATEGIES: Tuple[KeyStrategy, ...] = (
    KeyStrategy("canonical", lambda u: u.uid),
    KeyStrategy("email", lambda u: (u.email or "").strip() or None),
    KeyStrategy("legacy_id", lambda u: u.legacy_id),
)


class LegacyCartResolver:
    def __init__(self, store: CartStore, strategies: Tuple[KeyStrategy, ...] = DEFAULT_STRATEGIES):
        self.store = store
        self.strategies: List[KeyStrategy] = list(strategies)

    def resolve(self, user: CartUser) -> Optional[CartSnapshot]:
        """
        The user's cart under the canonical key, migrating a legacy cart if
        that is the only one. None when the user has no cart at all.
        """
        for strategy in self.strategies:
            key = strategy.key(user)
            if not key:
                continue
            if key == user.uid:
                if strategy.name != "canonical":
                    continue
                found = self.store.find(key)
                if found is not None:
                    return found
                continue
            legacy = self.store.find(key)
            if legacy is None:
                continue
            return self._migrate(key, user.uid, strategy.name)
        return None

    def _migrate(self, legacy_key: str, uid: str, via: str) -> Optional[CartSnapshot]:
        """
        Raises VersionConflict when a concurrent writer touched either cart;
        callers retry the whole resolve.
        """
        try:
            migrated = self.store.rename(legacy_key, uid)
            logger.info("cart migrated: %s key %r -> %r", via, legacy_key, uid)
            return migrated
        except IntegrityError:
            logger.info("cart migration: canonical key %r taken, reconciling with %r", uid, legacy_key)
        canonical = self.store.find(uid)
        if canonical is not None and canonical.items:
            self.store.delete(legacy_key)
            logger.info("cart migration: canonical %r wins, legacy %r dropped", uid, legacy_key)
            return canonical
        merged = self.store.merge_into(legacy_key, uid)
        logger.info("cart migration: legacy %r merged into %r", legacy_key, uid)
        return merged
