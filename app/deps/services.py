# app/deps/services.py
"""
FastAPI dependencies that hand routes their collaborators.
Tests swap them through app.dependency_overrides.
"""
from __future__ import annotations

from typing import Optional

from fastapi import Depends, Query

from app.core.config import settings
from app.core.retry import linear_jitter
from app.db import Database, get_database
from app.services.cart import CartService


def get_db() -> Database:
    return get_database()


def get_cart_service(db: Database = Depends(get_db)) -> CartService:
    return CartService(
        db,
        expiry_seconds=settings.cart_expiry_seconds,
        max_attempts=settings.CART_MAX_ATTEMPTS,
        backoff=linear_jitter(settings.CART_RETRY_BASE_MS, settings.CART_RETRY_JITTER_MS),
        refresh_price_on_read=settings.CART_REFRESH_PRICE_ON_READ,
    )


def expiry_override(
    expiryTestMinutes: Optional[float] = Query(None, gt=0),
    expiryTestHours: Optional[float] = Query(None, gt=0),
) -> Optional[int]:
    """
    Per-request cart expiry window for testing; ignored in production.
    """
    if settings.is_production:
        return None
    if expiryTestMinutes:
        return max(1, int(expiryTestMinutes * 60))
    if expiryTestHours:
        return max(1, int(expiryTestHours * 3600))
    return None
