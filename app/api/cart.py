# app/api/cart.py
from __future__ import annotations

import logging
from typing import Callable, Optional, TypeVar

from fastapi import APIRouter, Body, Depends, HTTPException, Response

from app.core.errors import VersionConflict
from app.deps.auth import get_cart_user
from app.deps.services import expiry_override, get_cart_service
from app.schemas.cart import AddToCartIn, CartCountOut, CartOut, UpdateCartItemIn
from app.services.cart import CartService
from app.services.cart_keys import CartUser

logger = logging.getLogger(__name__)

router = APIRouter(tags=["cart"])

T = TypeVar("T")


def _no_store(response: Response) -> None:
    response.headers["Cache-Control"] = "no-store"


def _guard(action: str, call: Callable[[], T]) -> T:
    """Retry exhaustion becomes a 500; client errors pass through."""
    try:
        return call()
    except VersionConflict:
        logger.exception("cart %s gave up after retries", action)
        raise HTTPException(status_code=500, detail=f"Failed to {action}")


@router.get("", response_model=CartOut)
def get_cart(
    response: Response,
    user: CartUser = Depends(get_cart_user),
    svc: CartService = Depends(get_cart_service),
    expiry: Optional[int] = Depends(expiry_override),
):
    _no_store(response)
    return _guard("get cart", lambda: svc.get_cart(user, expiry_seconds=expiry))


@router.get("/count", response_model=CartCountOut)
def get_cart_count(
    response: Response,
    user: CartUser = Depends(get_cart_user),
    svc: CartService = Depends(get_cart_service),
    expiry: Optional[int] = Depends(expiry_override),
):
    _no_store(response)
    return CartCountOut(count=svc.get_count(user, expiry_seconds=expiry))


@router.post("", response_model=CartOut)
def add_to_cart(
    response: Response,
    payload: AddToCartIn = Body(...),
    user: CartUser = Depends(get_cart_user),
    svc: CartService = Depends(get_cart_service),
    expiry: Optional[int] = Depends(expiry_override),
):
    _no_store(response)
    return _guard("add item to cart", lambda: svc.add_item(
        user, payload.productId, payload.quantity, payload.variantIndex, expiry_seconds=expiry,
    ))


@router.put("/{product_id}", response_model=CartOut)
def update_cart_item(
    product_id: str,
    response: Response,
    payload: UpdateCartItemIn = Body(...),
    user: CartUser = Depends(get_cart_user),
    svc: CartService = Depends(get_cart_service),
    expiry: Optional[int] = Depends(expiry_override),
):
    _no_store(response)
    return _guard("update cart item", lambda: svc.update_item(
        user, product_id, payload.quantity, expiry_seconds=expiry,
    ))


@router.delete("/{product_id}", response_model=CartOut)
def remove_from_cart(
    product_id: str,
    response: Response,
    user: CartUser = Depends(get_cart_user),
    svc: CartService = Depends(get_cart_service),
    expiry: Optional[int] = Depends(expiry_override),
):
    _no_store(response)
    return _guard("remove item from cart", lambda: svc.remove_item(user, product_id, expiry_seconds=expiry))


@router.delete("", response_model=CartOut)
def clear_cart(
    response: Response,
    user: CartUser = Depends(get_cart_user),
    svc: CartService = Depends(get_cart_service),
    expiry: Optional[int] = Depends(expiry_override),
):
    _no_store(response)
    return _guard("clear cart", lambda: svc.clear_cart(user, expiry_seconds=expiry))
