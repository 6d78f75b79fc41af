# app/api/products.py
from __future__ import annotations

from fastapi import APIRouter, Body, Depends, HTTPException, Query

from app.core.utils import utcnow
from app.db import Database
from app.deps.auth import require_admin
from app.deps.services import get_db
from app.schemas.product import ProductIn, ProductOut
from app.services import catalog
from app.services.catalog import ProductRecord
from app.services.time_settings import shop_status_or_default


def _product_out(p: ProductRecord) -> ProductOut:
    return ProductOut(
        id=p.id,
        name=p.name,
        image=p.image,
        category=p.category,
        isActive=p.is_active,
        hasEgg=p.has_egg,
        price=p.price,
        variants=p.variants,
    )


def get_products_router() -> APIRouter:
    """
    APIRouter for include_router(..., prefix="/products")
    """
    router = APIRouter(tags=["products"])

    @router.get("")
    def list_products(
        active_only: int = Query(1),
        db: Database = Depends(get_db),
    ):
        items = [_product_out(p).model_dump() for p in catalog.list_products(db, active_only=bool(active_only))]
        status, warning = shop_status_or_default(db, utcnow())
        out = {"count": len(items), "items": items, "shopStatus": status.model_dump()}
        if warning:
            out["warning"] = warning
        return out

    @router.get("/{product_id}", response_model=ProductOut)
    def get_product(product_id: str, db: Database = Depends(get_db)):
        p = catalog.get_product(db, product_id)
        if p is None:
            raise HTTPException(status_code=404, detail="Product not found")
        return _product_out(p)

    @router.post("", response_model=ProductOut, dependencies=[Depends(require_admin)])
    def upsert_product(payload: ProductIn = Body(...), db: Database = Depends(get_db)):
        saved = catalog.upsert_product(db, {
            "id": payload.id,
            "name": payload.name,
            "image": payload.image,
            "category": payload.category,
            "is_active": payload.isActive,
            "has_egg": payload.hasEgg,
            "price": payload.price,
            "variants": [v.model_dump() for v in payload.variants],
        })
        return _product_out(saved)

    return router
