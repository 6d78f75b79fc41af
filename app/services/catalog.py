from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy import select

from app.db import Database
from app.models.product import ProductRow


@dataclass
class ProductRecord:
    id: str
    name: str
    image: str = ""
    category: Optional[str] = None
    is_active: bool = True
    has_egg: bool = False
    price: float = 0.0
    variants: List[Dict[str, Any]] = field(default_factory=list)

    def variant(self, index: int) -> Optional[Dict[str, Any]]:
        """
        variants[index] when present, else the first variant, else None.
        """
        if not self.variants:
            return None
        if 0 <= index < len(self.variants):
            return self.variants[index]
        return self.variants[0]

    def resolved_variant_index(self, index: int) -> int:
        if self.variants and 0 <= index < len(self.variants):
            return index
        return 0

    def unit_price(self, index: int) -> float:
        v = self.variant(index)
        if v is not None and v.get("price") is not None:
            return float(v["price"])
        return float(self.price or 0.0)


def variant_tracks_stock(variant: Optional[Dict[str, Any]]) -> bool:
    return bool(variant and variant.get("isStockActive"))


def variant_stock(variant: Optional[Dict[str, Any]]) -> int:
    if not variant:
        return 0
    try:
        return int(variant.get("stock") or 0)
    except (TypeError, ValueError):
        return 0


def variant_label(variant: Optional[Dict[str, Any]]) -> str:
    if not variant:
        return ""
    for key in ("label", "name", "variantLabel"):
        v = variant.get(key)
        if isinstance(v, str) and v.strip():
            return v.strip()
    qty = variant.get("quantity")
    unit = (variant.get("measuringUnit") or "").strip()
    if qty is not None and unit:
        return f"{qty} {unit}"
    return str(qty) if qty is not None else unit


def _record(row: ProductRow) -> ProductRecord:
    return ProductRecord(
        id=row.id,
        name=row.name,
        image=row.image or "",
        category=row.category,
        is_active=bool(row.is_active),
        has_egg=bool(row.has_egg),
        price=float(row.price or 0.0),
        variants=list(row.variants or []),
    )


def get_product(db: Database, product_id: str) -> Optional[ProductRecord]:
    with db.session_scope() as s:
        row = s.get(ProductRow, str(product_id))
        return _record(row) if row is not None else None


def get_products(db: Database, product_ids: List[str]) -> Dict[str, ProductRecord]:
    if not product_ids:
        return {}
    with db.session_scope() as s:
        rows = s.execute(select(ProductRow).where(ProductRow.id.in_(list(product_ids)))).scalars().all()
        return {r.id: _record(r) for r in rows}


def list_products(db: Database, active_only: bool = True) -> List[ProductRecord]:
    with db.session_scope() as s:
        q = select(ProductRow).order_by(ProductRow.name)
        if active_only:
            q = q.where(ProductRow.is_active.is_(True))
        return [_record(r) for r in s.execute(q).scalars().all()]


def upsert_product(db: Database, data: Dict[str, Any]) -> ProductRecord:
    with db.session_scope() as s:
        row = s.get(ProductRow, str(data["id"]))
        if row is None:
            row = ProductRow(id=str(data["id"]))
            s.add(row)
        row.name = data["name"]
        row.image = data.get("image") or ""
        row.category = data.get("category")
        row.is_active = bool(data.get("is_active", True))
        row.has_egg = bool(data.get("has_egg", False))
        row.price = float(data.get("price") or 0.0)
        row.variants = list(data.get("variants") or [])
        s.flush()
        return _record(row)
