from __future__ import annotations

from sqlalchemy import JSON, Boolean, Column, DateTime, Float, String, func

from app.models.base import Base


class ProductRow(Base):
    __tablename__ = "products"

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    image = Column(String(1024), default="")
    category = Column(String(255))
    is_active = Column(Boolean, nullable=False, default=True)
    has_egg = Column(Boolean, nullable=False, default=False)
    price = Column(Float, nullable=False, default=0.0)
    # [{"quantity", "measuringUnit", "price", "stock", "isStockActive", ...}]
    variants = Column(JSON, nullable=False, default=list)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
