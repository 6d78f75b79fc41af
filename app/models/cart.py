from __future__ import annotations

from sqlalchemy import (
    JSON, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint, func,
)
from sqlalchemy.orm import relationship

from app.models.base import Base


class CartRow(Base):
    __tablename__ = "carts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(255), nullable=False, unique=True, index=True)
    # optimistic lock: UPDATE ... WHERE version = :seen, StaleDataError otherwise
    version = Column(Integer, nullable=False)
    last_updated = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    items = relationship(
        "CartItemRow",
        back_populates="cart",
        order_by="CartItemRow.position",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}


class CartItemRow(Base):
    __tablename__ = "cart_items"
    __table_args__ = (UniqueConstraint("cart_id", "product_id", name="uq_cart_items_cart_product"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    cart_id = Column(Integer, ForeignKey("carts.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(String(64), nullable=False, index=True)
    quantity = Column(Integer, nullable=False, default=1)
    product_details = Column(JSON, nullable=False, default=dict)
    added_at = Column(DateTime(timezone=True), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)

    cart = relationship("CartRow", back_populates="items")
