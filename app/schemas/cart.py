from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ProductDetails(BaseModel):
    name: str = ""
    price: float = 0.0
    image: str = ""
    category: Optional[str] = None
    isActive: bool = True
    hasEgg: bool = False
    variantIndex: int = 0
    variants: List[Dict[str, Any]] = Field(default_factory=list)
    selectedVariant: Optional[Dict[str, Any]] = None
    variantLabel: str = ""


class CartItemOut(BaseModel):
    productId: str
    quantity: int
    productDetails: ProductDetails
    addedAt: str
    isAvailable: bool = True


class ExpiredItemOut(BaseModel):
    productId: str
    quantity: int
    name: str = ""
    addedAt: Optional[str] = None


class CartOut(BaseModel):
    id: Optional[int] = Field(None, serialization_alias="_id")
    userId: str
    items: List[CartItemOut] = Field(default_factory=list)
    cartTotal: float = 0.0
    cartCount: int = 0
    lastUpdated: Optional[str] = None
    expiredRemovedItems: List[ExpiredItemOut] = Field(default_factory=list)
    cartExpirySeconds: int


class AddToCartIn(BaseModel):
    productId: Optional[str] = None
    quantity: int = 1
    variantIndex: int = 0


class UpdateCartItemIn(BaseModel):
    quantity: int


class CartCountOut(BaseModel):
    count: int
