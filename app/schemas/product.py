from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class VariantIn(BaseModel):
    model_config = ConfigDict(extra="allow")

    quantity: float = 0
    measuringUnit: str = "g"
    # None: the product price applies
    price: Optional[float] = Field(None, ge=0)
    stock: int = Field(0, ge=0)
    isStockActive: bool = False


class ProductIn(BaseModel):
    id: str
    name: str
    image: str = ""
    category: Optional[str] = None
    isActive: bool = True
    hasEgg: bool = False
    price: float = Field(0, ge=0)
    variants: List[VariantIn] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name must not be empty")
        return v


class ProductOut(BaseModel):
    id: str
    name: str
    image: str = ""
    category: Optional[str] = None
    isActive: bool = True
    hasEgg: bool = False
    price: float = 0.0
    variants: List[Dict[str, Any]] = Field(default_factory=list)
