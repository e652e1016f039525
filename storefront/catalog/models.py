"""
Catalog — 入力モデル
"""

from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field


class ProductCategory(str, Enum):
    ELECTRONICS = "electronics"
    FASHION = "fashion"
    HOME = "home"
    SPORTS = "sports"
    BOOKS = "books"
    BEAUTY = "beauty"
    TOYS = "toys"
    GROCERY = "grocery"
    OTHER = "other"


class CreateProductRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    price: Decimal = Field(ge=0, max_digits=10, decimal_places=2)
    stock: int = Field(default=0, ge=0)
    category: ProductCategory = ProductCategory.OTHER
    is_active: bool = True
