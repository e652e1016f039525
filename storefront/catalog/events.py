"""
Catalog — イベント定義

在庫ドメインで発生するイベント。
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel


class ProductCreated(BaseModel):
    """商品が登録された"""
    product_id: str
    name: str
    price: Decimal
    stock: int
    timestamp: datetime


class StockReserved(BaseModel):
    """在庫が引き当てられた"""
    product_id: str
    order_id: str
    quantity: int
    timestamp: datetime


class StockRestored(BaseModel):
    """在庫が戻された(キャンセル時の補償)"""
    product_id: str
    order_id: str
    quantity: int
    timestamp: datetime
