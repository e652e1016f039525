"""
Order Service — イベント定義

Event Sourcing では、ドメインで発生した事実(イベント)を定義する。
イベントは過去形で命名し、不変(immutable)として扱う。
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict

from .models import Address, OrderStatus, PaymentMethod, PaymentStatus, ShippingMethod


class OrderItem(BaseModel):
    """注文時点の商品スナップショット。以後カタログが変わっても書き換えない。"""

    model_config = ConfigDict(frozen=True)

    product_id: str
    name: str
    unit_price: Decimal
    quantity: int


class OrderPlaced(BaseModel):
    """注文が作成された"""

    order_id: str
    order_number: str
    customer_id: str
    customer_email: str
    items: list[OrderItem]
    subtotal: Decimal
    tax: Decimal
    shipping_cost: Decimal
    discount_amount: Decimal
    total: Decimal
    shipping_address: Address
    billing_address: Address
    payment_method: PaymentMethod
    payment_status: PaymentStatus = PaymentStatus.PENDING
    shipping_method: ShippingMethod
    customer_note: str | None = None
    is_gift: bool = False
    gift_message: str | None = None
    estimated_delivery: datetime | None = None
    note: str = "Order placed"
    timestamp: datetime


class OrderStatusChanged(BaseModel):
    """注文ステータスが変更された(キャンセルも含む)"""

    order_id: str
    status: OrderStatus
    note: str | None = None
    updated_by: str | None = None
    tracking_number: str | None = None
    carrier: str | None = None
    timestamp: datetime
