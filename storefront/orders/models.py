"""
Order Service — 入力モデルと列挙型

リクエストボディをそのまま永続化しないよう、
許可された値を列挙型で閉じた pydantic モデルで受け取る。
"""

from enum import Enum

from pydantic import BaseModel, Field


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    RETURNED = "returned"


class PaymentMethod(str, Enum):
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    PAYPAL = "paypal"
    COD = "cod"
    BANK_TRANSFER = "bank_transfer"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class ShippingMethod(str, Enum):
    STANDARD = "standard"
    EXPRESS = "express"
    OVERNIGHT = "overnight"
    PICKUP = "pickup"


class Address(BaseModel):
    full_name: str = Field(min_length=1)
    phone: str = Field(min_length=1)
    street: str = Field(min_length=1)
    city: str = Field(min_length=1)
    state: str = Field(min_length=1)
    zip_code: str = Field(min_length=1)
    country: str = "USA"


class CartLine(BaseModel):
    product_id: str = Field(min_length=1)
    quantity: int = Field(ge=1)


class PlaceOrderRequest(BaseModel):
    """注文作成の入力。items が空かどうかはワークフロー側で EmptyCart として扱う。"""

    customer_id: str = Field(min_length=1)
    customer_email: str = Field(min_length=3, pattern=r"^[^@\s]+@[^@\s]+$")
    items: list[CartLine] = Field(default_factory=list)
    shipping_address: Address
    billing_address: Address | None = None
    payment_method: PaymentMethod
    shipping_method: ShippingMethod = ShippingMethod.STANDARD
    customer_note: str | None = Field(default=None, max_length=1000)
    is_gift: bool = False
    gift_message: str | None = Field(default=None, max_length=500)


class UpdateStatusRequest(BaseModel):
    status: OrderStatus
    note: str | None = None
    tracking_number: str | None = None
    carrier: str | None = None
    updated_by: str | None = None


class CancelOrderRequest(BaseModel):
    reason: str | None = None
    updated_by: str | None = None
