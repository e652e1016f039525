"""
Order Service — 金額計算

合計金額は常に注文時スナップショットの明細から再計算する。
クライアントから送られた金額は信用しない(信用するのは数量だけ)。

    total = subtotal + tax + shipping_cost - discount_amount
"""

from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

from .models import ShippingMethod

CENT = Decimal("0.01")

TAX_RATE = Decimal("0.08")
FREE_SHIPPING_THRESHOLD = Decimal("50")
STANDARD_SHIPPING_FEE = Decimal("5.99")
EXPRESS_SHIPPING_FEE = Decimal("9.99")
OVERNIGHT_SHIPPING_FEE = Decimal("19.99")

# 配送方法ごとのお届け予定日数 (店頭受け取りは予定日なし)
DELIVERY_DAYS = {
    ShippingMethod.STANDARD: 5,
    ShippingMethod.EXPRESS: 2,
    ShippingMethod.OVERNIGHT: 1,
}


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def calculate_subtotal(items: list[dict]) -> Decimal:
    subtotal = sum(
        (Decimal(str(item["unit_price"])) * item["quantity"] for item in items),
        Decimal("0"),
    )
    return to_money(subtotal)


def calculate_shipping(shipping_method: ShippingMethod, subtotal: Decimal) -> Decimal:
    if shipping_method == ShippingMethod.EXPRESS:
        return EXPRESS_SHIPPING_FEE
    if shipping_method == ShippingMethod.OVERNIGHT:
        return OVERNIGHT_SHIPPING_FEE
    # standard / pickup
    if subtotal >= FREE_SHIPPING_THRESHOLD:
        return to_money(0)
    return STANDARD_SHIPPING_FEE


def calculate_tax(subtotal: Decimal) -> Decimal:
    return to_money(subtotal * TAX_RATE)


def compute_totals(
    items: list[dict],
    shipping_method: ShippingMethod,
    discount_amount: Decimal = Decimal("0"),
) -> dict:
    """明細と配送方法から金額一式を計算する。"""
    subtotal = calculate_subtotal(items)
    shipping_cost = calculate_shipping(shipping_method, subtotal)
    tax = calculate_tax(subtotal)
    discount_amount = to_money(discount_amount)
    return {
        "subtotal": subtotal,
        "tax": tax,
        "shipping_cost": shipping_cost,
        "discount_amount": discount_amount,
        "total": subtotal + tax + shipping_cost - discount_amount,
    }


def estimate_delivery(
    shipping_method: ShippingMethod, placed_at: datetime
) -> datetime | None:
    days = DELIVERY_DAYS.get(shipping_method)
    if days is None:
        return None
    return placed_at + timedelta(days=days)
