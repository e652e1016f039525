"""
Order Service — 注文集約 (Order Aggregate)

Event Sourcing では集約の状態を直接保存しない。
イベントをリプレイして現在の状態を復元する。

apply_xxx メソッド: 各イベントを適用して状態を変更する
"""

from datetime import datetime
from decimal import Decimal

from .events import OrderItem, OrderPlaced, OrderStatusChanged
from .models import (
    Address,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    ShippingMethod,
)

# 状態遷移表: 現在のステータス → 遷移できるステータス
ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset(
        {OrderStatus.CONFIRMED, OrderStatus.PROCESSING, OrderStatus.CANCELLED}
    ),
    OrderStatus.CONFIRMED: frozenset(
        {OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.CANCELLED}
    ),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED, OrderStatus.RETURNED}),
    OrderStatus.DELIVERED: frozenset({OrderStatus.RETURNED}),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.RETURNED: frozenset(),
}

CANCELLABLE_STATUSES = frozenset(
    {OrderStatus.PENDING, OrderStatus.CONFIRMED, OrderStatus.PROCESSING}
)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class OrderAggregate:
    """
    注文集約 — イベントから現在の状態を再構築する。

    状態遷移は ALLOWED_TRANSITIONS に従う。
    cancelled / returned は終端で、そこから先へは進めない。
    ステータス履歴は追記のみで、過去のエントリは書き換えない。
    """

    def __init__(self) -> None:
        self.id: str | None = None
        self.order_number: str = ""
        self.customer_id: str = ""
        self.customer_email: str = ""
        self.items: tuple[OrderItem, ...] = ()
        self.subtotal = Decimal("0")
        self.tax = Decimal("0")
        self.shipping_cost = Decimal("0")
        self.discount_amount = Decimal("0")
        self.total = Decimal("0")
        self.shipping_address: Address | None = None
        self.billing_address: Address | None = None
        self.payment_method: PaymentMethod | None = None
        self.payment_status = PaymentStatus.PENDING
        self.shipping_method = ShippingMethod.STANDARD
        self.customer_note: str | None = None
        self.is_gift = False
        self.gift_message: str | None = None
        self.status: OrderStatus | None = None
        self.tracking_number: str | None = None
        self.carrier: str | None = None
        self.estimated_delivery: datetime | None = None
        self.delivered_at: datetime | None = None
        self.created_at: datetime | None = None
        self.updated_at: datetime | None = None
        self.version: int = 0
        self._history: list[dict] = []

    @property
    def status_history(self) -> list[dict]:
        """履歴のコピーを返す。呼び出し側が書き換えても集約には影響しない。"""
        return [dict(entry) for entry in self._history]

    def can_be_cancelled(self) -> bool:
        return self.status in CANCELLABLE_STATUSES

    def can_transition_to(self, new_status: OrderStatus) -> bool:
        if self.status is None:
            return False
        return new_status in ALLOWED_TRANSITIONS[self.status]

    # ── イベント適用メソッド ──────────────────────────

    def apply_order_placed(self, data: dict) -> None:
        event = OrderPlaced.model_validate(data)
        self.id = event.order_id
        self.order_number = event.order_number
        self.customer_id = event.customer_id
        self.customer_email = event.customer_email
        self.items = tuple(event.items)
        self.subtotal = event.subtotal
        self.tax = event.tax
        self.shipping_cost = event.shipping_cost
        self.discount_amount = event.discount_amount
        self.total = event.total
        self.shipping_address = event.shipping_address
        self.billing_address = event.billing_address
        self.payment_method = event.payment_method
        self.payment_status = event.payment_status
        self.shipping_method = event.shipping_method
        self.customer_note = event.customer_note
        self.is_gift = event.is_gift
        self.gift_message = event.gift_message
        self.estimated_delivery = event.estimated_delivery
        self.created_at = event.timestamp
        self.updated_at = event.timestamp
        self.status = OrderStatus.PENDING
        self._history.append(
            {
                "status": OrderStatus.PENDING.value,
                "timestamp": event.timestamp,
                "note": event.note,
                "updated_by": None,
            }
        )

    def apply_order_status_changed(self, data: dict) -> None:
        event = OrderStatusChanged.model_validate(data)
        self.status = event.status
        if event.tracking_number:
            self.tracking_number = event.tracking_number
        if event.carrier:
            self.carrier = event.carrier
        if event.status == OrderStatus.DELIVERED:
            self.delivered_at = event.timestamp
        self.updated_at = event.timestamp
        self._history.append(
            {
                "status": event.status.value,
                "timestamp": event.timestamp,
                "note": event.note,
                "updated_by": event.updated_by,
            }
        )

    # ── イベントリプレイ ─────────────────────────────

    def apply_event(self, event_type: str, event_data: dict) -> None:
        """イベントタイプに応じた apply メソッドを呼び出す。"""
        handler = {
            "OrderPlaced": self.apply_order_placed,
            "OrderStatusChanged": self.apply_order_status_changed,
        }.get(event_type)
        if handler:
            handler(event_data)

    @classmethod
    def from_events(cls, events: list[dict]) -> "OrderAggregate":
        """イベント列から集約を再構築する。"""
        agg = cls()
        for e in events:
            agg.apply_event(e["event_type"], e["event_data"])
            agg.version = e["version"]
        return agg

    # ── 表現 ─────────────────────────────────────────

    def summary(self) -> dict:
        return {
            "order_id": self.id,
            "order_number": self.order_number,
            "total": float(self.total),
            "status": self.status.value if self.status else None,
            "estimated_delivery": _iso(self.estimated_delivery),
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_number": self.order_number,
            "customer_id": self.customer_id,
            "customer_email": self.customer_email,
            "items": [
                {
                    "product_id": item.product_id,
                    "name": item.name,
                    "unit_price": float(item.unit_price),
                    "quantity": item.quantity,
                }
                for item in self.items
            ],
            "subtotal": float(self.subtotal),
            "tax": float(self.tax),
            "shipping_cost": float(self.shipping_cost),
            "discount_amount": float(self.discount_amount),
            "total": float(self.total),
            "shipping_address": self.shipping_address.model_dump()
            if self.shipping_address
            else None,
            "billing_address": self.billing_address.model_dump()
            if self.billing_address
            else None,
            "payment_method": self.payment_method.value if self.payment_method else None,
            "payment_status": self.payment_status.value,
            "shipping_method": self.shipping_method.value,
            "customer_note": self.customer_note,
            "is_gift": self.is_gift,
            "gift_message": self.gift_message,
            "status": self.status.value if self.status else None,
            "status_history": self._history_dicts(),
            "tracking_number": self.tracking_number,
            "carrier": self.carrier,
            "estimated_delivery": _iso(self.estimated_delivery),
            "delivered_at": _iso(self.delivered_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "version": self.version,
        }

    def to_tracking(self) -> dict:
        """公開用の追跡情報。住所は市区町村と州だけに絞る。"""
        address = self.shipping_address
        return {
            "order_number": self.order_number,
            "status": self.status.value if self.status else None,
            "status_history": self._history_dicts(),
            "tracking_number": self.tracking_number,
            "carrier": self.carrier,
            "estimated_delivery": _iso(self.estimated_delivery),
            "shipping_address": {
                "city": address.city if address else None,
                "state": address.state if address else None,
            },
        }

    def _history_dicts(self) -> list[dict]:
        return [
            {**entry, "timestamp": _iso(entry["timestamp"])} for entry in self._history
        ]
