"""
Order Service — 注文確定ワークフロー

カートの内容から注文を 1 件作成する。

  ┌──────────────────────────────────────────────────────────┐
  │  1. カートが空なら EmptyCart                              │
  │  2. 全明細を検証 (商品の有無・公開状態・在庫) ※まだ書かない │
  │  3. 全明細の在庫を引き当て (同一トランザクション)          │
  │  4. 金額計算 (小計・送料・税・合計)                       │
  │  5. 注文番号の採番 (衝突時は再採番)                       │
  │  6. OrderPlaced イベント + リードモデルを書いてコミット     │
  │  7. コミット後に Redis へイベント発行                      │
  └──────────────────────────────────────────────────────────┘

途中のどこで失敗してもロールバックするので、
在庫だけ減って注文が無い、という状態は残らない。
"""

import logging
import random
from collections.abc import Callable
from datetime import datetime, timezone
from uuid import uuid4

import redis.asyncio as aioredis
from sqlalchemy import insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..catalog import commands as catalog_commands
from ..catalog import queries as catalog_queries
from ..catalog.events import StockReserved
from ..db import orders
from ..errors import (
    EmptyCart,
    InsufficientStock,
    PersistenceConflict,
    ProductNotFound,
    StorefrontError,
)
from ..publisher import CATALOG_CHANNEL, ORDER_CHANNEL, publish_events
from . import event_store, pricing
from . import queries as order_queries
from .aggregate import OrderAggregate
from .events import OrderItem, OrderPlaced
from .models import CartLine, OrderStatus, PaymentStatus, PlaceOrderRequest

logger = logging.getLogger(__name__)

ORDER_NUMBER_MAX_ATTEMPTS = 5


def generate_order_number(now: datetime | None = None) -> str:
    """ORD-YYYYMMDD-NNNN 形式の注文番号 (NNNN は 0 埋め 4 桁の乱数)"""
    now = now or datetime.now(timezone.utc)
    return f"ORD-{now:%Y%m%d}-{random.randint(0, 9999):04d}"


class OrderPlacementWorkflow:
    """注文確定ワークフロー。1 リクエスト = 1 インスタンスで使う。"""

    def __init__(
        self,
        session: AsyncSession,
        redis: aioredis.Redis | None,
        max_order_number_attempts: int = ORDER_NUMBER_MAX_ATTEMPTS,
        order_number_factory: Callable[[datetime], str] = generate_order_number,
    ):
        self.session = session
        self.redis = redis
        self.max_order_number_attempts = max_order_number_attempts
        self.order_number_factory = order_number_factory

    async def execute(self, req: PlaceOrderRequest) -> OrderAggregate:
        try:
            agg, reserved, placed = await self._place(req)
        except StorefrontError as e:
            await self.session.rollback()
            logger.warning("Order rejected for customer %s: %s", req.customer_id, e)
            raise
        except Exception:
            await self.session.rollback()
            logger.exception("Order placement failed for customer %s", req.customer_id)
            raise

        await publish_events(self.redis, CATALOG_CHANNEL, reserved)
        await publish_events(
            self.redis, ORDER_CHANNEL, [("OrderPlaced", placed)]
        )
        return agg

    async def _place(self, req: PlaceOrderRequest) -> tuple[OrderAggregate, list, dict]:
        if not req.items:
            raise EmptyCart()

        # ── Step 1: 検証とスナップショット (在庫はまだ減らさない) ──
        items = await self._validate_lines(req.items)

        # ── Step 2: 在庫引き当て ──────────────────────
        order_id = str(uuid4())
        now = datetime.now(timezone.utc)
        reserved = []
        for item in items:
            await catalog_commands.reserve_stock(
                self.session, item.product_id, item.quantity
            )
            reserved.append(
                (
                    "StockReserved",
                    StockReserved(
                        product_id=item.product_id,
                        order_id=order_id,
                        quantity=item.quantity,
                        timestamp=now,
                    ).model_dump(mode="json"),
                )
            )

        # ── Step 3: 金額計算 ──────────────────────────
        totals = pricing.compute_totals(
            [item.model_dump() for item in items], req.shipping_method
        )

        # ── Step 4: 採番と永続化 ──────────────────────
        order_number = await self._allocate_order_number(now)
        event = OrderPlaced(
            order_id=order_id,
            order_number=order_number,
            customer_id=req.customer_id,
            customer_email=req.customer_email,
            items=items,
            shipping_address=req.shipping_address,
            billing_address=req.billing_address or req.shipping_address,
            payment_method=req.payment_method,
            payment_status=PaymentStatus.PENDING,
            shipping_method=req.shipping_method,
            customer_note=req.customer_note,
            is_gift=req.is_gift,
            gift_message=req.gift_message if req.is_gift else None,
            estimated_delivery=pricing.estimate_delivery(req.shipping_method, now),
            timestamp=now,
            **totals,
        )
        event_data = event.model_dump(mode="json")

        version = await event_store.append_event(
            self.session, order_id, "Order", "OrderPlaced", event_data, 0
        )
        try:
            await self.session.execute(
                insert(orders).values(
                    id=order_id,
                    order_number=order_number,
                    customer_id=req.customer_id,
                    customer_email=req.customer_email,
                    status=OrderStatus.PENDING.value,
                    payment_method=req.payment_method.value,
                    payment_status=PaymentStatus.PENDING.value,
                    shipping_method=req.shipping_method.value,
                    item_count=sum(item.quantity for item in items),
                    shipping_city=req.shipping_address.city,
                    shipping_state=req.shipping_address.state,
                    estimated_delivery=event.estimated_delivery,
                    created_at=now,
                    updated_at=now,
                    **totals,
                )
            )
        except IntegrityError as e:
            raise PersistenceConflict(
                f"Order number {order_number} is already taken"
            ) from e
        await self.session.commit()

        logger.info(
            "Order placed: %s (%s) customer=%s total=%s",
            order_number,
            order_id,
            req.customer_id,
            totals["total"],
        )

        agg = OrderAggregate()
        agg.apply_order_placed(event_data)
        agg.version = version
        return agg, reserved, event_data

    async def _validate_lines(self, lines: list[CartLine]) -> list[OrderItem]:
        """
        全明細を入力順に検証し、スナップショットを作る。

        同じ商品が複数行にある場合は合計数量で在庫を判定する。
        """
        requested: dict[str, int] = {}
        items = []
        for line in lines:
            product = await catalog_queries.find_active_by_id(
                self.session, line.product_id
            )
            if product is None:
                raise ProductNotFound(line.product_id)

            requested[line.product_id] = requested.get(line.product_id, 0) + line.quantity
            if product["stock"] < requested[line.product_id]:
                raise InsufficientStock(
                    line.product_id, requested[line.product_id], product["stock"]
                )

            items.append(
                OrderItem(
                    product_id=product["id"],
                    name=product["name"],
                    unit_price=product["price"],
                    quantity=line.quantity,
                )
            )
        return items

    async def _allocate_order_number(self, now: datetime) -> str:
        for attempt in range(1, self.max_order_number_attempts + 1):
            order_number = self.order_number_factory(now)
            if not await order_queries.order_number_exists(self.session, order_number):
                return order_number
            logger.warning(
                "Order number collision: %s (attempt %d/%d)",
                order_number,
                attempt,
                self.max_order_number_attempts,
            )
        raise PersistenceConflict(
            "Could not allocate a unique order number after "
            f"{self.max_order_number_attempts} attempts"
        )
