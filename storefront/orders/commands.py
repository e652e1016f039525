"""
Order Service — コマンドハンドラ (CQRS の Write 側)

注文作成後の状態変更はすべてここを通る。
コマンドはイベントを生成してストアに追記し、
同じトランザクションでリードモデルも更新する。
コミット後に Redis Pub/Sub でイベントを発行する。
"""

import logging
from datetime import datetime, timezone

import redis.asyncio as aioredis
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from ..catalog import commands as catalog_commands
from ..catalog.events import StockRestored
from ..db import orders
from ..errors import InvalidStatusTransition, NotCancellable, OrderNotFound
from ..publisher import CATALOG_CHANNEL, ORDER_CHANNEL, publish_events
from . import event_store
from .aggregate import OrderAggregate
from .events import OrderStatusChanged
from .models import OrderStatus

logger = logging.getLogger(__name__)

DEFAULT_CANCEL_REASON = "Cancelled by customer"


async def _load(session: AsyncSession, order_id: str) -> OrderAggregate:
    events = await event_store.load_events(session, order_id)
    if not events:
        raise OrderNotFound(order_id)
    return OrderAggregate.from_events(events)


async def _change_status(
    session: AsyncSession,
    agg: OrderAggregate,
    new_status: OrderStatus,
    note: str | None,
    updated_by: str | None,
    tracking_number: str | None = None,
    carrier: str | None = None,
) -> dict:
    """
    OrderStatusChanged を追記してリードモデルを更新する。コミットはしない。

    expected_version は集約を読んだ時点のバージョン。
    その間に別の書き込みがあればイベントストアの UNIQUE 制約で
    PersistenceConflict になる。
    """
    if not agg.can_transition_to(new_status):
        raise InvalidStatusTransition(agg.status.value, new_status.value)

    now = datetime.now(timezone.utc)
    event_data = OrderStatusChanged(
        order_id=agg.id,
        status=new_status,
        note=note,
        updated_by=updated_by,
        tracking_number=tracking_number,
        carrier=carrier,
        timestamp=now,
    ).model_dump(mode="json")

    version = await event_store.append_event(
        session, agg.id, "Order", "OrderStatusChanged", event_data, agg.version
    )

    values = {"status": new_status.value, "updated_at": now}
    if tracking_number:
        values["tracking_number"] = tracking_number
    if carrier:
        values["carrier"] = carrier
    if new_status == OrderStatus.DELIVERED:
        values["delivered_at"] = now
    await session.execute(update(orders).where(orders.c.id == agg.id).values(**values))

    agg.apply_order_status_changed(event_data)
    agg.version = version
    return event_data


async def update_status(
    session: AsyncSession,
    redis: aioredis.Redis | None,
    order_id: str,
    new_status: OrderStatus,
    note: str | None = None,
    updated_by: str | None = None,
    tracking_number: str | None = None,
    carrier: str | None = None,
) -> OrderAggregate:
    """
    注文ステータス変更コマンド(管理者向け)

    1. イベントから集約を再構築
    2. 遷移表で遷移可否を確認
    3. OrderStatusChanged を追記、リードモデル更新、コミット
    4. Redis Pub/Sub でイベントを発行

    cancelled への変更は在庫戻しが必要なので cancel_order に委ねる。
    """
    if new_status == OrderStatus.CANCELLED:
        return await cancel_order(session, redis, order_id, note, updated_by)

    try:
        agg = await _load(session, order_id)
        previous = agg.status
        event_data = await _change_status(
            session, agg, new_status, note, updated_by, tracking_number, carrier
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info(
        "Order %s status changed: %s -> %s",
        agg.order_number,
        previous.value,
        new_status.value,
    )
    await publish_events(redis, ORDER_CHANNEL, [("OrderStatusChanged", event_data)])
    return agg


async def cancel_order(
    session: AsyncSession,
    redis: aioredis.Redis | None,
    order_id: str,
    reason: str | None = None,
    updated_by: str | None = None,
) -> OrderAggregate:
    """
    注文キャンセルコマンド

    pending / confirmed / processing の注文だけキャンセルできる。
    補償として全明細の在庫を戻してからステータスを cancelled にする。
    在庫戻しとステータス変更は同じトランザクションで確定する。
    """
    restored = []
    try:
        agg = await _load(session, order_id)
        if not agg.can_be_cancelled():
            raise NotCancellable(order_id, agg.status.value)

        now = datetime.now(timezone.utc)
        for item in agg.items:
            if await catalog_commands.restore_stock(
                session, item.product_id, item.quantity
            ):
                restored.append(
                    (
                        "StockRestored",
                        StockRestored(
                            product_id=item.product_id,
                            order_id=order_id,
                            quantity=item.quantity,
                            timestamp=now,
                        ).model_dump(mode="json"),
                    )
                )

        event_data = await _change_status(
            session,
            agg,
            OrderStatus.CANCELLED,
            reason or DEFAULT_CANCEL_REASON,
            updated_by,
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info(
        "Order %s cancelled, restored stock for %d of %d line(s)",
        agg.order_number,
        len(restored),
        len(agg.items),
    )
    await publish_events(redis, CATALOG_CHANNEL, restored)
    await publish_events(redis, ORDER_CHANNEL, [("OrderStatusChanged", event_data)])
    return agg
