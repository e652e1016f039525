"""
Order Service — クエリハンドラ (CQRS の Read 側)

一覧系はリードモデル(orders テーブル)から返す。
明細・ステータス履歴を含む注文の全体像はイベントをリプレイして組み立てる。
"""

from math import ceil

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import orders
from . import event_store
from .aggregate import OrderAggregate
from .models import OrderStatus


def _row_to_dict(row) -> dict:
    return {
        "id": row.id,
        "order_number": row.order_number,
        "customer_id": row.customer_id,
        "customer_email": row.customer_email,
        "status": row.status,
        "payment_method": row.payment_method,
        "payment_status": row.payment_status,
        "shipping_method": row.shipping_method,
        "item_count": row.item_count,
        "total": float(row.total),
        "tracking_number": row.tracking_number,
        "carrier": row.carrier,
        "created_at": row.created_at.isoformat() if row.created_at else None,
        "updated_at": row.updated_at.isoformat() if row.updated_at else None,
    }


async def load_order(session: AsyncSession, order_id: str) -> OrderAggregate | None:
    """イベントから注文集約を再構築する。イベントが無ければ None。"""
    events = await event_store.load_events(session, order_id)
    if not events:
        return None
    return OrderAggregate.from_events(events)


async def get_order(session: AsyncSession, order_id: str) -> dict | None:
    agg = await load_order(session, order_id)
    return agg.to_dict() if agg else None


async def _find_order_id(session: AsyncSession, order_number: str) -> str | None:
    result = await session.execute(
        select(orders.c.id).where(orders.c.order_number == order_number)
    )
    return result.scalar_one_or_none()


async def order_number_exists(session: AsyncSession, order_number: str) -> bool:
    return await _find_order_id(session, order_number) is not None


async def get_order_by_number(session: AsyncSession, order_number: str) -> dict | None:
    order_id = await _find_order_id(session, order_number)
    if order_id is None:
        return None
    return await get_order(session, order_id)


async def track_order(session: AsyncSession, order_number: str) -> dict | None:
    """注文番号で追跡情報を返す(公開 API 用、個人情報は最小限)。"""
    order_id = await _find_order_id(session, order_number)
    if order_id is None:
        return None
    agg = await load_order(session, order_id)
    return agg.to_tracking() if agg else None


async def list_orders(
    session: AsyncSession,
    status: OrderStatus | None = None,
    page: int = 1,
    limit: int = 20,
) -> dict:
    """管理画面向けの注文一覧(新しい順、ページング付き)。"""
    query = select(orders)
    count_query = select(func.count()).select_from(orders)
    if status is not None:
        query = query.where(orders.c.status == status.value)
        count_query = count_query.where(orders.c.status == status.value)

    result = await session.execute(
        query.order_by(orders.c.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    rows = [_row_to_dict(row) for row in result.fetchall()]
    total = (await session.execute(count_query)).scalar_one()
    return {
        "count": len(rows),
        "total": total,
        "pages": ceil(total / limit) if limit else 0,
        "current_page": page,
        "orders": rows,
    }


async def list_customer_orders(session: AsyncSession, customer_id: str) -> list[dict]:
    result = await session.execute(
        select(orders)
        .where(orders.c.customer_id == customer_id)
        .order_by(orders.c.created_at.desc())
    )
    return [_row_to_dict(row) for row in result.fetchall()]
