"""
Catalog — クエリハンドラ (CQRS Read 側)
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import products


def _to_dict(row) -> dict:
    return {
        "id": row.id,
        "name": row.name,
        "category": row.category,
        "price": row.price,
        "stock": row.stock,
        "is_active": row.is_active,
        "created_at": row.created_at.isoformat() if row.created_at else None,
        "updated_at": row.updated_at.isoformat() if row.updated_at else None,
    }


async def get_product(session: AsyncSession, product_id: str) -> dict | None:
    result = await session.execute(select(products).where(products.c.id == product_id))
    row = result.fetchone()
    if not row:
        return None
    return _to_dict(row)


async def find_active_by_id(session: AsyncSession, product_id: str) -> dict | None:
    """注文可能な商品だけを返す。存在しない・非公開の商品は None。"""
    result = await session.execute(
        select(products).where(
            products.c.id == product_id,
            products.c.is_active.is_(True),
        )
    )
    row = result.fetchone()
    if not row:
        return None
    return _to_dict(row)


async def list_products(session: AsyncSession, include_inactive: bool = False) -> list[dict]:
    query = select(products).order_by(products.c.name)
    if not include_inactive:
        query = query.where(products.c.is_active.is_(True))
    result = await session.execute(query)
    return [_to_dict(row) for row in result.fetchall()]
