"""
Catalog — コマンドハンドラ (CQRS Write 側)

在庫の引き当て(Reserve)と戻し(Restore)を処理する。
どちらも DB 上の 1 文の UPDATE で原子的に行う。
プロセス内ロックには頼らない(複数ワーカーから同じ商品を更新しうるため)。

reserve_stock / restore_stock はコミットしない。
呼び出し側のトランザクション(作業単位)に参加する。
"""

import logging
from datetime import datetime, timezone
from uuid import uuid4

import redis.asyncio as aioredis
from sqlalchemy import insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import products
from ..errors import InsufficientStock
from ..publisher import CATALOG_CHANNEL, publish_events
from .events import ProductCreated
from .models import CreateProductRequest

logger = logging.getLogger(__name__)


async def create_product(
    session: AsyncSession,
    redis: aioredis.Redis | None,
    req: CreateProductRequest,
) -> str:
    """商品登録コマンド"""
    product_id = str(uuid4())
    now = datetime.now(timezone.utc)
    await session.execute(
        insert(products).values(
            id=product_id,
            name=req.name,
            category=req.category.value,
            price=req.price,
            stock=req.stock,
            is_active=req.is_active,
            created_at=now,
            updated_at=now,
        )
    )
    await session.commit()
    logger.info("Product created: %s (%s) stock=%d", product_id, req.name, req.stock)

    event = ProductCreated(
        product_id=product_id,
        name=req.name,
        price=req.price,
        stock=req.stock,
        timestamp=now,
    )
    await publish_events(
        redis, CATALOG_CHANNEL, [("ProductCreated", event.model_dump(mode="json"))]
    )
    return product_id


async def reserve_stock(session: AsyncSession, product_id: str, quantity: int) -> None:
    """
    在庫引き当て

    stock >= quantity の場合だけ減算する条件付き UPDATE。
    更新行が 0 なら在庫不足(または商品が消えた・非公開になった)。
    """
    result = await session.execute(
        update(products)
        .where(
            products.c.id == product_id,
            products.c.is_active.is_(True),
            products.c.stock >= quantity,
        )
        .values(
            stock=products.c.stock - quantity,
            updated_at=datetime.now(timezone.utc),
        )
    )
    if result.rowcount == 1:
        return

    row = (
        await session.execute(
            select(products.c.stock, products.c.is_active).where(
                products.c.id == product_id
            )
        )
    ).fetchone()
    available = row.stock if row and row.is_active else 0
    raise InsufficientStock(product_id, quantity, available)


async def restore_stock(session: AsyncSession, product_id: str, quantity: int) -> bool:
    """
    在庫戻し(キャンセル時の補償)

    非公開の商品にも戻す。商品自体が存在しない場合は何もせず False を返す。
    """
    result = await session.execute(
        update(products)
        .where(products.c.id == product_id)
        .values(
            stock=products.c.stock + quantity,
            updated_at=datetime.now(timezone.utc),
        )
    )
    if result.rowcount == 0:
        logger.warning(
            "Cannot restore %d unit(s) of stock: product %s no longer exists",
            quantity,
            product_id,
        )
        return False
    return True
