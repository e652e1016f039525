"""
Storefront — データベーススキーマ

商品カタログ(products)、注文のリードモデル(orders)、
注文イベントストア(event_store)を 1 つの DB に置く。

在庫の不変条件 stock >= 0 は条件付き UPDATE で守るが、
最後の砦として CHECK 制約も付けておく。
"""

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    UniqueConstraint,
)
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession
from sqlalchemy.orm import sessionmaker

metadata = MetaData()

MONEY = Numeric(10, 2)

products = Table(
    "products",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("name", String(200), nullable=False),
    Column("category", String(32), nullable=False, default="other"),
    Column("price", MONEY, nullable=False),
    Column("stock", Integer, nullable=False, default=0),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
    CheckConstraint("price >= 0", name="ck_products_price_non_negative"),
)

# 注文のリードモデル (CQRS の Read 側)
orders = Table(
    "orders",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("order_number", String(32), nullable=False, unique=True),
    Column("customer_id", String(64), nullable=False, index=True),
    Column("customer_email", String(255), nullable=False),
    Column("status", String(16), nullable=False, index=True),
    Column("payment_method", String(16), nullable=False),
    Column("payment_status", String(16), nullable=False),
    Column("shipping_method", String(16), nullable=False),
    Column("item_count", Integer, nullable=False),
    Column("subtotal", MONEY, nullable=False),
    Column("tax", MONEY, nullable=False),
    Column("shipping_cost", MONEY, nullable=False),
    Column("discount_amount", MONEY, nullable=False),
    Column("total", MONEY, nullable=False),
    Column("shipping_city", String(100)),
    Column("shipping_state", String(100)),
    Column("tracking_number", String(64)),
    Column("carrier", String(64)),
    Column("estimated_delivery", DateTime(timezone=True)),
    Column("delivered_at", DateTime(timezone=True)),
    Column("created_at", DateTime(timezone=True), nullable=False, index=True),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

# イベントストア: (aggregate_id, version) の UNIQUE 制約で楽観的ロック
event_store = Table(
    "event_store",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("aggregate_id", String(36), nullable=False, index=True),
    Column("aggregate_type", String(32), nullable=False),
    Column("event_type", String(64), nullable=False),
    Column("event_data", JSON, nullable=False),
    Column("version", Integer, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    UniqueConstraint("aggregate_id", "version", name="uq_event_store_version"),
)


def make_session_factory(engine: AsyncEngine) -> sessionmaker:
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def create_schema(engine: AsyncEngine) -> None:
    """テーブルが無ければ作成する。"""
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)

