"""
Storefront Order Service — FastAPI エントリーポイント

CQRS パターンに従い、状態を変える操作(注文作成・キャンセル・ステータス変更)と
読み取り(注文詳細・追跡・一覧)を分けて実装している。
注文の状態変更はすべてイベントとして記録される。

ドメイン層は StorefrontError を送出し、ここで
{"success": false, "error": ..., "code": ...} の形に変換する。
"""

import logging
import os
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import create_async_engine

from .catalog import commands as catalog_commands
from .catalog import queries as catalog_queries
from .catalog.models import CreateProductRequest
from .db import create_schema, make_session_factory
from .errors import CatalogProductNotFound, OrderNotFound, StorefrontError
from .orders import commands, event_store, queries
from .orders.models import (
    CancelOrderRequest,
    OrderStatus,
    PlaceOrderRequest,
    UpdateStatusRequest,
)
from .orders.placement import OrderPlacementWorkflow

DATABASE_URL = os.environ["DATABASE_URL"]
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
ORDER_NUMBER_MAX_ATTEMPTS = int(os.environ.get("ORDER_NUMBER_MAX_ATTEMPTS", "5"))

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

engine = create_async_engine(DATABASE_URL, echo=False)
async_session = make_session_factory(engine)
redis_pool: aioredis.Redis | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global redis_pool
    await create_schema(engine)
    redis_pool = aioredis.from_url(REDIS_URL, decode_responses=True)
    yield
    await redis_pool.aclose()
    await engine.dispose()


app = FastAPI(title="Storefront Order Service", lifespan=lifespan)


# ── Error Handlers ───────────────────────────────


@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": str(exc), "code": exc.code},
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "error": "Invalid request",
            "code": "VALIDATION_ERROR",
            "details": [
                {"loc": list(err["loc"]), "msg": err["msg"]} for err in exc.errors()
            ],
        },
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("Unhandled exception in %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal server error",
            "code": "INTERNAL_ERROR",
        },
    )


# ── Order Commands ───────────────────────────────


@app.post("/api/orders", status_code=201)
async def place_order(req: PlaceOrderRequest):
    """注文作成(在庫引き当て + 注文確定)"""
    async with async_session() as session:
        workflow = OrderPlacementWorkflow(
            session,
            redis_pool,
            max_order_number_attempts=ORDER_NUMBER_MAX_ATTEMPTS,
        )
        agg = await workflow.execute(req)
        return {
            "success": True,
            "message": "Order placed successfully",
            "order": agg.summary(),
        }


@app.put("/api/orders/{order_id}/cancel")
async def cancel_order(order_id: str, req: CancelOrderRequest | None = None):
    """注文キャンセル(在庫を戻す補償付き)"""
    req = req or CancelOrderRequest()
    async with async_session() as session:
        agg = await commands.cancel_order(
            session, redis_pool, order_id, req.reason, req.updated_by
        )
        return {
            "success": True,
            "message": "Order cancelled successfully",
            "order": agg.summary(),
        }


@app.put("/api/orders/{order_id}/status")
async def update_order_status(order_id: str, req: UpdateStatusRequest):
    """注文ステータス変更(管理者向け)"""
    async with async_session() as session:
        agg = await commands.update_status(
            session,
            redis_pool,
            order_id,
            req.status,
            note=req.note,
            updated_by=req.updated_by,
            tracking_number=req.tracking_number,
            carrier=req.carrier,
        )
        return {
            "success": True,
            "message": "Order status updated",
            "order": agg.to_dict(),
        }


# ── Order Queries ────────────────────────────────


@app.get("/api/orders/track/{order_number}")
async def track_order(order_number: str):
    """注文追跡(公開)"""
    async with async_session() as session:
        tracking = await queries.track_order(session, order_number)
        if tracking is None:
            raise OrderNotFound(order_number)
        return {"success": True, "tracking": tracking}


@app.get("/api/orders/{order_id}")
async def get_order(order_id: str):
    async with async_session() as session:
        order = await queries.get_order(session, order_id)
        if order is None:
            raise OrderNotFound(order_id)
        return {"success": True, "order": order}


@app.get("/api/orders")
async def list_orders(
    status: OrderStatus | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
):
    """全注文一覧(管理者向け)"""
    async with async_session() as session:
        result = await queries.list_orders(session, status, page, limit)
        return {"success": True, **result}


@app.get("/api/customers/{customer_id}/orders")
async def list_customer_orders(customer_id: str):
    async with async_session() as session:
        rows = await queries.list_customer_orders(session, customer_id)
        return {"success": True, "count": len(rows), "orders": rows}


# ── Catalog ──────────────────────────────────────


@app.get("/api/products")
async def list_products():
    async with async_session() as session:
        rows = await catalog_queries.list_products(session)
        return {"success": True, "count": len(rows), "products": rows}


@app.get("/api/products/{product_id}")
async def get_product(product_id: str):
    async with async_session() as session:
        product = await catalog_queries.get_product(session, product_id)
        if not product:
            raise CatalogProductNotFound(product_id)
        return {"success": True, "product": product}


@app.post("/api/products", status_code=201)
async def create_product(req: CreateProductRequest):
    """商品登録(管理者向け)"""
    async with async_session() as session:
        product_id = await catalog_commands.create_product(session, redis_pool, req)
        product = await catalog_queries.get_product(session, product_id)
        return {
            "success": True,
            "message": "Product created",
            "product": product,
        }


# ── Event Store (デバッグ用) ─────────────────────


@app.get("/events/{aggregate_id}")
async def get_aggregate_events(aggregate_id: str):
    async with async_session() as session:
        return await event_store.load_events_for_display(session, aggregate_id)


@app.get("/health")
async def health():
    return {"status": "ok", "service": "storefront-order-service"}
