"""
Order Placement Workflow component tests.

Runs the real workflow against a throwaway SQLite database and checks
totals, stock reservation, all-or-nothing behaviour and order numbers.
"""
import logging
import re
from decimal import Decimal

import pytest
from sqlalchemy import select, update

from storefront.catalog import commands as catalog_commands
from storefront.db import orders, products
from storefront.errors import (
    EmptyCart,
    InsufficientStock,
    PersistenceConflict,
    ProductNotFound,
)
from storefront.orders import queries
from storefront.orders.models import OrderStatus, ShippingMethod
from storefront.orders.placement import OrderPlacementWorkflow
from tests.factories import make_address, make_order_request

pytestmark = [pytest.mark.component, pytest.mark.asyncio]


async def _order_count(session):
    return (await queries.list_orders(session))["total"]


class TestPlaceOrder:

    async def test_single_line_standard_shipping(self, session, redis, create_product, stock_of):
        p1 = await create_product(name="Widget", price="10.00", stock=5)

        agg = await OrderPlacementWorkflow(session, redis).execute(
            make_order_request([(p1, 2)])
        )

        assert agg.subtotal == Decimal("20.00")
        assert agg.tax == Decimal("1.60")
        assert agg.shipping_cost == Decimal("5.99")
        assert agg.discount_amount == Decimal("0.00")
        assert agg.total == Decimal("27.59")
        assert agg.status == OrderStatus.PENDING
        assert agg.version == 1
        assert re.fullmatch(r"ORD-\d{8}-\d{4}", agg.order_number)
        assert await stock_of(p1) == 3

    async def test_persists_order_and_initial_history(self, session, redis, create_product):
        p1 = await create_product(name="Widget", price="10.00", stock=5)

        agg = await OrderPlacementWorkflow(session, redis).execute(
            make_order_request([(p1, 2)])
        )

        stored = await queries.get_order(session, agg.id)
        assert stored["order_number"] == agg.order_number
        assert stored["total"] == 27.59
        assert stored["items"] == [
            {"product_id": p1, "name": "Widget", "unit_price": 10.0, "quantity": 2}
        ]
        assert len(stored["status_history"]) == 1
        assert stored["status_history"][0]["status"] == "pending"
        assert stored["status_history"][0]["note"] == "Order placed"

        row = (
            await session.execute(select(orders).where(orders.c.id == agg.id))
        ).fetchone()
        assert row.status == "pending"
        assert row.total == Decimal("27.59")
        assert row.item_count == 2

    async def test_free_shipping_when_subtotal_reaches_sixty(self, session, redis, create_product):
        p1 = await create_product(price="30.00", stock=5)

        agg = await OrderPlacementWorkflow(session, redis).execute(
            make_order_request([(p1, 2)])
        )

        assert agg.subtotal == Decimal("60.00")
        assert agg.shipping_cost == Decimal("0.00")
        assert agg.total == agg.subtotal + agg.tax + agg.shipping_cost - agg.discount_amount

    async def test_express_shipping_fee(self, session, redis, create_product):
        p1 = await create_product(price="30.00", stock=5)

        agg = await OrderPlacementWorkflow(session, redis).execute(
            make_order_request([(p1, 2)], shipping_method=ShippingMethod.EXPRESS)
        )

        assert agg.shipping_cost == Decimal("9.99")
        assert agg.estimated_delivery is not None

    async def test_snapshot_is_immune_to_later_price_changes(
        self, session, redis, create_product, session_factory
    ):
        p1 = await create_product(name="Widget", price="10.00", stock=5)
        agg = await OrderPlacementWorkflow(session, redis).execute(
            make_order_request([(p1, 1)])
        )

        async with session_factory() as other:
            await other.execute(
                update(products)
                .where(products.c.id == p1)
                .values(price=Decimal("99.00"), name="Renamed")
            )
            await other.commit()

        stored = await queries.get_order(session, agg.id)
        assert stored["items"][0]["unit_price"] == 10.0
        assert stored["items"][0]["name"] == "Widget"
        assert stored["subtotal"] == 10.0

    async def test_billing_defaults_to_shipping_address(self, session, redis, create_product):
        p1 = await create_product(stock=5)

        agg = await OrderPlacementWorkflow(session, redis).execute(
            make_order_request([(p1, 1)])
        )

        assert agg.billing_address == agg.shipping_address

    async def test_explicit_billing_address_is_kept(self, session, redis, create_product):
        p1 = await create_product(stock=5)
        billing = make_address(city="Chicago")

        agg = await OrderPlacementWorkflow(session, redis).execute(
            make_order_request([(p1, 1)], billing_address=billing)
        )

        assert agg.billing_address.city == "Chicago"
        assert agg.shipping_address.city == "Springfield"

    async def test_gift_message_dropped_unless_gift(self, session, redis, create_product):
        p1 = await create_product(stock=5)

        agg = await OrderPlacementWorkflow(session, redis).execute(
            make_order_request([(p1, 1)], gift_message="Happy birthday")
        )

        assert agg.is_gift is False
        assert agg.gift_message is None

    async def test_publishes_after_commit(self, session, redis, create_product):
        p1 = await create_product(stock=5)
        p2 = await create_product(name="Other", stock=5)

        agg = await OrderPlacementWorkflow(session, redis).execute(
            make_order_request([(p1, 1), (p2, 3)])
        )

        assert redis.event_types("catalog_events") == ["StockReserved", "StockReserved"]
        assert redis.event_types("order_events") == ["OrderPlaced"]
        reserved = [msg["data"] for ch, msg in redis.published if ch == "catalog_events"]
        assert [(r["product_id"], r["quantity"]) for r in reserved] == [(p1, 1), (p2, 3)]
        assert all(r["order_id"] == agg.id for r in reserved)

    async def test_works_without_redis(self, session, create_product):
        p1 = await create_product(stock=5)

        agg = await OrderPlacementWorkflow(session, None).execute(
            make_order_request([(p1, 1)])
        )

        assert agg.status == OrderStatus.PENDING


class TestRejections:

    async def test_empty_cart(self, session, redis):
        with pytest.raises(EmptyCart):
            await OrderPlacementWorkflow(session, redis).execute(make_order_request([]))

        assert await _order_count(session) == 0
        assert redis.published == []

    async def test_insufficient_stock_leaves_everything_untouched(
        self, session, redis, create_product, stock_of
    ):
        p1 = await create_product(price="10.00", stock=1)

        with pytest.raises(InsufficientStock) as exc_info:
            await OrderPlacementWorkflow(session, redis).execute(
                make_order_request([(p1, 2)])
            )

        assert (exc_info.value.product_id, exc_info.value.requested, exc_info.value.available) == (
            p1,
            2,
            1,
        )
        assert await stock_of(p1) == 1
        assert await _order_count(session) == 0
        assert redis.published == []

    async def test_missing_product(self, session, redis):
        with pytest.raises(ProductNotFound) as exc_info:
            await OrderPlacementWorkflow(session, redis).execute(
                make_order_request([("does-not-exist", 1)])
            )
        assert exc_info.value.product_id == "does-not-exist"

    async def test_inactive_product(self, session, redis, create_product):
        p1 = await create_product(is_active=False, stock=5)

        with pytest.raises(ProductNotFound):
            await OrderPlacementWorkflow(session, redis).execute(
                make_order_request([(p1, 1)])
            )

    async def test_failure_on_later_line_reserves_nothing(
        self, session, redis, create_product, stock_of
    ):
        p1 = await create_product(name="A", stock=5)
        p2 = await create_product(name="B", stock=5)
        p3 = await create_product(name="C", stock=1)

        with pytest.raises(InsufficientStock) as exc_info:
            await OrderPlacementWorkflow(session, redis).execute(
                make_order_request([(p1, 2), (p2, 2), (p3, 3)])
            )

        assert exc_info.value.product_id == p3
        assert [await stock_of(p) for p in (p1, p2, p3)] == [5, 5, 1]
        assert await _order_count(session) == 0

    async def test_duplicate_lines_are_checked_against_combined_quantity(
        self, session, redis, create_product, stock_of
    ):
        p1 = await create_product(stock=5)

        with pytest.raises(InsufficientStock) as exc_info:
            await OrderPlacementWorkflow(session, redis).execute(
                make_order_request([(p1, 3), (p1, 3)])
            )

        assert exc_info.value.requested == 6
        assert exc_info.value.available == 5
        assert await stock_of(p1) == 5

    async def test_reservation_lost_to_concurrent_order_rolls_back_earlier_lines(
        self, session, redis, create_product, stock_of, monkeypatch
    ):
        p1 = await create_product(name="A", stock=5)
        p2 = await create_product(name="B", stock=4)
        original = catalog_commands.reserve_stock

        async def reserve_after_competitor(sess, product_id, quantity):
            if product_id == p2:
                # another order drains p2 between validation and reservation
                await sess.execute(
                    update(products).where(products.c.id == p2).values(stock=1)
                )
            await original(sess, product_id, quantity)

        monkeypatch.setattr(catalog_commands, "reserve_stock", reserve_after_competitor)

        with pytest.raises(InsufficientStock) as exc_info:
            await OrderPlacementWorkflow(session, redis).execute(
                make_order_request([(p1, 2), (p2, 3)])
            )

        assert exc_info.value.available == 1
        assert await stock_of(p1) == 5
        assert await _order_count(session) == 0
        assert redis.published == []


class TestOrderNumbers:

    async def test_collision_is_retried_with_a_fresh_number(
        self, session, redis, create_product, caplog
    ):
        p1 = await create_product(stock=5)
        await OrderPlacementWorkflow(
            session, redis, order_number_factory=lambda now: "ORD-20260101-0001"
        ).execute(make_order_request([(p1, 1)]))

        numbers = iter(["ORD-20260101-0001", "ORD-20260101-0002"])
        with caplog.at_level(logging.WARNING, logger="storefront.orders.placement"):
            agg = await OrderPlacementWorkflow(
                session, redis, order_number_factory=lambda now: next(numbers)
            ).execute(make_order_request([(p1, 1)]))

        assert agg.order_number == "ORD-20260101-0002"
        assert "collision" in caplog.text

    async def test_exhausted_retries_raise_conflict_and_release_stock(
        self, session, redis, create_product, stock_of
    ):
        p1 = await create_product(stock=5)
        taken = "ORD-20260101-0001"
        await OrderPlacementWorkflow(
            session, redis, order_number_factory=lambda now: taken
        ).execute(make_order_request([(p1, 1)]))

        with pytest.raises(PersistenceConflict):
            await OrderPlacementWorkflow(
                session,
                redis,
                max_order_number_attempts=3,
                order_number_factory=lambda now: taken,
            ).execute(make_order_request([(p1, 2)]))

        assert await stock_of(p1) == 4
        assert await _order_count(session) == 1
