"""
Root conftest.py - shared fixtures for all test layers.

Test Layers:
    - unit/      : pricing, order numbers, aggregate (no I/O)
    - component/ : catalog store, placement workflow, status service
                   against a throwaway SQLite database
    - api/       : HTTP contracts through the ASGI app
"""
import json
import os

# storefront.main reads its settings at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine

from storefront.catalog import commands as catalog_commands
from storefront.catalog.models import CreateProductRequest
from storefront.db import create_schema, make_session_factory


class RecordingRedis:
    """Stands in for redis.asyncio.Redis; records every publish call."""

    def __init__(self):
        self.published = []

    async def publish(self, channel, message):
        self.published.append((channel, json.loads(message)))
        return 1

    def event_types(self, channel=None):
        return [
            msg["event_type"]
            for ch, msg in self.published
            if channel is None or ch == channel
        ]


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'storefront.db'}")
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def redis():
    return RecordingRedis()


@pytest.fixture
def create_product(session_factory):
    """Register a product through the catalog command and return its id."""

    async def _create(name="Widget", price="10.00", stock=5, is_active=True, category="other"):
        async with session_factory() as session:
            return await catalog_commands.create_product(
                session,
                None,
                CreateProductRequest(
                    name=name,
                    price=price,
                    stock=stock,
                    is_active=is_active,
                    category=category,
                ),
            )

    return _create


@pytest.fixture
def stock_of(session_factory):
    """Read a product's current stock with a fresh session."""
    from storefront.catalog import queries as catalog_queries

    async def _stock(product_id):
        async with session_factory() as session:
            product = await catalog_queries.get_product(session, product_id)
            return product["stock"] if product else None

    return _stock
