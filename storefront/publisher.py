"""
Storefront — Redis Pub/Sub でのイベント発行

コミット済みのイベントだけを発行する。
発行に失敗しても DB 側はすでに確定しているので、
リクエストは失敗させずにログだけ残す。

注意: Redis Pub/Sub は fire-and-forget 方式。
購読側がダウンしている間のイベントは失われる。
"""

import json
import logging

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

ORDER_CHANNEL = "order_events"
CATALOG_CHANNEL = "catalog_events"


async def publish_events(
    redis: aioredis.Redis | None,
    channel: str,
    events: list[tuple[str, dict]],
) -> None:
    """(event_type, data) の列を順番に発行する。"""
    if redis is None:
        logger.debug("Redis not connected, skipping %d event(s)", len(events))
        return
    for event_type, data in events:
        try:
            await redis.publish(
                channel,
                json.dumps({"event_type": event_type, "data": data}, default=str),
            )
        except Exception:
            logger.exception("Failed to publish %s on %s", event_type, channel)
