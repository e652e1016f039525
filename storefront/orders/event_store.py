"""
Order Service — イベントストア

Event Sourcing の中核コンポーネント。
イベントを DB に追記し、集約の再構築に使う。
バージョン番号による楽観的ロックで同時書き込みを防ぐ。
"""

from datetime import datetime, timezone

from sqlalchemy import insert, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import event_store
from ..errors import PersistenceConflict


async def append_event(
    session: AsyncSession,
    aggregate_id: str,
    aggregate_type: str,
    event_type: str,
    event_data: dict,
    expected_version: int,
) -> int:
    """
    イベントをストアに追記する。

    expected_version で楽観的ロックを実現:
    同じ aggregate_id + version の組み合わせが既に存在すると
    UNIQUE 制約違反で失敗する → 競合を検知できる。
    """
    new_version = expected_version + 1
    try:
        await session.execute(
            insert(event_store).values(
                aggregate_id=aggregate_id,
                aggregate_type=aggregate_type,
                event_type=event_type,
                event_data=event_data,
                version=new_version,
                created_at=datetime.now(timezone.utc),
            )
        )
    except IntegrityError as e:
        raise PersistenceConflict(
            f"Concurrent update on {aggregate_type} {aggregate_id} "
            f"(version {new_version})"
        ) from e
    return new_version


async def load_events(
    session: AsyncSession,
    aggregate_id: str,
) -> list[dict]:
    """
    指定した集約の全イベントをバージョン順に読み出す。
    集約を再構築（リプレイ）するために使う。
    """
    result = await session.execute(
        select(
            event_store.c.event_type,
            event_store.c.event_data,
            event_store.c.version,
            event_store.c.created_at,
        )
        .where(event_store.c.aggregate_id == aggregate_id)
        .order_by(event_store.c.version.asc())
    )
    return [
        {
            "event_type": row.event_type,
            "event_data": row.event_data,
            "version": row.version,
            "created_at": row.created_at,
        }
        for row in result.fetchall()
    ]


async def load_events_for_display(
    session: AsyncSession,
    aggregate_id: str,
) -> list[dict]:
    """デバッグ用に JSON へそのまま出せる形で返す。"""
    return [
        {
            **e,
            "aggregate_id": aggregate_id,
            "created_at": e["created_at"].isoformat() if e["created_at"] else None,
        }
        for e in await load_events(session, aggregate_id)
    ]
