"""Stats aggregation over persisted click records.

A ``StatsSnapshot`` is recomputed on every request; nothing is cached.

Flow Diagram — snapshot()
=========================
::
    ┌──────────────────┐
    │ snapshot(id, N)  │
    └────────┬─────────┘
             ▼
    ┌──────────────────┐   SELECT count(*)
    │ total_clicks     │   WHERE link_id = :id
    └────────┬─────────┘
             ▼
    ┌──────────────────┐   SELECT col, count(*), min(id)
    │ breakdowns x4    │   GROUP BY col
    │ browser/os/      │   ORDER BY count DESC, min(id) ASC
    │ device/referrer  │
    └────────┬─────────┘
             ▼
    ┌──────────────────┐   SELECT timestamp
    │ daily series     │   WHERE timestamp >= today - N days
    │ (N + 1 buckets)  │   → bucket by UTC date, zero-fill
    └──────────────────┘

Key Behaviours
===============
- Grouping runs in the database so record volume never has to fit in memory.
- Ties in a breakdown are ordered by the value seen first (lowest record id).
- The referrer breakdown is capped at ``REFERRER_TOP_N``; the others are not.
- The daily series always has ``window_days + 1`` ascending entries, zero days
  included.
"""

import datetime
import logging
from collections import Counter as TallyCounter
from collections.abc import Iterable

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shortlink.config import Settings
from shortlink.models import ClickRecord, as_utc, utcnow
from shortlink.schemas import DailyCount, DimensionCount, StatsSnapshot

__all__ = ["StatsAggregator", "build_daily_series"]

logger = logging.getLogger(__name__)


def build_daily_series(
    timestamps: Iterable[datetime.datetime],
    window_days: int,
    today: datetime.date,
) -> list[DailyCount]:
    if window_days < 0:
        raise ValueError(f"window_days must be non-negative, got {window_days!r}")

    start = today - datetime.timedelta(days=window_days)
    tally: TallyCounter[datetime.date] = TallyCounter()
    for timestamp in timestamps:
        day = as_utc(timestamp).date()
        if start <= day <= today:
            tally[day] += 1

    days = [start + datetime.timedelta(days=offset) for offset in range(window_days + 1)]
    return [DailyCount(date=day, clicks=tally[day]) for day in days]


class StatsAggregator:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession], settings: Settings) -> None:
        self._session_factory = session_factory
        self._referrer_top_n = settings.REFERRER_TOP_N

    async def snapshot(self, link_id: str, window_days: int, today: datetime.date | None = None) -> StatsSnapshot:
        if window_days < 0:
            raise ValueError(f"window_days must be non-negative, got {window_days!r}")
        today = today or utcnow().date()

        async with self._session_factory() as session:
            total = await self._count(session, link_id)
            browsers = await self._breakdown(session, link_id, ClickRecord.browser)
            operating_systems = await self._breakdown(session, link_id, ClickRecord.os)
            devices = await self._breakdown(session, link_id, ClickRecord.device_type)
            referrers = await self._breakdown(session, link_id, ClickRecord.referrer, limit=self._referrer_top_n)
            timestamps = await self._timestamps_since(session, link_id, today - datetime.timedelta(days=window_days))

        logger.debug(f"Computed stats for {link_id}: {total} clicks over {window_days} days")
        return StatsSnapshot(
            link_id=link_id,
            window_days=window_days,
            total_clicks=total,
            browsers=browsers,
            operating_systems=operating_systems,
            devices=devices,
            referrers=referrers,
            daily=build_daily_series(timestamps, window_days, today),
        )

    async def _count(self, session: AsyncSession, link_id: str) -> int:
        result = await session.execute(select(func.count(ClickRecord.id)).where(ClickRecord.link_id == link_id))
        return int(result.scalar_one())

    async def _breakdown(self, session: AsyncSession, link_id: str, column, limit: int | None = None) -> list[DimensionCount]:
        clicks = func.count(ClickRecord.id).label("clicks")
        first_seen = func.min(ClickRecord.id).label("first_seen")
        query = (
            select(column, clicks, first_seen)
            .where(ClickRecord.link_id == link_id)
            .group_by(column)
            .order_by(clicks.desc(), first_seen.asc())
        )
        if limit is not None:
            query = query.limit(limit)
        result = await session.execute(query)
        return [DimensionCount(value=value, clicks=count) for value, count, _ in result.all()]

    async def _timestamps_since(
        self, session: AsyncSession, link_id: str, start_day: datetime.date
    ) -> list[datetime.datetime]:
        window_start = datetime.datetime.combine(start_day, datetime.time.min, tzinfo=datetime.timezone.utc)
        result = await session.execute(
            select(ClickRecord.timestamp).where(
                ClickRecord.link_id == link_id,
                ClickRecord.timestamp >= window_start,
            )
        )
        return list(result.scalars().all())
