"""Durable link store and click-record repository over SQLAlchemy asyncio.

Flow Diagram — Store Operations
===============================
::
    ┌─────────────┐      ┌──────────────────────────────┐
    │ get(id)     │ ───▶ │ SELECT * FROM links WHERE id │
    └─────────────┘      └──────────────────────────────┘
    ┌─────────────┐      ┌──────────────────────────────┐
    │ create(link)│ ───▶ │ INSERT (PK violation → 409)  │
    └─────────────┘      └──────────────────────────────┘
    ┌─────────────┐      ┌──────────────────────────────┐
    │ increment_  │ ───▶ │ UPDATE links SET click_count │
    │ clicks(id)  │      │   = click_count + 1          │
    └─────────────┘      └──────────────────────────────┘
    ┌─────────────┐      ┌──────────────────────────────┐
    │ delete(id)  │ ───▶ │ DELETE FROM links WHERE id   │
    └─────────────┘      └──────────────────────────────┘

How to Use
===========
**Step 1 — Build from a session factory**::
    store = LinkStore(session_factory)

**Step 2 — Read and count**::
    link = await store.get("abc123")
    await store.increment_clicks("abc123")

Key Behaviours
===============
- Every call opens and closes its own session; the store holds no per-request state.
- The click counter is a single atomic UPDATE, never read-modify-write, so
  concurrent redirects never lose counts.
- Duplicate ids surface as ``Conflict``; every other database failure surfaces
  as ``StoreUnavailable``.
"""

import logging

from prometheus_client import Counter
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shortlink.errors import Conflict, StoreUnavailable
from shortlink.models import ClickRecord, Link, utcnow
from shortlink.schemas import ClickEvent

__all__ = ["LinkStore", "ClickRecordRepository"]

logger = logging.getLogger(__name__)

STORE_READS_TOTAL = Counter(
    "shortlink_store_reads_total",
    "Link store read operations",
)
STORE_WRITES_TOTAL = Counter(
    "shortlink_store_writes_total",
    "Link store write operations",
    ["operation"],
)


class LinkStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, link_id: str) -> Link | None:
        try:
            async with self._session_factory() as session:
                result = await session.execute(select(Link).where(Link.id == link_id))
                STORE_READS_TOTAL.inc()
                return result.scalar_one_or_none()
        except SQLAlchemyError as exc:
            logger.error(f"Store read failed for {link_id}: {exc}")
            raise StoreUnavailable() from exc

    async def create(self, link: Link) -> Link:
        try:
            async with self._session_factory() as session:
                session.add(link)
                try:
                    await session.commit()
                except IntegrityError as exc:
                    await session.rollback()
                    raise Conflict(f"Link id '{link.id}' is already taken") from exc
                await session.refresh(link)
                STORE_WRITES_TOTAL.labels(operation="create").inc()
                return link
        except SQLAlchemyError as exc:
            logger.error(f"Store create failed for {link.id}: {exc}")
            raise StoreUnavailable() from exc

    async def increment_clicks(self, link_id: str, amount: int = 1) -> bool:
        """Atomically add ``amount`` clicks; returns False when the link no longer exists."""
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    update(Link)
                    .where(Link.id == link_id)
                    .values(click_count=Link.click_count + amount, last_accessed_at=utcnow())
                )
                await session.commit()
                STORE_WRITES_TOTAL.labels(operation="increment").inc()
                return result.rowcount > 0
        except SQLAlchemyError as exc:
            logger.error(f"Click increment failed for {link_id}: {exc}")
            raise StoreUnavailable() from exc

    async def delete(self, link_id: str) -> bool:
        try:
            async with self._session_factory() as session:
                result = await session.execute(delete(Link).where(Link.id == link_id))
                await session.commit()
                STORE_WRITES_TOTAL.labels(operation="delete").inc()
                return result.rowcount > 0
        except SQLAlchemyError as exc:
            logger.error(f"Store delete failed for {link_id}: {exc}")
            raise StoreUnavailable() from exc

    async def list_by_owner(self, owner_id: str, limit: int = 100) -> list[Link]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(Link)
                    .where(Link.owner_id == owner_id)
                    .order_by(Link.created_at.desc())
                    .limit(limit)
                )
                STORE_READS_TOTAL.inc()
                return list(result.scalars().all())
        except SQLAlchemyError as exc:
            logger.error(f"Store listing failed for owner {owner_id}: {exc}")
            raise StoreUnavailable() from exc


class ClickRecordRepository:
    """Append-only persistence for consumed click events."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def add(self, event: ClickEvent) -> ClickRecord:
        record = ClickRecord(
            link_id=event.link_id,
            timestamp=event.timestamp,
            client_ip=event.client_ip,
            user_agent=event.user_agent,
            browser=event.browser,
            os=event.os,
            device_type=event.device_type,
            referrer=event.referrer,
        )
        async with self._session_factory() as session:
            session.add(record)
            await session.commit()
        return record
