"""SQLAlchemy ORM models for the short-link service.

This module defines the database schema for links and persisted click records.

Data Model Layout
=================
::
    links table
    ├─ id (VARCHAR(32) PRIMARY KEY)
    ├─ target_url (TEXT NOT NULL)
    ├─ owner_id (VARCHAR(64), INDEXED, NULL = anonymous)
    ├─ password_hash (VARCHAR(128), NULL = ungated)
    ├─ title / image (TEXT, preview metadata)
    ├─ click_count (INTEGER DEFAULT 0)
    ├─ created_at (TIMESTAMPTZ)
    ├─ expires_at (TIMESTAMPTZ, NULL = never expires)
    └─ last_accessed_at (TIMESTAMPTZ)

    click_events table
    ├─ id (SERIAL PRIMARY KEY, arrival order)
    ├─ link_id (VARCHAR(32), INDEXED, no foreign key)
    ├─ timestamp (TIMESTAMPTZ, INDEXED with link_id)
    ├─ client_ip / user_agent
    └─ browser / os / device_type / referrer

How to Use
===========
**Step 1 — Create a link**::
    link = Link(id="abc123", target_url="https://example.com")
    await store.create(link)

**Step 2 — Query click records**::
    result = await session.execute(select(ClickRecord).where(ClickRecord.link_id == "abc123"))

Key Behaviours
===============
- ``links.id`` is the primary key, so the database enforces id uniqueness.
- ``click_events.link_id`` deliberately has no foreign key: records for a
  deleted link stay in place and are simply never queried again.
- Timestamps are always written in UTC. SQLite hands them back naive, so
  readers go through ``as_utc()``.

Classes:
    Link:  A short identifier mapped to a target URL.
    ClickRecord:  One persisted click event.
"""

import datetime

from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from shortlink.database import Base

__all__ = ["Link", "ClickRecord", "utcnow", "as_utc"]


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def as_utc(value: datetime.datetime | None) -> datetime.datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc)


class Link(Base):
    __tablename__ = "links"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    target_url: Mapped[str] = mapped_column(Text, nullable=False)
    owner_id: Mapped[str | None] = mapped_column(String(64), index=True, nullable=True, default=None)
    password_hash: Mapped[str | None] = mapped_column(String(128), nullable=True, default=None)
    title: Mapped[str | None] = mapped_column(Text, nullable=True, default=None)
    image: Mapped[str | None] = mapped_column(Text, nullable=True, default=None)
    click_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    expires_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, default=None)
    last_accessed_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=None
    )

    @property
    def has_password(self) -> bool:
        return bool(self.password_hash)

    def is_expired(self, now: datetime.datetime | None = None) -> bool:
        expires_at = as_utc(self.expires_at)
        if expires_at is None:
            return False
        return (now or utcnow()) >= expires_at

    def __repr__(self) -> str:
        return f"<Link(id='{self.id}', clicks={self.click_count})>"


class ClickRecord(Base):
    __tablename__ = "click_events"
    __table_args__ = (Index("ix_click_events_link_id_timestamp", "link_id", "timestamp"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    link_id: Mapped[str] = mapped_column(String(32), index=True, nullable=False)
    timestamp: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    client_ip: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    browser: Mapped[str] = mapped_column(String(64), nullable=False)
    os: Mapped[str] = mapped_column(String(64), nullable=False)
    device_type: Mapped[str] = mapped_column(String(16), nullable=False)
    referrer: Mapped[str] = mapped_column(String(255), nullable=False)

    def __repr__(self) -> str:
        return f"<ClickRecord(id={self.id}, link_id='{self.link_id}')>"
