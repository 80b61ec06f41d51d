"""Shared pytest fixtures for API, store, resolver and pipeline tests.

Tests run against a SQLite file database (aiosqlite) and in-memory doubles for
the Redis cache and the Kafka channel, so no external services are needed.
"""

import asyncio
import datetime
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from shortlink.config import Settings
from shortlink.database import build_engine
from shortlink.dependencies import AppResources
from shortlink.errors import UpstreamUnavailable
from shortlink.main import create_app
from shortlink.models import ClickRecord, Link
from shortlink.schemas import CachedLinkPayload, ClickEvent

# ============================================================================
# IN-MEMORY DOUBLES
# ============================================================================


class FakeCache:
    """Dict-backed stand-in for ``ResolutionCache``."""

    def __init__(self) -> None:
        self.entries: dict[str, tuple[CachedLinkPayload, int]] = {}
        self.available = True
        self.gets = 0

    def _check(self) -> None:
        if not self.available:
            raise UpstreamUnavailable("cache down")

    async def get(self, link_id: str) -> CachedLinkPayload | None:
        self._check()
        self.gets += 1
        entry = self.entries.get(link_id)
        return entry[0] if entry else None

    async def set(self, link_id: str, payload: CachedLinkPayload, ttl_seconds: int) -> None:
        self._check()
        if ttl_seconds <= 0:
            return
        self.entries[link_id] = (payload, ttl_seconds)

    async def delete(self, link_id: str) -> None:
        self._check()
        self.entries.pop(link_id, None)

    async def ping(self) -> bool:
        return self.available


class FakeChannel:
    """List-backed stand-in for ``ClickEventChannel``."""

    def __init__(self, fail_times: int = 0, delay: float = 0) -> None:
        self.published: list[tuple[str, ClickEvent]] = []
        self.attempts = 0
        self.fail_times = fail_times
        self.delay = delay
        self.started = False

    @property
    def available(self) -> bool:
        return self.started

    async def start(self) -> None:
        self.started = True

    async def close(self) -> None:
        self.started = False

    async def publish(self, topic: str, event: ClickEvent) -> None:
        self.attempts += 1
        if self.attempts <= self.fail_times:
            raise UpstreamUnavailable("channel down")
        if self.delay:
            await asyncio.sleep(self.delay)
        self.published.append((topic, event))


# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'shortlink.db'}",
        BASE_URL="http://sho.rt",
        PASSWORD_PAGE_URL="http://frontend.test/password",
        METRICS_ENABLED=False,
        PREVIEW_ENABLED=False,
        BCRYPT_ROUNDS=4,
        CLICK_WORKER_COUNT=1,
        CLICK_RETRY_BACKOFF_SECONDS=0,
        CONSUMER_RETRY_BACKOFF_SECONDS=0,
    )


@pytest.fixture
def cache() -> FakeCache:
    return FakeCache()


@pytest.fixture
def channel() -> FakeChannel:
    return FakeChannel()


@pytest_asyncio.fixture
async def resources(settings: Settings, cache: FakeCache, channel: FakeChannel) -> AsyncGenerator[AppResources, None]:
    app_resources = AppResources(settings, engine=build_engine(settings), cache=cache, channel=channel)
    await app_resources.startup()
    yield app_resources
    await app_resources.shutdown()


@pytest_asyncio.fixture
async def client(resources: AppResources) -> AsyncGenerator[AsyncClient, None]:
    # ASGITransport does not run the lifespan; ``resources`` is already started.
    app = create_app(resources)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ============================================================================
# HELPERS
# ============================================================================


def utc(*args: int) -> datetime.datetime:
    return datetime.datetime(*args, tzinfo=datetime.timezone.utc)


async def add_link(resources: AppResources, link_id: str, target_url: str = "https://example.com", **fields) -> Link:
    return await resources.store.create(Link(id=link_id, target_url=target_url, **fields))


async def add_clicks(resources: AppResources, link_id: str, *records: dict) -> None:
    async with resources.session_factory() as session:
        for record in records:
            values = {
                "browser": "Chrome",
                "os": "Windows",
                "device_type": "desktop",
                "referrer": "direct",
                **record,
            }
            session.add(ClickRecord(link_id=link_id, **values))
            # Flush one at a time so ids follow insertion order.
            await session.flush()
        await session.commit()
