"""Ingestion consumer tests: validation, persistence retries and dead-lettering."""

from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from shortlink.config import Settings
from shortlink.consumer import EventConsumer
from shortlink.dependencies import AppResources
from shortlink.models import ClickRecord
from shortlink.store import ClickRecordRepository


def click_payload(**overrides) -> dict:
    payload = {
        "link_id": "abc123",
        "timestamp": "2024-03-10T12:00:00Z",
        "client_ip": "10.0.0.1",
        "user_agent": "curl/8.0",
        "browser": "curl",
        "os": "Other",
        "device_type": "desktop",
        "referrer": "direct",
    }
    payload.update(overrides)
    return payload


@pytest.mark.asyncio
async def test_valid_event_is_persisted(resources: AppResources) -> None:
    consumer = EventConsumer(ClickRecordRepository(resources.session_factory), resources.settings)

    assert await consumer.handle(click_payload()) is True

    async with resources.session_factory() as session:
        records = (await session.execute(select(ClickRecord))).scalars().all()
    assert len(records) == 1
    assert records[0].link_id == "abc123"
    assert records[0].browser == "curl"


@pytest.mark.asyncio
async def test_duplicate_delivery_becomes_duplicate_record(resources: AppResources) -> None:
    consumer = EventConsumer(ClickRecordRepository(resources.session_factory), resources.settings)

    await consumer.handle(click_payload())
    await consumer.handle(click_payload())

    snapshot = await resources.aggregator.snapshot("abc123", 0)
    assert snapshot.total_clicks == 2


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [None, {"unexpected": True}, click_payload(timestamp="yesterday")])
async def test_invalid_payload_is_dead_lettered(settings: Settings, payload) -> None:
    records = AsyncMock(spec=ClickRecordRepository)
    consumer = EventConsumer(records, settings)

    assert await consumer.handle(payload) is False
    records.add.assert_not_awaited()


@pytest.mark.asyncio
async def test_persist_failure_retries_then_dead_letters(settings: Settings) -> None:
    records = AsyncMock(spec=ClickRecordRepository)
    records.add.side_effect = SQLAlchemyError("database unavailable")
    consumer = EventConsumer(records, settings)

    assert await consumer.handle(click_payload()) is False
    assert records.add.await_count == settings.CONSUMER_MAX_RETRIES


@pytest.mark.asyncio
async def test_persist_recovers_within_retries(settings: Settings) -> None:
    records = AsyncMock(spec=ClickRecordRepository)
    records.add.side_effect = [SQLAlchemyError("database unavailable"), None]
    consumer = EventConsumer(records, settings)

    assert await consumer.handle(click_payload()) is True
    assert records.add.await_count == 2
