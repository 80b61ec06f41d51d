"""Separate ingestion consumer service for click events.

Consumes ClickEvents from Kafka and appends one ``click_events`` row per
message, independent of (and at a different rate than) the redirect path.

Flow Diagram — handle()
=======================
::
    ┌─────────────┐
    │ Kafka msg   │
    └──────┬──────┘
           ▼
    ┌─────────────┐  invalid   ┌─────────────┐
    │ validate    │ ─────────▶ │ dead-letter │
    │ ClickEvent  │            │ (log+metric)│
    └──────┬──────┘            └─────────────┘
           ▼                          ▲
    ┌─────────────┐  retries exhausted │
    │ persist w/  │ ───────────────────┘
    │ bounded     │
    │ retry       │
    └─────────────┘

Run with::

    python -m shortlink.consumer

Key Behaviours
===============
- One message at a time, in partition order; no cross-partition ordering.
- Persistence is retried ``CONSUMER_MAX_RETRIES`` times with linear backoff,
  then the event is dead-lettered so the pipeline never stalls.
- Duplicate deliveries become duplicate rows; that is accepted.
"""

import asyncio
import logging
from typing import Any

from prometheus_client import Counter, start_http_server
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from shortlink.config import Settings, get_settings
from shortlink.database import build_engine, build_session_factory, init_db
from shortlink.kafka import ClickEventChannel
from shortlink.log import setup_logging
from shortlink.schemas import ClickEvent
from shortlink.store import ClickRecordRepository

__all__ = ["EventConsumer", "run", "main"]

logger = logging.getLogger(__name__)

CONSUMER_EVENTS_TOTAL = Counter(
    "shortlink_consumer_events_total",
    "Click events received by the ingestion consumer",
)
CONSUMER_PERSISTED_TOTAL = Counter(
    "shortlink_consumer_persisted_total",
    "Click events persisted as click records",
)
CONSUMER_DEAD_LETTER_TOTAL = Counter(
    "shortlink_consumer_dead_letter_total",
    "Click events skipped by the ingestion consumer",
    ["reason"],
)


class EventConsumer:
    def __init__(self, records: ClickRecordRepository, settings: Settings) -> None:
        self._records = records
        self._max_retries = max(settings.CONSUMER_MAX_RETRIES, 1)
        self._retry_backoff = settings.CONSUMER_RETRY_BACKOFF_SECONDS

    async def handle(self, payload: Any) -> bool:
        """Persist one channel payload; returns False when it was dead-lettered."""
        CONSUMER_EVENTS_TOTAL.inc()
        try:
            event = ClickEvent.model_validate(payload)
        except ValidationError:
            CONSUMER_DEAD_LETTER_TOTAL.labels(reason="invalid").inc()
            logger.warning(f"invalid click payload, dead-lettering: {payload!r}", exc_info=True)
            return False

        for attempt in range(1, self._max_retries + 1):
            try:
                await self._records.add(event)
            except SQLAlchemyError as exc:
                logger.warning(
                    f"Persisting click for {event.link_id} failed (attempt {attempt}/{self._max_retries}): {exc}"
                )
                if attempt < self._max_retries:
                    await asyncio.sleep(self._retry_backoff * attempt)
                continue
            CONSUMER_PERSISTED_TOTAL.inc()
            return True

        CONSUMER_DEAD_LETTER_TOTAL.labels(reason="persist_failed").inc()
        logger.error(f"Dead-lettering click for {event.link_id}: {event.model_dump_json()}")
        return False


async def run() -> None:
    settings = get_settings()
    setup_logging(settings)
    start_http_server(settings.CONSUMER_METRICS_PORT)

    engine = build_engine(settings)
    await init_db(engine)
    consumer = EventConsumer(ClickRecordRepository(build_session_factory(engine)), settings)
    channel = ClickEventChannel(settings)

    try:
        while True:
            try:
                await channel.subscribe(settings.KAFKA_CLICK_TOPIC, consumer.handle)
            except Exception:
                logger.warning("ingestion loop failed, resubscribing", exc_info=True)
                await asyncio.sleep(1)
    finally:
        await engine.dispose()


def main() -> None:
    asyncio.run(run())


if __name__ == "__main__":
    main()
