"""Kafka click-event channel: producer for redirects, consumer loop for ingestion.

Events are JSON-encoded ``ClickEvent`` payloads keyed by ``link_id``, so every
event for one link lands on the same partition and is read back in order.
Delivery is at-least-once.

How to Use
===========
**Step 1 — Start the producer on startup**::
    channel = ClickEventChannel(settings)
    await channel.start()

**Step 2 — Publish from the dispatcher**::
    await channel.publish(settings.KAFKA_CLICK_TOPIC, event)

**Step 3 — Consume in the ingestion worker**::
    await channel.subscribe(settings.KAFKA_CLICK_TOPIC, handler)

**Step 4 — Cleanup on shutdown**::
    await channel.close()

Key Behaviours
===============
- A producer that cannot connect at startup leaves the channel unavailable
  instead of failing the API process; publishes then raise
  ``UpstreamUnavailable`` and the dispatcher drops the event with a metric.
- While unavailable, a publish retries the connection at most once per
  ``KAFKA_RECONNECT_INTERVAL_SECONDS``.
- Broker requests are bounded by ``KAFKA_REQUEST_TIMEOUT_MS``.
- ``subscribe`` hands each message to the handler one at a time; the handler is
  responsible for its own retries so the loop never stalls.
"""

import asyncio
import json
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from aiokafka import AIOKafkaConsumer, AIOKafkaProducer
from aiokafka.errors import KafkaError

from shortlink.config import Settings
from shortlink.errors import UpstreamUnavailable
from shortlink.schemas import ClickEvent

__all__ = ["ClickEventChannel"]

logger = logging.getLogger(__name__)

MessageHandler = Callable[[Any], Awaitable[None]]


class ClickEventChannel:
    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._producer: AIOKafkaProducer | None = None
        self._last_connect_attempt: float | None = None
        self._connect_lock = asyncio.Lock()

    @property
    def available(self) -> bool:
        return self._producer is not None

    async def start(self) -> None:
        if self._producer is not None:
            return

        self._last_connect_attempt = time.monotonic()
        producer = AIOKafkaProducer(
            bootstrap_servers=self._settings.KAFKA_BOOTSTRAP_SERVERS,
            client_id=self._settings.KAFKA_CLIENT_ID,
            request_timeout_ms=self._settings.KAFKA_REQUEST_TIMEOUT_MS,
            value_serializer=lambda payload: json.dumps(payload).encode("utf-8"),
        )
        try:
            await producer.start()
            self._producer = producer
            logger.info("Kafka producer connected")
        except KafkaError as exc:
            logger.error(f"Kafka producer connection failed: {exc}")
            await producer.stop()
            self._producer = None

    async def close(self) -> None:
        self._last_connect_attempt = None
        if self._producer is None:
            return
        await self._producer.stop()
        self._producer = None

    async def publish(self, topic: str, event: ClickEvent) -> None:
        if self._producer is None:
            await self._reconnect()
        if self._producer is None:
            raise UpstreamUnavailable("Kafka producer is not connected")

        payload = event.model_dump(mode="json")
        try:
            await self._producer.send_and_wait(
                topic,
                payload,
                key=event.link_id.encode("utf-8"),
            )
        except KafkaError as exc:
            raise UpstreamUnavailable(f"Kafka publish failed: {exc}") from exc

    async def _reconnect(self) -> None:
        # Only a channel whose start() failed reconnects; a closed one stays closed.
        async with self._connect_lock:
            if self._producer is not None or self._last_connect_attempt is None:
                return
            elapsed = time.monotonic() - self._last_connect_attempt
            if elapsed < self._settings.KAFKA_RECONNECT_INTERVAL_SECONDS:
                return
            logger.info("Retrying Kafka producer connection")
            await self.start()

    async def subscribe(self, topic: str, handler: MessageHandler) -> None:
        consumer = AIOKafkaConsumer(
            topic,
            bootstrap_servers=self._settings.KAFKA_BOOTSTRAP_SERVERS,
            group_id=self._settings.KAFKA_CONSUMER_GROUP,
            client_id=f"{self._settings.KAFKA_CLIENT_ID}-consumer",
            value_deserializer=_deserialize,
            auto_offset_reset="earliest",
        )
        await consumer.start()
        logger.info(f"Subscribed to {topic} as group {self._settings.KAFKA_CONSUMER_GROUP}")
        try:
            async for message in consumer:
                await handler(message.value)
        finally:
            await consumer.stop()


def _deserialize(raw: bytes | None) -> Any:
    if raw is None:
        return None
    try:
        return json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        logger.warning("undecodable click payload", exc_info=True)
        return None
