"""Kafka channel tests with the producer class replaced, so no broker is needed."""

import pytest
from aiokafka.errors import KafkaConnectionError

from shortlink.config import Settings
from shortlink.dispatch import ClickJob, build_click_event
from shortlink.errors import UpstreamUnavailable
from shortlink.kafka import ClickEventChannel


class FlakyProducer:
    """Producer whose first ``start()`` fails, as when the broker is still booting."""

    instances: list["FlakyProducer"] = []
    starts = 0

    def __init__(self, **config) -> None:
        self.config = config
        self.sent: list[tuple[str, dict, bytes]] = []
        FlakyProducer.instances.append(self)

    async def start(self) -> None:
        FlakyProducer.starts += 1
        if FlakyProducer.starts == 1:
            raise KafkaConnectionError("broker not reachable")

    async def stop(self) -> None:
        pass

    async def send_and_wait(self, topic: str, value: dict, key: bytes | None = None) -> None:
        self.sent.append((topic, value, key))


@pytest.fixture
def producer_class(monkeypatch: pytest.MonkeyPatch) -> type[FlakyProducer]:
    FlakyProducer.instances = []
    FlakyProducer.starts = 0
    monkeypatch.setattr("shortlink.kafka.AIOKafkaProducer", FlakyProducer)
    return FlakyProducer


def click_event():
    return build_click_event(ClickJob(link_id="abc123"))


@pytest.mark.asyncio
async def test_failed_start_leaves_channel_unavailable(settings: Settings, producer_class) -> None:
    channel = ClickEventChannel(settings)

    await channel.start()

    assert channel.available is False


@pytest.mark.asyncio
async def test_publish_reconnects_after_failed_start(settings: Settings, producer_class) -> None:
    channel = ClickEventChannel(settings.model_copy(update={"KAFKA_RECONNECT_INTERVAL_SECONDS": 0}))
    await channel.start()

    await channel.publish(settings.KAFKA_CLICK_TOPIC, click_event())

    assert channel.available is True
    topic, value, key = producer_class.instances[-1].sent[0]
    assert topic == settings.KAFKA_CLICK_TOPIC
    assert value["link_id"] == "abc123"
    assert key == b"abc123"


@pytest.mark.asyncio
async def test_reconnect_is_rate_limited(settings: Settings, producer_class) -> None:
    channel = ClickEventChannel(settings.model_copy(update={"KAFKA_RECONNECT_INTERVAL_SECONDS": 60}))
    await channel.start()

    for _ in range(3):
        with pytest.raises(UpstreamUnavailable):
            await channel.publish(settings.KAFKA_CLICK_TOPIC, click_event())

    assert producer_class.starts == 1


@pytest.mark.asyncio
async def test_closed_channel_does_not_reconnect(settings: Settings, producer_class) -> None:
    channel = ClickEventChannel(settings.model_copy(update={"KAFKA_RECONNECT_INTERVAL_SECONDS": 0}))
    await channel.start()
    await channel.close()

    with pytest.raises(UpstreamUnavailable):
        await channel.publish(settings.KAFKA_CLICK_TOPIC, click_event())
    assert producer_class.starts == 1


@pytest.mark.asyncio
async def test_producer_requests_are_bounded(settings: Settings, producer_class) -> None:
    channel = ClickEventChannel(settings.model_copy(update={"KAFKA_REQUEST_TIMEOUT_MS": 1500}))

    await channel.start()

    assert producer_class.instances[0].config["request_timeout_ms"] == 1500
