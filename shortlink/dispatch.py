"""Background click dispatcher: the fire-and-forget half of every redirect.

The resolver never awaits click bookkeeping. It submits a ``ClickJob`` and
returns. The dispatcher then splits the job into two independent stages so a
slow channel can never cost a counter increment:

- the click is added to an in-memory tally that a flusher task writes to the
  store as one atomic ``UPDATE`` per link;
- the enriched ``ClickEvent`` goes onto a bounded queue drained by a pool of
  publisher tasks.

Flow Diagram — Click Job Lifecycle
==================================
::
                 ┌─────────────┐
                 │  Resolver   │
                 │  submit()   │
                 └──────┬──────┘
           ┌────────────┴────────────┐
           ▼                         ▼
    ┌─────────────┐           ┌─────────────┐  FULL   ┌──────────┐
    │ click tally │           │ event queue │ ──────▶ │ drop +   │
    │ {id: n}     │           │ (bounded)   │         │ metric   │
    └──────┬──────┘           └──────┬──────┘         └──────────┘
           ▼                         ▼
    ┌─────────────┐           ┌─────────────┐
    │ flusher     │           │ publisher   │
    │ task        │           │ tasks       │
    └──────┬──────┘           └──────┬──────┘
           ▼                         ▼
    ┌─────────────┐           ┌─────────────┐  retries   ┌──────────┐
    │ increment_  │           │ publish()   │ ─────────▶ │ drop +   │
    │ clicks(n)   │           │ + timeout   │ exhausted  │ metric   │
    └─────────────┘           └─────────────┘            └──────────┘

Key Behaviours
===============
- Counts are coalesced per link, so a burst of N clicks costs one ``UPDATE``
  and is never rejected for capacity. Only store failures can lose counts.
- Event backpressure policy is drop-new: a full queue rejects the event, the
  click is still counted.
- Each publish attempt is bounded by ``CLICK_PUBLISH_TIMEOUT_SECONDS``. Each
  stage gets ``CLICK_RETRY_ATTEMPTS`` tries with linear backoff, then the
  stage is dropped and counted.
- User-Agent parsing happens on the publisher, off the redirect path.
- ``close()`` drains outstanding work for up to ``CLICK_DRAIN_TIMEOUT_SECONDS``
  before cancelling the tasks.
"""

import asyncio
import datetime
import logging
from collections import Counter as TallyCounter
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from prometheus_client import Counter, Gauge

from shortlink.config import Settings
from shortlink.errors import ShortLinkError, UpstreamUnavailable
from shortlink.kafka import ClickEventChannel
from shortlink.models import utcnow
from shortlink.schemas import ClickEvent
from shortlink.store import LinkStore
from shortlink.useragent import parse_user_agent, referrer_host

__all__ = ["ClientInfo", "ClickJob", "ClickDispatcher", "build_click_event"]

logger = logging.getLogger(__name__)

CLICK_JOBS_SUBMITTED_TOTAL = Counter(
    "shortlink_click_jobs_submitted_total",
    "Click jobs accepted by the dispatcher",
)
CLICK_JOBS_DROPPED_TOTAL = Counter(
    "shortlink_click_jobs_dropped_total",
    "Click job stages dropped by the dispatcher",
    ["reason"],
)
CLICK_EVENTS_PUBLISHED_TOTAL = Counter(
    "shortlink_click_events_published_total",
    "Click events successfully published to the channel",
)
CLICK_QUEUE_DEPTH = Gauge(
    "shortlink_click_queue_depth",
    "Click events waiting in the dispatcher queue",
)
CLICK_PENDING_COUNTS = Gauge(
    "shortlink_click_pending_counts",
    "Clicks tallied but not yet written to the store",
)


@dataclass(frozen=True)
class ClientInfo:
    """Request attributes captured for analytics."""

    ip: str | None = None
    user_agent: str | None = None
    referrer: str | None = None


@dataclass(frozen=True)
class ClickJob:
    link_id: str
    client: ClientInfo = field(default_factory=ClientInfo)
    timestamp: datetime.datetime = field(default_factory=utcnow)


def build_click_event(job: ClickJob) -> ClickEvent:
    browser, os_family, device_type = parse_user_agent(job.client.user_agent)
    return ClickEvent(
        link_id=job.link_id,
        timestamp=job.timestamp,
        client_ip=job.client.ip,
        user_agent=job.client.user_agent,
        browser=browser,
        os=os_family,
        device_type=device_type,
        referrer=referrer_host(job.client.referrer),
    )


class ClickDispatcher:
    def __init__(self, store: LinkStore, channel: ClickEventChannel, settings: Settings) -> None:
        self._store = store
        self._channel = channel
        self._topic = settings.KAFKA_CLICK_TOPIC
        self._worker_count = settings.CLICK_WORKER_COUNT
        self._retry_attempts = max(settings.CLICK_RETRY_ATTEMPTS, 1)
        self._retry_backoff = settings.CLICK_RETRY_BACKOFF_SECONDS
        self._publish_timeout = settings.CLICK_PUBLISH_TIMEOUT_SECONDS
        self._drain_timeout = settings.CLICK_DRAIN_TIMEOUT_SECONDS
        self._events: asyncio.Queue[ClickJob] = asyncio.Queue(maxsize=settings.CLICK_QUEUE_MAX_SIZE)
        self._counts: TallyCounter[str] = TallyCounter()
        self._counts_ready = asyncio.Event()
        self._counts_idle = asyncio.Event()
        self._counts_idle.set()
        self._tasks: list[asyncio.Task] = []

    @property
    def pending(self) -> int:
        """Events waiting to be published."""
        return self._events.qsize()

    @property
    def pending_clicks(self) -> int:
        """Clicks tallied but not yet written to the store."""
        return sum(self._counts.values())

    async def start(self) -> None:
        if self._tasks:
            return
        self._tasks = [asyncio.create_task(self._run_flusher(), name="click-flusher")]
        self._tasks += [
            asyncio.create_task(self._run_publisher(), name=f"click-publisher-{index}")
            for index in range(self._worker_count)
        ]
        logger.info(f"Click dispatcher started with {self._worker_count} publishers")

    def submit(self, job: ClickJob) -> bool:
        """Record a click without waiting; returns False if its event was dropped."""
        self._counts[job.link_id] += 1
        self._counts_idle.clear()
        self._counts_ready.set()
        CLICK_JOBS_SUBMITTED_TOTAL.inc()
        CLICK_PENDING_COUNTS.set(self.pending_clicks)

        try:
            self._events.put_nowait(job)
        except asyncio.QueueFull:
            CLICK_JOBS_DROPPED_TOTAL.labels(reason="queue_full").inc()
            logger.warning(f"Click event queue full, dropping event for {job.link_id}")
            return False
        CLICK_QUEUE_DEPTH.set(self._events.qsize())
        return True

    async def drain(self) -> None:
        await self._events.join()
        await self._counts_idle.wait()

    async def close(self) -> None:
        if self._tasks:
            try:
                await asyncio.wait_for(self.drain(), self._drain_timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    f"Click dispatcher closing with {self.pending} events and "
                    f"{self.pending_clicks} clicks undelivered"
                )
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Click dispatcher stopped")

    # ============================================================================
    # COUNTER STAGE
    # ============================================================================

    async def _run_flusher(self) -> None:
        while True:
            await self._counts_ready.wait()
            self._counts_ready.clear()
            try:
                await self.flush_counts()
            except Exception:
                logger.exception("Unexpected failure flushing click counts")
            if not self._counts:
                self._counts_idle.set()

    async def flush_counts(self) -> None:
        """Write every tallied click to the store, one UPDATE per link."""
        while self._counts:
            counts, self._counts = self._counts, TallyCounter()
            CLICK_PENDING_COUNTS.set(0)
            for link_id, amount in counts.items():
                await self.increment(link_id, amount)

    async def increment(self, link_id: str, amount: int = 1) -> bool:
        return await self._with_retry(
            "increment", link_id, lambda: self._store.increment_clicks(link_id, amount)
        )

    # ============================================================================
    # EVENT STAGE
    # ============================================================================

    async def _run_publisher(self) -> None:
        while True:
            job = await self._events.get()
            try:
                await self.publish(job)
            except Exception:
                logger.exception(f"Unexpected failure publishing click for {job.link_id}")
            finally:
                self._events.task_done()
                CLICK_QUEUE_DEPTH.set(self._events.qsize())

    async def publish(self, job: ClickJob) -> bool:
        event = build_click_event(job)
        published = await self._with_retry("publish", job.link_id, lambda: self._publish_once(event))
        if published:
            CLICK_EVENTS_PUBLISHED_TOTAL.inc()
        return published

    async def _publish_once(self, event: ClickEvent) -> None:
        try:
            await asyncio.wait_for(self._channel.publish(self._topic, event), self._publish_timeout)
        except asyncio.TimeoutError as exc:
            raise UpstreamUnavailable(f"publish timed out after {self._publish_timeout}s") from exc

    async def _with_retry(self, stage: str, link_id: str, operation: Callable[[], Awaitable[object]]) -> bool:
        for attempt in range(1, self._retry_attempts + 1):
            try:
                await operation()
                return True
            except ShortLinkError as exc:
                logger.warning(f"Click {stage} attempt {attempt}/{self._retry_attempts} failed for {link_id}: {exc}")
                if attempt < self._retry_attempts:
                    await asyncio.sleep(self._retry_backoff * attempt)

        CLICK_JOBS_DROPPED_TOTAL.labels(reason=stage).inc()
        logger.error(f"Dropping click {stage} for {link_id} after {self._retry_attempts} attempts")
        return False
