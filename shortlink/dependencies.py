"""Composition root and request-scoped dependency injection.

``AppResources`` owns every long-lived handle (database engine, Redis client,
Kafka producer, click dispatcher) and wires them into the resolver, the link
service and the aggregator. It is created once per process, started from the
FastAPI lifespan and closed on shutdown; routes reach it through
``request.app.state.resources``.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional

import redis.asyncio as redis
from fastapi import Depends, Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from shortlink.aggregator import StatsAggregator
from shortlink.cache import ResolutionCache, build_redis
from shortlink.config import Settings
from shortlink.database import build_engine, build_session_factory, init_db
from shortlink.dispatch import ClickDispatcher, ClientInfo
from shortlink.kafka import ClickEventChannel
from shortlink.log import LOGGER_NAME, setup_logging
from shortlink.preview import PreviewFetcher
from shortlink.resolver import LinkResolver
from shortlink.service import LinkService
from shortlink.store import LinkStore


# ============================================================================
# COMPOSITION ROOT
# ============================================================================


class AppResources:
    """Shared resources for one API process.

    Collaborators are injected so tests can substitute in-memory doubles for
    the cache and the channel while keeping a real (SQLite) store.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        engine: AsyncEngine,
        cache: ResolutionCache,
        channel: ClickEventChannel,
        redis_client: redis.Redis | None = None,
        preview: PreviewFetcher | None = None,
    ) -> None:
        self.settings = settings
        self.engine = engine
        self.session_factory: async_sessionmaker[AsyncSession] = build_session_factory(engine)
        self.redis_client = redis_client
        self.cache = cache
        self.channel = channel
        self.store = LinkStore(self.session_factory)
        self.aggregator = StatsAggregator(self.session_factory, settings)
        self.dispatcher = ClickDispatcher(self.store, channel, settings)
        self.resolver = LinkResolver(self.store, cache, self.dispatcher, settings)
        self.links = LinkService(self.store, cache, self.aggregator, preview or PreviewFetcher(settings), settings)
        self.logger = logging.getLogger(LOGGER_NAME)

    @classmethod
    def from_settings(cls, settings: Settings) -> "AppResources":
        redis_client = build_redis(settings)
        return cls(
            settings,
            engine=build_engine(settings),
            cache=ResolutionCache(redis_client, settings),
            channel=ClickEventChannel(settings),
            redis_client=redis_client,
        )

    async def startup(self) -> None:
        setup_logging(self.settings)
        await init_db(self.engine)
        await self.channel.start()
        await self.dispatcher.start()
        self.logger.info("Resources initialized")

    async def shutdown(self) -> None:
        await self.dispatcher.close()
        await self.channel.close()
        if self.redis_client is not None:
            await self.redis_client.aclose()
        await self.engine.dispose()
        self.logger.info("Resources closed")

    async def database_healthy(self) -> bool:
        try:
            async with self.session_factory() as session:
                await session.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as exc:
            self.logger.error(f"Database health check failed: {exc}")
            return False


# ============================================================================
# LIGHTWEIGHT REQUEST CONTEXT
# ============================================================================


@dataclass
class RequestContext:
    """Per-request tracking data plus access to the shared resources.

    Attributes:
        resources: Process-wide composition root
        request_id: Unique identifier for this request
        trace_id: Correlation ID for distributed tracing
        user_agent: Client user agent string
        client_ip: Client IP address
        referrer: Referer header, if any
        start_time: Request start timestamp
    """

    resources: AppResources
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    trace_id: Optional[str] = None
    user_agent: Optional[str] = None
    client_ip: Optional[str] = None
    referrer: Optional[str] = None
    start_time: float = field(default_factory=lambda: time.time())

    @property
    def settings(self) -> Settings:
        return self.resources.settings

    @property
    def logger(self) -> logging.LoggerAdapter:
        """Shared logger with request context attached."""
        return logging.LoggerAdapter(
            self.resources.logger,
            {
                "request_id": self.request_id,
                "trace_id": self.trace_id or self.request_id,
                "client_ip": self.client_ip,
                "user_agent": self.user_agent,
            },
        )

    @property
    def client(self) -> ClientInfo:
        return ClientInfo(ip=self.client_ip, user_agent=self.user_agent, referrer=self.referrer)

    def get_duration(self) -> float:
        """Get request duration in milliseconds."""
        return (time.time() - self.start_time) * 1000


# ============================================================================
# DEPENDENCY FUNCTIONS
# ============================================================================


def get_resources(request: Request) -> AppResources:
    return request.app.state.resources


def get_request_context(
    request: Request,
    resources: AppResources = Depends(get_resources),
) -> RequestContext:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        client_ip = forwarded_for.split(",")[0].strip()
    else:
        client_ip = request.client.host if request.client else None

    return RequestContext(
        resources=resources,
        trace_id=request.headers.get("x-trace-id"),
        user_agent=request.headers.get("user-agent"),
        client_ip=client_ip,
        referrer=request.headers.get("referer"),
    )


def get_resolver(resources: AppResources = Depends(get_resources)) -> LinkResolver:
    return resources.resolver


def get_link_service(resources: AppResources = Depends(get_resources)) -> LinkService:
    return resources.links
