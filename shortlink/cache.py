"""Redis-backed resolution cache for the short-link service.

The cache holds a denormalized, disposable projection of each link
(``CachedLinkPayload``) under ``{CACHE_KEY_PREFIX}:{link_id}``. It is a hint,
never the source of truth.

Flow Diagram — Cache Operations
===============================
::
    ┌─────────────┐
    │  Resolver   │
    └──────┬──────┘
           ▼
    ┌─────────────┐   RedisError   ┌───────────────────┐
    │ get/set/    │ ─────────────▶ │ UpstreamUnavailable│
    │ delete      │                └───────────────────┘
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ JSON payload│
    │ with TTL    │
    └─────────────┘

How to Use
===========
**Step 1 — Build the client on startup**::
    client = build_redis(settings)
    cache = ResolutionCache(client, settings)

**Step 2 — Read and populate**::
    entry = await cache.get("abc123")
    await cache.set("abc123", CachedLinkPayload(target_url="https://example.com"), 3600)

**Step 3 — Cleanup on shutdown**::
    await client.aclose()

Key Behaviours
===============
- Connection or timeout errors raise ``UpstreamUnavailable`` so the resolver
  can fall back to store-only resolution.
- A payload that fails to deserialize is treated as a miss.
- Non-positive TTLs are never written.
"""

import logging

import redis.asyncio as redis
from prometheus_client import Counter
from pydantic import ValidationError
from redis.exceptions import RedisError

from shortlink.config import Settings
from shortlink.errors import UpstreamUnavailable
from shortlink.schemas import CachedLinkPayload

__all__ = ["ResolutionCache", "build_redis"]

logger = logging.getLogger(__name__)

CACHE_OPERATIONS_TOTAL = Counter(
    "shortlink_cache_operations_total",
    "Resolution cache operations",
    ["operation"],
)
CACHE_ERRORS_TOTAL = Counter(
    "shortlink_cache_errors_total",
    "Resolution cache operations that failed against Redis",
    ["operation"],
)


def build_redis(settings: Settings) -> redis.Redis:
    return redis.from_url(
        settings.REDIS_URL,
        encoding="utf-8",
        decode_responses=True,
    )


class ResolutionCache:
    def __init__(self, client: redis.Redis, settings: Settings) -> None:
        self._client = client
        self._prefix = settings.CACHE_KEY_PREFIX

    def _key(self, link_id: str) -> str:
        return f"{self._prefix}:{link_id}"

    async def get(self, link_id: str) -> CachedLinkPayload | None:
        try:
            raw = await self._client.get(self._key(link_id))
        except RedisError as exc:
            CACHE_ERRORS_TOTAL.labels(operation="get").inc()
            raise UpstreamUnavailable(f"Cache read failed: {exc}") from exc
        CACHE_OPERATIONS_TOTAL.labels(operation="get").inc()

        if raw is None:
            return None
        try:
            return CachedLinkPayload.model_validate_json(raw)
        except ValidationError as exc:
            logger.error(f"Cache deserialization error for {link_id}: {exc}")
            return None

    async def set(self, link_id: str, payload: CachedLinkPayload, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            return
        try:
            await self._client.set(self._key(link_id), payload.model_dump_json(), ex=ttl_seconds)
        except RedisError as exc:
            CACHE_ERRORS_TOTAL.labels(operation="set").inc()
            raise UpstreamUnavailable(f"Cache write failed: {exc}") from exc
        CACHE_OPERATIONS_TOTAL.labels(operation="set").inc()

    async def delete(self, link_id: str) -> None:
        try:
            await self._client.delete(self._key(link_id))
        except RedisError as exc:
            CACHE_ERRORS_TOTAL.labels(operation="delete").inc()
            raise UpstreamUnavailable(f"Cache delete failed: {exc}") from exc
        CACHE_OPERATIONS_TOTAL.labels(operation="delete").inc()

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except RedisError:
            return False
