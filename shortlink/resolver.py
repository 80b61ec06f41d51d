"""Link resolver — the redirect hot path.

This module turns a short identifier into a redirect target, a password gate,
or a terminal failure, reading Redis first and PostgreSQL only on a miss.

Flow Diagram — resolve()
========================
::
    ┌─────────────┐
    │  GET /:id   │
    └──────┬──────┘
           ▼
    ┌─────────────┐  cache down   ┌─────────────┐
    │ Cache get   │ ────────────▶ │ treat as    │
    └──────┬──────┘               │ miss        │
    HIT?   │                      └──────┬──────┘
    ┌──────┴──────┐                      │
    │ YES          │ NO ◀────────────────┘
    ▼              ▼
┌──────────┐  ┌─────────────┐
│ expired? │  │ Store get   │
│ YES: del │  └──────┬──────┘
│ → miss   │   None? │ expired?     valid?
└────┬─────┘   ▼      ▼              ▼
     │      NotFound Expired   ┌─────────────┐
     │                         │ Cache set   │
     │                         │ TTL = until │
     │                         │ expiry / 1h │
     │                         └──────┬──────┘
     ▼                                ▼
    ┌──────────────────────────────────────┐
    │ has_password? ── YES ──▶ GATED        │
    │      NO                               │
    │      ▼                                │
    │ dispatcher.submit(ClickJob) (no wait) │
    │      ▼                                │
    │ REDIRECT(target_url)                  │
    └──────────────────────────────────────┘

How to Use
===========
**Step 1 — Build from the composition root**::
    resolver = LinkResolver(store, cache, dispatcher, settings)

**Step 2 — Resolve**::
    resolution = await resolver.resolve("abc123", ClientInfo(ip="1.2.3.4"))
    if resolution.status is ResolutionStatus.GATED:
        ...  # send the client to the password page

**Step 3 — Verify a gated link**::
    target = await resolver.verify_password("pwd001", "secret")

Key Behaviours
===============
- A cache hit never touches the store unless the cached entry has expired.
- Expired links are never cached; a stale cached entry is deleted on sight.
- Concurrent misses for one id each read the store and each write the cache;
  the last writer wins. There is no single-flight lock.
- Cache failures degrade to store-only resolution.
- Click bookkeeping is submitted to the dispatcher and never awaited.
- The target URL of a password-protected link is only returned by
  ``verify_password``.
"""

import asyncio
import datetime
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from prometheus_client import Counter, Histogram

from shortlink.cache import ResolutionCache
from shortlink.config import Settings
from shortlink.dispatch import ClickDispatcher, ClickJob, ClientInfo
from shortlink.enums import CacheStatus, ResolutionOutcome, ResolutionStatus
from shortlink.errors import Expired, NotFound, StoreUnavailable, Unauthorized, UpstreamUnavailable
from shortlink.models import as_utc, utcnow
from shortlink.passwords import verify_password_async
from shortlink.schemas import CachedLinkPayload
from shortlink.store import LinkStore

__all__ = ["Resolution", "LinkResolver"]

logger = logging.getLogger(__name__)

RESOLUTIONS_TOTAL = Counter(
    "shortlink_resolutions_total",
    "Link resolutions by outcome",
    ["outcome", "cache_hit"],
)
RESOLUTION_DURATION = Histogram(
    "shortlink_resolution_duration_seconds",
    "Time taken to resolve a link id",
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25],
)
PASSWORD_CHECKS_TOTAL = Counter(
    "shortlink_password_checks_total",
    "Password verification attempts by result",
    ["result"],
)


@dataclass(frozen=True)
class Resolution:
    status: ResolutionStatus
    link_id: str
    target_url: str | None = None


class LinkResolver:
    def __init__(
        self,
        store: LinkStore,
        cache: ResolutionCache,
        dispatcher: ClickDispatcher,
        settings: Settings,
        clock: Callable[[], datetime.datetime] = utcnow,
    ) -> None:
        self._store = store
        self._cache = cache
        self._dispatcher = dispatcher
        self._default_ttl = settings.CACHE_DEFAULT_TTL_SECONDS
        self._verify_timeout = settings.PASSWORD_VERIFY_TIMEOUT_SECONDS
        self._clock = clock

    async def resolve(self, link_id: str, client: ClientInfo | None = None) -> Resolution:
        start_time = time.perf_counter()
        try:
            entry, cache_status = await self._lookup(link_id)
        except NotFound:
            RESOLUTIONS_TOTAL.labels(outcome=ResolutionOutcome.NOT_FOUND, cache_hit=CacheStatus.MISS).inc()
            raise
        except Expired:
            RESOLUTIONS_TOTAL.labels(outcome=ResolutionOutcome.EXPIRED, cache_hit=CacheStatus.MISS).inc()
            raise
        except StoreUnavailable:
            RESOLUTIONS_TOTAL.labels(outcome=ResolutionOutcome.ERROR, cache_hit=CacheStatus.MISS).inc()
            raise
        finally:
            RESOLUTION_DURATION.observe(time.perf_counter() - start_time)

        if entry.has_password:
            RESOLUTIONS_TOTAL.labels(outcome=ResolutionOutcome.GATED, cache_hit=cache_status).inc()
            return Resolution(status=ResolutionStatus.GATED, link_id=link_id)

        self._dispatcher.submit(ClickJob(link_id=link_id, client=client or ClientInfo()))
        RESOLUTIONS_TOTAL.labels(outcome=ResolutionOutcome.REDIRECT, cache_hit=cache_status).inc()
        return Resolution(status=ResolutionStatus.REDIRECT, link_id=link_id, target_url=entry.target_url)

    async def verify_password(self, link_id: str, password: str, client: ClientInfo | None = None) -> str:
        """Return the target URL if ``password`` unlocks the link.

        Reads the store directly (the cache never holds the hash) and re-checks
        expiry, since a link can expire between the gate and the verification.

        Raises:
            NotFound: Unknown id.
            Expired: The link expired.
            Unauthorized: Wrong password.
            UpstreamUnavailable: The hash check timed out.
        """
        link = await self._store.get(link_id)
        if link is None:
            raise NotFound()
        if link.is_expired(self._clock()):
            await self._cache_delete(link_id)
            raise Expired()

        if link.password_hash:
            try:
                matches = await verify_password_async(password, link.password_hash, self._verify_timeout)
            except asyncio.TimeoutError as exc:
                PASSWORD_CHECKS_TOTAL.labels(result="timeout").inc()
                raise UpstreamUnavailable("Password verification timed out") from exc
            if not matches:
                PASSWORD_CHECKS_TOTAL.labels(result="mismatch").inc()
                raise Unauthorized()
            PASSWORD_CHECKS_TOTAL.labels(result="match").inc()

        self._dispatcher.submit(ClickJob(link_id=link_id, client=client or ClientInfo()))
        return link.target_url

    def cache_ttl(self, expires_at: datetime.datetime | None, now: datetime.datetime) -> int:
        if expires_at is None:
            return self._default_ttl
        return int((expires_at - now).total_seconds())

    async def _lookup(self, link_id: str) -> tuple[CachedLinkPayload, CacheStatus]:
        now = self._clock()

        cached = await self._cache_get(link_id)
        if cached is not None:
            if not cached.is_expired(now):
                return cached, CacheStatus.HIT
            logger.debug(f"Stale cache entry for {link_id}, purging")
            await self._cache_delete(link_id)

        link = await self._store.get(link_id)
        if link is None:
            raise NotFound()
        if link.is_expired(now):
            raise Expired()

        payload = CachedLinkPayload(
            target_url=link.target_url,
            expires_at=as_utc(link.expires_at),
            has_password=link.has_password,
        )
        await self._cache_set(link_id, payload, self.cache_ttl(payload.expires_at, now))
        return payload, CacheStatus.MISS

    async def _cache_get(self, link_id: str) -> CachedLinkPayload | None:
        try:
            return await self._cache.get(link_id)
        except UpstreamUnavailable as exc:
            logger.warning(f"Cache unavailable, resolving {link_id} from store: {exc}")
            return None

    async def _cache_set(self, link_id: str, payload: CachedLinkPayload, ttl_seconds: int) -> None:
        try:
            await self._cache.set(link_id, payload, ttl_seconds)
        except UpstreamUnavailable as exc:
            logger.warning(f"Cache unavailable, not caching {link_id}: {exc}")

    async def _cache_delete(self, link_id: str) -> None:
        try:
            await self._cache.delete(link_id)
        except UpstreamUnavailable as exc:
            logger.warning(f"Cache unavailable, could not purge {link_id}: {exc}")
