"""Business logic for link creation, deletion, info and analytics.

Flow Diagram — Link Creation
============================
::
    ┌─────────────┐
    │  POST /api/ │
    │  shorten    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Validate    │
    │ (Pydantic)  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Hash pwd    │
    │ (bcrypt,    │
    │ thread)     │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Fetch       │
    │ preview     │
    │ (timeout)   │
    └──────┬──────┘
           ▼
    ┌─────────────┐  Conflict on generated id
    │ INSERT link │ ──────────────▶ retry with a fresh nanoid
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Return Link │
    └─────────────┘

Key Behaviours
===============
- Generated ids are ``nanoid`` strings of ``LINK_ID_LENGTH`` characters; a
  collision retries up to ``LINK_ID_MAX_ATTEMPTS`` times.
- A duplicate custom id is a ``Conflict`` with no retry.
- Creation does not populate the cache; the first redirect does.
- Deletion removes the store row first and then purges the cache entry; if the
  cache is down, the entry ages out within its TTL.
- ``info`` and ``analytics`` read the store directly and apply the same expiry
  rule as the resolver.

Functions:
    generate_link_id():  Creates random URL-safe ids.
"""

import datetime
import logging

from nanoid import generate

from shortlink.aggregator import StatsAggregator
from shortlink.cache import ResolutionCache
from shortlink.config import Settings
from shortlink.errors import Conflict, Expired, NotFound, UpstreamUnavailable
from shortlink.models import Link, utcnow
from shortlink.passwords import hash_password_async
from shortlink.preview import LinkPreview, PreviewFetcher
from shortlink.schemas import RESERVED_LINK_IDS, BulkShortenItem, LinkCreate, StatsSnapshot
from shortlink.store import LinkStore

__all__ = ["ALPHABET", "generate_link_id", "LinkService"]

logger = logging.getLogger(__name__)

ALPHABET = "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"


def generate_link_id(length: int = 6) -> str:
    assert isinstance(length, int) and length > 0, f"length must be a positive integer, got {length!r}"
    return generate(ALPHABET, length)


class LinkService:
    def __init__(
        self,
        store: LinkStore,
        cache: ResolutionCache,
        aggregator: StatsAggregator,
        preview: PreviewFetcher,
        settings: Settings,
    ) -> None:
        self._store = store
        self._cache = cache
        self._aggregator = aggregator
        self._preview = preview
        self._settings = settings

    async def create(self, request: LinkCreate) -> Link:
        password_hash = None
        if request.password:
            password_hash = await hash_password_async(request.password, self._settings.BCRYPT_ROUNDS)

        expires_at = None
        if request.expires_in_hours:
            expires_at = utcnow() + datetime.timedelta(hours=request.expires_in_hours)

        preview = await self._preview.fetch(request.url)

        if request.custom_id:
            return await self._store.create(self._build(request.custom_id, request, password_hash, expires_at, preview))

        for attempt in range(1, self._settings.LINK_ID_MAX_ATTEMPTS + 1):
            link_id = generate_link_id(self._settings.LINK_ID_LENGTH)
            if link_id in RESERVED_LINK_IDS:
                continue
            try:
                link = await self._store.create(self._build(link_id, request, password_hash, expires_at, preview))
            except Conflict:
                logger.warning(f"Generated link id collision on {link_id} (attempt {attempt})")
                continue
            logger.info(f"Link created: {link.id}")
            return link
        raise Conflict("Could not allocate a unique link id")

    async def bulk_create(self, urls: list[str], owner_id: str | None = None) -> list[BulkShortenItem]:
        """Create one link per URL; failures are reported per item, not raised."""
        results: list[BulkShortenItem] = []
        for url in urls:
            try:
                request = LinkCreate(url=url, owner_id=owner_id)
            except ValueError:
                results.append(BulkShortenItem(url=url, success=False, error="Invalid URL provided"))
                continue
            try:
                link = await self.create(request)
            except Conflict as exc:
                results.append(BulkShortenItem(url=url, success=False, error=exc.detail))
                continue
            results.append(
                BulkShortenItem(
                    url=url,
                    success=True,
                    link_id=link.id,
                    short_url=f"{self._settings.BASE_URL}/{link.id}",
                )
            )
        return results

    async def get(self, link_id: str) -> Link:
        """Return a live link, applying the resolver's expiry rule."""
        link = await self._store.get(link_id)
        if link is None:
            raise NotFound()
        if link.is_expired():
            raise Expired()
        return link

    async def delete(self, link_id: str) -> None:
        deleted = await self._store.delete(link_id)
        if not deleted:
            raise NotFound()
        try:
            await self._cache.delete(link_id)
        except UpstreamUnavailable as exc:
            logger.warning(f"Cache purge failed for deleted link {link_id}: {exc}")
        logger.info(f"Link deleted: {link_id}")

    async def list_for_owner(self, owner_id: str) -> list[Link]:
        return await self._store.list_by_owner(owner_id)

    async def analytics(self, link_id: str, window_days: int) -> tuple[Link, StatsSnapshot]:
        link = await self._store.get(link_id)
        if link is None:
            raise NotFound()
        snapshot = await self._aggregator.snapshot(link_id, window_days)
        return link, snapshot

    def _build(
        self,
        link_id: str,
        request: LinkCreate,
        password_hash: str | None,
        expires_at: datetime.datetime | None,
        preview: LinkPreview,
    ) -> Link:
        return Link(
            id=link_id,
            target_url=request.url,
            owner_id=request.owner_id,
            password_hash=password_hash,
            title=preview.title,
            image=preview.image,
            click_count=0,
            created_at=utcnow(),
            expires_at=expires_at,
        )

