"""Link resolver tests: cache-aside reads, expiry, password gating and degradation."""

import asyncio
import datetime
from unittest.mock import AsyncMock

import pytest

from conftest import FakeCache, add_link
from shortlink.dependencies import AppResources
from shortlink.dispatch import ClientInfo
from shortlink.enums import ResolutionStatus
from shortlink.errors import Expired, NotFound, StoreUnavailable, Unauthorized, UpstreamUnavailable
from shortlink.models import utcnow
from shortlink.passwords import hash_password
from shortlink.schemas import CachedLinkPayload


@pytest.mark.asyncio
async def test_resolve_miss_reads_store_and_populates_cache(resources: AppResources, cache: FakeCache) -> None:
    await add_link(resources, "abc123", "https://example.com/a")

    resolution = await resources.resolver.resolve("abc123")

    assert resolution.status is ResolutionStatus.REDIRECT
    assert resolution.target_url == "https://example.com/a"
    payload, ttl = cache.entries["abc123"]
    assert payload.target_url == "https://example.com/a"
    assert payload.has_password is False
    assert ttl == resources.settings.CACHE_DEFAULT_TTL_SECONDS


@pytest.mark.asyncio
async def test_resolve_hit_skips_store(resources: AppResources) -> None:
    await add_link(resources, "abc123", "https://example.com/a")
    await resources.resolver.resolve("abc123")

    resources.store.get = AsyncMock(wraps=resources.store.get)
    resolution = await resources.resolver.resolve("abc123")

    assert resolution.target_url == "https://example.com/a"
    resources.store.get.assert_not_awaited()


@pytest.mark.asyncio
async def test_resolve_unknown_id(resources: AppResources, cache: FakeCache) -> None:
    with pytest.raises(NotFound):
        await resources.resolver.resolve("missing")
    assert "missing" not in cache.entries


@pytest.mark.asyncio
async def test_resolve_expired_link_is_never_cached(resources: AppResources, cache: FakeCache) -> None:
    await add_link(resources, "old001", expires_at=utcnow() - datetime.timedelta(minutes=1))

    with pytest.raises(Expired):
        await resources.resolver.resolve("old001")
    assert "old001" not in cache.entries


@pytest.mark.asyncio
async def test_resolve_stale_cache_entry_is_purged(resources: AppResources, cache: FakeCache) -> None:
    past = utcnow() - datetime.timedelta(seconds=5)
    await add_link(resources, "old002", expires_at=past)
    cache.entries["old002"] = (CachedLinkPayload(target_url="https://example.com", expires_at=past), 60)

    with pytest.raises(Expired):
        await resources.resolver.resolve("old002")
    assert "old002" not in cache.entries


@pytest.mark.asyncio
async def test_cache_ttl_tracks_expiry(resources: AppResources, cache: FakeCache) -> None:
    await add_link(resources, "soon01", expires_at=utcnow() + datetime.timedelta(hours=2))

    await resources.resolver.resolve("soon01")

    _, ttl = cache.entries["soon01"]
    assert 7190 <= ttl <= 7200


@pytest.mark.asyncio
async def test_cache_ttl_values(resources: AppResources) -> None:
    now = utcnow()
    resolver = resources.resolver
    assert resolver.cache_ttl(None, now) == 3600
    assert resolver.cache_ttl(now + datetime.timedelta(seconds=90), now) == 90
    assert resolver.cache_ttl(now - datetime.timedelta(seconds=1), now) <= 0


@pytest.mark.asyncio
async def test_resolve_falls_back_to_store_when_cache_down(resources: AppResources, cache: FakeCache) -> None:
    await add_link(resources, "abc123", "https://example.com/a")
    cache.available = False

    resolution = await resources.resolver.resolve("abc123")

    assert resolution.status is ResolutionStatus.REDIRECT
    assert resolution.target_url == "https://example.com/a"


@pytest.mark.asyncio
async def test_resolve_store_down_surfaces(resources: AppResources) -> None:
    resources.store.get = AsyncMock(side_effect=StoreUnavailable())

    with pytest.raises(StoreUnavailable):
        await resources.resolver.resolve("abc123")


@pytest.mark.asyncio
async def test_resolve_submits_click_job(resources: AppResources) -> None:
    await add_link(resources, "abc123")

    await resources.resolver.resolve("abc123", ClientInfo(ip="10.0.0.1"))
    await resources.dispatcher.drain()

    link = await resources.store.get("abc123")
    assert link.click_count == 1
    assert link.last_accessed_at is not None


# ============================================================================
# PASSWORD GATING
# ============================================================================


@pytest.mark.asyncio
async def test_resolve_gated_link_withholds_target(resources: AppResources, cache: FakeCache) -> None:
    await add_link(resources, "pwd001", password_hash=hash_password("secret", rounds=4))

    resolution = await resources.resolver.resolve("pwd001")
    await resources.dispatcher.drain()

    assert resolution.status is ResolutionStatus.GATED
    assert resolution.target_url is None
    assert cache.entries["pwd001"][0].has_password is True
    assert (await resources.store.get("pwd001")).click_count == 0


@pytest.mark.asyncio
async def test_verify_correct_password(resources: AppResources) -> None:
    await add_link(resources, "pwd001", "https://example.com/private", password_hash=hash_password("secret", rounds=4))

    target = await resources.resolver.verify_password("pwd001", "secret")
    await resources.dispatcher.drain()

    assert target == "https://example.com/private"
    assert (await resources.store.get("pwd001")).click_count == 1


@pytest.mark.asyncio
async def test_verify_wrong_password(resources: AppResources) -> None:
    await add_link(resources, "pwd001", password_hash=hash_password("secret", rounds=4))

    with pytest.raises(Unauthorized):
        await resources.resolver.verify_password("pwd001", "wrong")

    # Wrong guesses are retryable.
    assert await resources.resolver.verify_password("pwd001", "secret") == "https://example.com"


@pytest.mark.asyncio
async def test_verify_unknown_and_expired(resources: AppResources) -> None:
    await add_link(
        resources,
        "pwd002",
        password_hash=hash_password("secret", rounds=4),
        expires_at=utcnow() - datetime.timedelta(seconds=1),
    )

    with pytest.raises(NotFound):
        await resources.resolver.verify_password("missing", "secret")
    with pytest.raises(Expired):
        await resources.resolver.verify_password("pwd002", "secret")


@pytest.mark.asyncio
async def test_verify_timeout_is_upstream_unavailable(
    resources: AppResources, monkeypatch: pytest.MonkeyPatch
) -> None:
    await add_link(resources, "pwd001", password_hash=hash_password("secret", rounds=4))
    monkeypatch.setattr("shortlink.resolver.verify_password_async", AsyncMock(side_effect=asyncio.TimeoutError()))

    with pytest.raises(UpstreamUnavailable):
        await resources.resolver.verify_password("pwd001", "secret")
