"""Link service tests: id generation, creation, deletion and analytics."""

import pytest

from conftest import FakeCache, add_link
from shortlink.config import Settings
from shortlink.dependencies import AppResources
from shortlink.errors import Conflict, Expired, NotFound
from shortlink.models import as_utc, utcnow
from shortlink.passwords import check_password
from shortlink.schemas import CachedLinkPayload, LinkCreate
from shortlink.service import ALPHABET, generate_link_id


def test_generate_link_id_default_length() -> None:
    assert len(generate_link_id()) == Settings().LINK_ID_LENGTH


def test_generate_link_id_custom_length() -> None:
    assert len(generate_link_id(length=10)) == 10


def test_generate_link_id_only_alphanumeric() -> None:
    for _ in range(100):
        assert all(c in ALPHABET for c in generate_link_id())


def test_generate_link_id_uniqueness() -> None:
    ids = {generate_link_id() for _ in range(1000)}
    # With 62^6 possibilities, 1000 ids should all be unique
    assert len(ids) == 1000


@pytest.mark.asyncio
async def test_create_with_generated_id(resources: AppResources) -> None:
    link = await resources.links.create(LinkCreate(url="https://example.com/page"))

    assert len(link.id) == resources.settings.LINK_ID_LENGTH
    assert link.target_url == "https://example.com/page"
    assert link.expires_at is None
    assert link.password_hash is None


@pytest.mark.asyncio
async def test_create_hashes_password_and_sets_expiry(resources: AppResources) -> None:
    before = utcnow()
    link = await resources.links.create(
        LinkCreate(url="https://example.com", custom_id="secret-link", password="hunter2", expires_in_hours=2)
    )

    assert link.id == "secret-link"
    assert link.password_hash != "hunter2"
    assert check_password("hunter2", link.password_hash)
    assert (as_utc(link.expires_at) - before).total_seconds() == pytest.approx(7200, abs=5)


@pytest.mark.asyncio
async def test_create_duplicate_custom_id(resources: AppResources) -> None:
    await resources.links.create(LinkCreate(url="https://example.com", custom_id="taken"))

    with pytest.raises(Conflict):
        await resources.links.create(LinkCreate(url="https://example.org", custom_id="taken"))


@pytest.mark.asyncio
async def test_generated_id_collision_retries(resources: AppResources, monkeypatch: pytest.MonkeyPatch) -> None:
    await add_link(resources, "dup001")
    candidates = iter(["dup001", "dup001", "new001"])
    monkeypatch.setattr("shortlink.service.generate_link_id", lambda length: next(candidates))

    link = await resources.links.create(LinkCreate(url="https://example.com"))

    assert link.id == "new001"


@pytest.mark.asyncio
async def test_generated_id_skips_route_names(resources: AppResources, monkeypatch: pytest.MonkeyPatch) -> None:
    candidates = iter(["health", "new001"])
    monkeypatch.setattr("shortlink.service.generate_link_id", lambda length: next(candidates))

    link = await resources.links.create(LinkCreate(url="https://example.com"))

    assert link.id == "new001"


@pytest.mark.asyncio
async def test_generated_id_collision_gives_up(resources: AppResources, monkeypatch: pytest.MonkeyPatch) -> None:
    await add_link(resources, "dup001")
    monkeypatch.setattr("shortlink.service.generate_link_id", lambda length: "dup001")

    with pytest.raises(Conflict):
        await resources.links.create(LinkCreate(url="https://example.com"))


@pytest.mark.asyncio
async def test_bulk_create_reports_per_item(resources: AppResources) -> None:
    results = await resources.links.bulk_create(["https://example.com/1", "not a url", "https://example.com/2"])

    assert [item.success for item in results] == [True, False, True]
    assert results[1].error == "Invalid URL provided"
    assert results[0].short_url == f"{resources.settings.BASE_URL}/{results[0].link_id}"


@pytest.mark.asyncio
async def test_get_applies_expiry(resources: AppResources) -> None:
    await add_link(resources, "old001", expires_at=utcnow())

    with pytest.raises(NotFound):
        await resources.links.get("missing")
    with pytest.raises(Expired):
        await resources.links.get("old001")


@pytest.mark.asyncio
async def test_delete_purges_cache(resources: AppResources, cache: FakeCache) -> None:
    await add_link(resources, "abc123")
    cache.entries["abc123"] = (CachedLinkPayload(target_url="https://example.com"), 60)

    await resources.links.delete("abc123")

    assert "abc123" not in cache.entries
    assert await resources.store.get("abc123") is None
    with pytest.raises(NotFound):
        await resources.links.delete("abc123")


@pytest.mark.asyncio
async def test_delete_succeeds_when_cache_down(resources: AppResources, cache: FakeCache) -> None:
    await add_link(resources, "abc123")
    cache.available = False

    await resources.links.delete("abc123")

    assert await resources.store.get("abc123") is None


@pytest.mark.asyncio
async def test_analytics_for_expired_link(resources: AppResources) -> None:
    await add_link(resources, "old001", expires_at=utcnow())

    link, snapshot = await resources.links.analytics("old001", 7)

    assert link.id == "old001"
    assert snapshot.window_days == 7
    with pytest.raises(NotFound):
        await resources.links.analytics("missing", 7)
