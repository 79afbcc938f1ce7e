import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from astrocache.cache import EntityStore
from astrocache.config import RecencyPolicy
from astrocache.errors import InvalidInputError
from astrocache.services.cache_service import CacheReader, CacheWriter, WriteSummary

START = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


class StepClock:
    """Deterministic clock advancing one second per call."""

    def __init__(self, start: datetime = START) -> None:
        self.current = start

    def __call__(self) -> datetime:
        value = self.current
        self.current = value + timedelta(seconds=1)
        return value


def _raw(nasa_id: str, title: str, links=None) -> dict:
    payload = {"data": [{"nasa_id": nasa_id, "title": title}]}
    if links is not None:
        payload["links"] = links
    return payload


def _services(policy=RecencyPolicy.REFRESH_ON_SEARCH):
    store = EntityStore.in_memory()
    writer = CacheWriter(store, clock=StepClock(), recency_policy=policy)
    return store, writer, CacheReader(store)


@pytest.mark.asyncio
async def test_record_and_read_back():
    store, writer, reader = _services()

    summary = await writer.record_search_results(
        "mars",
        [
            _raw("PIA2", "Rover", links=[{"href": "https://x/thumb.jpg", "rel": "preview"}]),
            _raw("PIA1", "Crater"),
        ],
    )

    assert summary == WriteSummary(
        term="mars",
        items_written=2,
        records_skipped=0,
        associations_created=2,
        associations_pruned=0,
    )
    items = await reader.items_for_term("mars")
    assert [item.nasa_id for item in items] == ["PIA1", "PIA2"]
    assert items[1].thumbnail_url == "https://x/thumb.jpg"
    assert items[0].assets == ()


@pytest.mark.asyncio
async def test_upsert_is_idempotent_and_last_write_wins():
    store, writer, reader = _services()

    await writer.record_search_results("mars", [_raw("a", "Old")])
    summary = await writer.record_search_results("mars", [_raw("a", "New")])

    assert summary.associations_created == 0
    items = await reader.items_for_term("mars")
    assert [item.title for item in items] == ["New"]
    assert store.stats()["media_item"] == 1
    assert store.stats()["search_association"] == 1


@pytest.mark.asyncio
async def test_items_shared_across_terms():
    store, writer, reader = _services()

    await writer.record_search_results("mars", [_raw("a", "Shared"), _raw("b", "Mars only")])
    await writer.record_search_results("rover", [_raw("a", "Shared")])

    assert [item.nasa_id for item in await reader.items_for_term("mars")] == ["b", "a"]
    assert [item.nasa_id for item in await reader.items_for_term("rover")] == ["a"]
    assert store.stats()["media_item"] == 2
    assert store.stats()["search_association"] == 3


@pytest.mark.asyncio
async def test_stale_associations_pruned():
    store, writer, reader = _services()

    await writer.record_search_results("mars", [_raw(f"id{idx}", f"T{idx}") for idx in range(5)])
    summary = await writer.record_search_results("mars", [_raw("id0", "T0"), _raw("id1", "T1")])

    assert summary.associations_pruned == 3
    assert [item.nasa_id for item in await reader.items_for_term("mars")] == ["id0", "id1"]
    assert store.stats()["media_item"] == 5


@pytest.mark.asyncio
async def test_disjoint_batch_prunes_every_previous_association():
    store, writer, reader = _services()

    await writer.record_search_results("mars", [_raw(key, f"T{key}") for key in "ABCDE"])
    summary = await writer.record_search_results("mars", [_raw("F", "TF"), _raw("G", "TG")])

    assert summary.associations_pruned == 5
    assert summary.associations_created == 2
    assert [item.nasa_id for item in await reader.items_for_term("mars")] == ["F", "G"]
    assert store.stats()["media_item"] == 7
    assert store.stats()["search_association"] == 2


@pytest.mark.asyncio
async def test_empty_batch_prunes_everything_but_keeps_term():
    store, writer, reader = _services()

    await writer.record_search_results("mars", [_raw("a", "A"), _raw("b", "B")])
    summary = await writer.record_search_results("mars", [])

    assert summary.associations_pruned == 2
    assert await reader.items_for_term("mars") == []
    assert store.find_term("mars") is not None


@pytest.mark.asyncio
async def test_assets_replaced_on_reupsert():
    store, writer, reader = _services()

    await writer.record_search_results(
        "mars", [_raw("a", "A", links=[{"href": "one"}, {"href": "two"}])]
    )
    await writer.record_search_results("mars", [_raw("a", "A", links=None)])

    item = await reader.find_item("a")
    assert item.assets == ()
    assert store.stats()["media_asset"] == 0


@pytest.mark.asyncio
async def test_assets_replaced_by_different_links():
    store, writer, reader = _services()

    await writer.record_search_results(
        "mars", [_raw("a", "A", links=[{"href": "one"}, {"href": "two"}])]
    )
    await writer.record_search_results(
        "mars",
        [_raw("a", "A", links=[{"href": "three", "rel": "preview"}, {"href": "four"}, {"href": "five"}])],
    )

    item = await reader.find_item("a")
    assert [asset.href for asset in item.assets] == ["three", "four", "five"]
    assert item.asset_count == 3
    assert item.thumbnail_url == "three"
    assert store.stats()["media_asset"] == 3


@pytest.mark.asyncio
async def test_invalid_records_skipped_and_duplicates_collapse():
    store, writer, reader = _services()

    summary = await writer.record_search_results(
        "mars",
        [_raw("a", "First"), {"data": []}, {"data": [{"title": "no id"}]}, _raw("a", "Second")],
    )

    assert summary.records_skipped == 2
    assert summary.associations_created == 1
    items = await reader.items_for_term("mars")
    assert [(item.nasa_id, item.title) for item in items] == [("a", "Second")]


@pytest.mark.asyncio
async def test_blank_term_rejected():
    _, writer, _ = _services()

    with pytest.raises(InvalidInputError):
        await writer.record_search_results("   ", [_raw("a", "A")])


@pytest.mark.asyncio
async def test_recent_terms_refresh_policy():
    _, writer, reader = _services()

    for term in ("mars", "apollo", "jupiter"):
        await writer.record_search_results(term, [])
    assert [entry.term for entry in await reader.recent_terms(10)] == ["jupiter", "apollo", "mars"]

    await writer.record_search_results("mars", [])

    recent = await reader.recent_terms(10)
    assert [entry.term for entry in recent] == ["mars", "jupiter", "apollo"]
    assert recent[0].created_at < recent[0].last_searched_at
    assert [entry.term for entry in await reader.recent_terms(2)] == ["mars", "jupiter"]


@pytest.mark.asyncio
async def test_recent_terms_first_search_policy():
    _, writer, reader = _services(RecencyPolicy.FIRST_SEARCH)

    for term in ("mars", "apollo", "jupiter", "mars"):
        await writer.record_search_results(term, [])

    recent = await reader.recent_terms(10)
    assert [entry.term for entry in recent] == ["jupiter", "apollo", "mars"]
    assert recent[2].created_at == recent[2].last_searched_at


@pytest.mark.asyncio
async def test_recent_terms_requires_positive_limit():
    _, _, reader = _services()

    with pytest.raises(ValueError):
        await reader.recent_terms(0)


@pytest.mark.asyncio
async def test_same_term_writes_are_serialized():
    store, writer, reader = _services()

    batches = [[_raw(f"id{idx}", f"T{idx}")] for idx in range(6)]
    await asyncio.gather(*(writer.record_search_results("mars", batch) for batch in batches))

    # last write wins: exactly one association survives
    items = await reader.items_for_term("mars")
    assert len(items) == 1
    assert store.stats()["search_term"] == 1


@pytest.mark.asyncio
async def test_cancelled_caller_does_not_abort_started_write():
    store, writer, reader = _services()

    task = asyncio.create_task(writer.record_search_results("mars", [_raw("a", "A")]))
    await asyncio.sleep(0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    await writer.drain()

    assert [item.nasa_id for item in await reader.items_for_term("mars")] == ["a"]


@pytest.mark.asyncio
async def test_forget_term_removes_links():
    store, writer, reader = _services()

    await writer.record_search_results("mars", [_raw("a", "A")])

    assert await writer.forget_term("mars") is True
    assert await writer.forget_term("mars") is False
    assert await reader.items_for_term("mars") == []
    assert await reader.find_item("a") is not None


@pytest.mark.asyncio
async def test_term_locks_released_after_writes():
    _, writer, _ = _services()

    await asyncio.gather(
        *(writer.record_search_results(term, [_raw("a", "A")]) for term in ("mars", "mars", "moon"))
    )
    assert writer._locks == {}

    await writer.forget_term("mars")
    assert writer._locks == {}
