import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

import astrocache.cache as cache
from astrocache.cache import EntityStore, MediaAsset, MediaItem
from astrocache.errors import StorageError
from astrocache.records import AssetRecord, MediaRecord

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def _record(nasa_id: str, title: str, *assets: AssetRecord) -> MediaRecord:
    return MediaRecord(nasa_id=nasa_id, title=title, keywords=("space",), assets=assets)


def test_upsert_item_inserts_then_overwrites():
    store = EntityStore.in_memory()

    with store.transaction() as conn:
        first_id = store.upsert_item(_record("a", "Old title"), now=NOW, conn=conn)
    with store.transaction() as conn:
        second_id = store.upsert_item(
            MediaRecord(nasa_id="a", title="New title", center="JPL"), now=NOW, conn=conn
        )

    assert first_id == second_id
    item = store.find_item("a")
    assert item is not None
    assert item.title == "New title"
    assert item.center == "JPL"
    assert item.keywords == ()
    assert store.stats()["media_item"] == 1


def test_replace_assets_keeps_order_and_replaces():
    store = EntityStore.in_memory()
    with store.transaction() as conn:
        item_id = store.upsert_item(_record("a", "A"), now=NOW, conn=conn)
        store.replace_assets(
            item_id,
            [AssetRecord(href="one"), AssetRecord(href="two", rel="preview")],
            conn=conn,
        )

    item = store.find_item("a")
    assert [asset.href for asset in item.assets] == ["one", "two"]

    with store.transaction() as conn:
        store.replace_assets(item_id, [], conn=conn)

    assert store.find_item("a").assets == ()
    assert store.stats()["media_asset"] == 0


def test_insert_association_is_unique():
    store = EntityStore.in_memory()
    with store.transaction() as conn:
        term_id = store.insert_term("mars", now=NOW, conn=conn)
        item_id = store.upsert_item(_record("a", "A"), now=NOW, conn=conn)
        assert store.insert_association(term_id, item_id, now=NOW, conn=conn) is True
        assert store.insert_association(term_id, item_id, now=NOW, conn=conn) is False

    assert store.find_association("mars", "a") is True
    assert store.find_association("mars", "b") is False
    assert store.stats()["search_association"] == 1


def test_duplicate_term_violates_uniqueness():
    store = EntityStore.in_memory()
    store.insert_term("mars", now=NOW)

    with pytest.raises(StorageError) as excinfo:
        store.insert_term("mars", now=NOW)

    assert isinstance(excinfo.value.__cause__, sqlite3.IntegrityError)
    assert store.stats()["search_term"] == 1


def test_transaction_rolls_back_on_error():
    store = EntityStore.in_memory()

    with pytest.raises(RuntimeError):
        with store.transaction() as conn:
            store.insert_term("mars", now=NOW, conn=conn)
            raise RuntimeError("boom")

    assert store.find_term("mars") is None


def test_prune_associations_keeps_listed_items_only():
    store = EntityStore.in_memory()
    with store.transaction() as conn:
        term_id = store.insert_term("mars", now=NOW, conn=conn)
        ids = [
            store.upsert_item(_record(f"id{idx}", f"T{idx}"), now=NOW, conn=conn)
            for idx in range(5)
        ]
        for item_id in ids:
            store.insert_association(term_id, item_id, now=NOW, conn=conn)
        pruned = store.prune_associations(term_id, ids[:2], conn=conn)

    assert pruned == 3
    assert [item.nasa_id for item in store.items_for_term("mars")] == ["id0", "id1"]
    # pruning never deletes items
    assert store.stats()["media_item"] == 5


def test_items_for_term_sorted_by_title_then_id():
    store = EntityStore.in_memory()
    with store.transaction() as conn:
        term_id = store.insert_term("moon", now=NOW, conn=conn)
        for nasa_id, title in [("c", "beta"), ("b", "Alpha"), ("a", "beta"), ("d", "alpha")]:
            item_id = store.upsert_item(_record(nasa_id, title), now=NOW, conn=conn)
            store.insert_association(term_id, item_id, now=NOW, conn=conn)

    items = store.items_for_term("moon")

    assert [(item.title, item.nasa_id) for item in items] == [
        ("Alpha", "b"),
        ("alpha", "d"),
        ("beta", "a"),
        ("beta", "c"),
    ]
    assert store.items_for_term("unknown") == []


def test_recent_terms_order_and_ties():
    store = EntityStore.in_memory()
    store.insert_term("mars", now=NOW)
    store.insert_term("apollo", now=NOW + timedelta(seconds=1))
    store.insert_term("jupiter", now=NOW + timedelta(seconds=1))

    terms = [entry.term for entry in store.recent_terms(10)]
    assert terms == ["jupiter", "apollo", "mars"]
    assert [entry.term for entry in store.recent_terms(1)] == ["jupiter"]

    term_id = store.term_id("mars")
    store.touch_term(term_id, now=NOW + timedelta(seconds=5))
    entry = store.find_term("mars")
    assert entry.created_at == NOW
    assert entry.last_searched_at == NOW + timedelta(seconds=5)
    assert store.recent_terms(1)[0].term == "mars"


def test_delete_term_cascades_associations_only():
    store = EntityStore.in_memory()
    with store.transaction() as conn:
        term_id = store.insert_term("mars", now=NOW, conn=conn)
        item_id = store.upsert_item(_record("a", "A"), now=NOW, conn=conn)
        store.insert_association(term_id, item_id, now=NOW, conn=conn)

    assert store.delete_term("mars") is True
    assert store.delete_term("mars") is False
    assert store.stats()["search_association"] == 0
    assert store.find_item("a") is not None


def test_delete_item_cascades_assets():
    store = EntityStore.in_memory()
    with store.transaction() as conn:
        item_id = store.upsert_item(_record("a", "A"), now=NOW, conn=conn)
        store.replace_assets(item_id, [AssetRecord(href="x")], conn=conn)

    assert store.delete_item("a") is True
    assert store.stats()["media_asset"] == 0
    assert store.find_item("a") is None


def test_clear_removes_everything():
    store = EntityStore.in_memory()
    with store.transaction() as conn:
        term_id = store.insert_term("mars", now=NOW, conn=conn)
        item_id = store.upsert_item(_record("a", "A"), now=NOW, conn=conn)
        store.insert_association(term_id, item_id, now=NOW, conn=conn)

    assert store.clear() == 1
    assert store.stats() == {
        "media_item": 0,
        "media_asset": 0,
        "search_term": 0,
        "search_association": 0,
    }


def test_file_store_uses_cache_dir(tmp_path, monkeypatch):
    monkeypatch.setattr(cache, "CACHE_DIR", tmp_path)

    store = EntityStore()
    store.insert_term("mars", now=NOW)

    assert store.path == tmp_path / cache.DB_FILENAME
    assert store.path.exists()
    reopened = EntityStore(store.path)
    assert reopened.find_term("mars").term == "mars"


def test_cache_dir_context_overrides(tmp_path):
    with cache.cache_dir_context(tmp_path / "override"):
        path = cache.cache_db_path()

    assert path == (tmp_path / "override").resolve() / cache.DB_FILENAME


def test_schema_version_mismatch_resets(tmp_path):
    db_path = tmp_path / "catalog.db"
    store = EntityStore(db_path)
    store.insert_term("mars", now=NOW)

    conn = sqlite3.connect(db_path)
    conn.execute("UPDATE cache_metadata SET value = '0' WHERE key = 'version'")
    conn.commit()
    conn.close()

    assert EntityStore(db_path).find_term("mars") is None


def test_thumbnail_prefers_preview_asset():
    item = MediaItem(
        nasa_id="a",
        title="A",
        assets=(MediaAsset(href="orig"), MediaAsset(href="thumb", rel="preview")),
    )
    assert item.thumbnail_url == "thumb"
    assert item.asset_count == 2
    assert MediaItem(nasa_id="b", title="B", assets=(MediaAsset(href="only"),)).thumbnail_url == "only"
    assert MediaItem(nasa_id="c", title="C").thumbnail_url is None
