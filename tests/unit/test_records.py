from datetime import datetime, timezone

from astrocache.records import (
    AssetRecord,
    MediaRecord,
    normalize_asset,
    normalize_record,
    normalize_records,
)


def test_normalize_record_reads_first_data_payload():
    raw = {
        "data": [
            {
                "nasa_id": " PIA001 ",
                "title": "Mars Rover",
                "center": "JPL",
                "description": "  ",
                "date_created": "2020-07-30T12:00:00Z",
                "media_type": "image",
                "keywords": ["Mars", "Rover", "Mars"],
            },
            {"nasa_id": "ignored", "title": "Ignored"},
        ],
        "links": [
            {"href": "https://example.com/thumb.jpg", "rel": "preview", "render": "image"},
            {"href": "https://example.com/orig.jpg", "width": "640", "height": 480.0},
        ],
    }

    record = normalize_record(raw)

    assert record is not None
    assert record.nasa_id == "PIA001"
    assert record.title == "Mars Rover"
    assert record.center == "JPL"
    assert record.description is None
    assert record.date_created == datetime(2020, 7, 30, 12, 0, tzinfo=timezone.utc)
    assert record.media_type == "image"
    assert record.keywords == ("Mars", "Rover")
    assert record.assets[0] == AssetRecord(
        href="https://example.com/thumb.jpg", rel="preview", render="image"
    )
    assert record.assets[1].width == 640
    assert record.assets[1].height == 480
    assert record.assets[1].size == 0


def test_normalize_record_accepts_camel_case_keys():
    record = normalize_record(
        {
            "data": [{"nasaId": "x1", "title": "T", "dateCreated": "2021-01-01T00:00:00"}],
            "assets": [{"href": "h"}],
        }
    )

    assert record is not None
    assert record.nasa_id == "x1"
    assert record.date_created.tzinfo is not None
    assert record.assets == (AssetRecord(href="h"),)


def test_normalize_record_skips_missing_identity():
    assert normalize_record({"data": []}) is None
    assert normalize_record({"data": [{}]}) is None
    assert normalize_record({"data": [{"title": "No id"}]}) is None
    assert normalize_record({"data": [{"nasa_id": "x", "title": "  "}]}) is None
    assert normalize_record({"links": []}) is None
    assert normalize_record("not a record") is None


def test_normalize_record_passes_through_media_record():
    record = MediaRecord(nasa_id="a", title="A")
    assert normalize_record(record) is record


def test_normalize_record_ignores_bad_dates_and_keyword_string():
    record = normalize_record(
        {"data": [{"nasa_id": "a", "title": "A", "date_created": "yesterday", "keywords": "moon"}]}
    )

    assert record is not None
    assert record.date_created is None
    assert record.keywords == ("moon",)
    assert record.assets == ()


def test_normalize_records_counts_skipped():
    records, skipped = normalize_records(
        [
            {"data": [{"nasa_id": "a", "title": "A"}]},
            {"data": []},
            {"data": [{"nasa_id": "b", "title": "B"}], "links": None},
        ]
    )

    assert [record.nasa_id for record in records] == ["a", "b"]
    assert skipped == 1


def test_normalize_asset_defaults():
    assert normalize_asset("nope") is None
    asset = normalize_asset({"width": True, "size": "abc"})
    assert asset == AssetRecord()


def test_normalize_asset_zeroes_values_outside_sqlite_integer_range():
    asset = normalize_asset(
        {"href": "x", "size": 2**64, "width": -(2**63) - 1, "height": str(2**63)}
    )

    assert asset == AssetRecord(href="x")
    assert normalize_asset({"size": 2**63 - 1}).size == 2**63 - 1
    assert normalize_asset({"size": float("inf")}).size == 0
