"""Normalization of raw catalog search records into typed values.

Every record returned by a transport passes through :func:`normalize_record`
before it reaches the entity store, so the store only ever sees fully typed
:class:`MediaRecord` instances with defaults already applied.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Sequence

logger = logging.getLogger(__name__)

_ID_KEYS = ("nasa_id", "nasaId", "id")
_DATE_KEYS = ("date_created", "dateCreated", "created_at", "createdAt")
_MEDIA_TYPE_KEYS = ("media_type", "mediaType")
_ASSET_KEYS = ("links", "assets")
_INT_MIN = -(2**63)
_INT_MAX = 2**63 - 1


@dataclass(frozen=True, slots=True)
class AssetRecord:
    href: str | None = None
    rel: str | None = None
    render: str | None = None
    width: int = 0
    height: int = 0
    size: int = 0


@dataclass(frozen=True, slots=True)
class MediaRecord:
    nasa_id: str
    title: str
    center: str | None = None
    description: str | None = None
    date_created: datetime | None = None
    media_type: str | None = None
    location: str | None = None
    photographer: str | None = None
    keywords: tuple[str, ...] = ()
    assets: tuple[AssetRecord, ...] = ()


def normalize_record(raw: object) -> MediaRecord | None:
    """Return a :class:`MediaRecord` for *raw*, or None when it must be skipped.

    Only the first ``data`` payload is consumed. A record is skipped when that
    payload is missing or lacks a catalog identifier or a title.
    """

    if isinstance(raw, MediaRecord):
        return raw
    if not isinstance(raw, Mapping):
        return None
    payloads = raw.get("data")
    if not isinstance(payloads, Sequence) or isinstance(payloads, (str, bytes)):
        return None
    if not payloads:
        return None
    data = payloads[0]
    if not isinstance(data, Mapping) or not data:
        return None
    nasa_id = _clean_str(_first_present(data, _ID_KEYS))
    title = _clean_str(data.get("title"))
    if nasa_id is None or title is None:
        return None
    return MediaRecord(
        nasa_id=nasa_id,
        title=title,
        center=_clean_str(data.get("center")),
        description=_clean_str(data.get("description")),
        date_created=_parse_datetime(_first_present(data, _DATE_KEYS)),
        media_type=_clean_str(_first_present(data, _MEDIA_TYPE_KEYS)),
        location=_clean_str(data.get("location")),
        photographer=_clean_str(data.get("photographer")),
        keywords=_normalize_keywords(data.get("keywords")),
        assets=tuple(_normalize_assets(_first_present(raw, _ASSET_KEYS))),
    )


def normalize_records(results: Iterable[object]) -> tuple[list[MediaRecord], int]:
    """Normalize *results*, returning the usable records and the skipped count."""

    records: list[MediaRecord] = []
    skipped = 0
    for position, raw in enumerate(results):
        record = normalize_record(raw)
        if record is None:
            skipped += 1
            logger.debug("Skipping result record %d without usable data payload", position)
            continue
        records.append(record)
    return records, skipped


def normalize_asset(raw: object) -> AssetRecord | None:
    if isinstance(raw, AssetRecord):
        return raw
    if not isinstance(raw, Mapping):
        return None
    return AssetRecord(
        href=_clean_str(raw.get("href")),
        rel=_clean_str(raw.get("rel")),
        render=_clean_str(raw.get("render")),
        width=_coerce_int(raw.get("width")),
        height=_coerce_int(raw.get("height")),
        size=_coerce_int(raw.get("size")),
    )


def _normalize_assets(value: object) -> Iterable[AssetRecord]:
    if not isinstance(value, Sequence) or isinstance(value, (str, bytes)):
        return
    for raw in value:
        asset = normalize_asset(raw)
        if asset is not None:
            yield asset


def _first_present(data: Mapping, keys: Sequence[str]) -> object:
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return None


def _clean_str(value: object) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        value = str(value)
    cleaned = value.strip()
    return cleaned or None


def _coerce_int(value: object) -> int:
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, float):
        value = int(value) if value.is_integer() else 0
    elif isinstance(value, str):
        try:
            value = int(value.strip())
        except ValueError:
            return 0
    if not isinstance(value, int):
        return 0
    # SQLite INTEGER is a signed 64-bit value
    if value < _INT_MIN or value > _INT_MAX:
        return 0
    return value


def _normalize_keywords(value: object) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, Sequence):
        return ()
    keywords: list[str] = []
    seen: set[str] = set()
    for raw in value:
        keyword = _clean_str(raw)
        if keyword is None or keyword in seen:
            continue
        seen.add(keyword)
        keywords.append(keyword)
    return tuple(keywords)


def _parse_datetime(value: object) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        cleaned = value.strip()
        if not cleaned:
            return None
        if cleaned.endswith("Z"):
            cleaned = f"{cleaned[:-1]}+00:00"
        try:
            parsed = datetime.fromisoformat(cleaned)
        except ValueError:
            logger.debug("Ignoring unparseable date_created value %r", value)
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
