"""Entity store for the local search cache backed by SQLite."""

from __future__ import annotations

import json
import logging
import os
import sqlite3
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from threading import RLock
from typing import Iterable, Iterator, Sequence

from .errors import StorageError
from .records import AssetRecord, MediaRecord
from .text import Messages

logger = logging.getLogger(__name__)

DEFAULT_CACHE_DIR = Path(os.path.expanduser("~")) / ".astrocache"
CACHE_DIR = DEFAULT_CACHE_DIR
_CACHE_DIR_OVERRIDE: ContextVar[Path | None] = ContextVar(
    "astrocache_cache_dir_override",
    default=None,
)
CACHE_VERSION = 1
DB_FILENAME = "catalog.db"
MEMORY_PATH = ":memory:"
_TABLES = ("media_item", "media_asset", "search_term", "search_association")


@dataclass(frozen=True, slots=True)
class MediaAsset:
    href: str | None = None
    rel: str | None = None
    render: str | None = None
    width: int = 0
    height: int = 0
    size: int = 0


@dataclass(frozen=True, slots=True)
class MediaItem:
    nasa_id: str
    title: str
    center: str | None = None
    description: str | None = None
    date_created: datetime | None = None
    media_type: str | None = None
    location: str | None = None
    photographer: str | None = None
    keywords: tuple[str, ...] = ()
    assets: tuple[MediaAsset, ...] = ()

    @property
    def asset_count(self) -> int:
        return len(self.assets)

    @property
    def thumbnail_url(self) -> str | None:
        """Return the preview rendition href, falling back to the first asset."""

        for asset in self.assets:
            if asset.rel == "preview" and asset.href:
                return asset.href
        if self.assets:
            return self.assets[0].href
        return None


@dataclass(frozen=True, slots=True)
class SearchTerm:
    term: str
    created_at: datetime
    last_searched_at: datetime


def _chunk_values(values: Sequence[object], size: int) -> Iterable[Sequence[object]]:
    for idx in range(0, len(values), size):
        yield values[idx : idx + size]


def _resolve_cache_dir() -> Path:
    override = _CACHE_DIR_OVERRIDE.get()
    return override if override is not None else CACHE_DIR


@contextmanager
def cache_dir_context(path: Path | str | None):
    """Temporarily override the cache directory for the current context."""

    if path is None:
        yield
        return
    dir_path = Path(path).expanduser().resolve()
    if dir_path.exists() and not dir_path.is_dir():
        raise NotADirectoryError(f"Path is not a directory: {dir_path}")
    token = _CACHE_DIR_OVERRIDE.set(dir_path)
    try:
        yield
    finally:
        _CACHE_DIR_OVERRIDE.reset(token)


def ensure_cache_dir() -> Path:
    cache_dir = _resolve_cache_dir()
    cache_dir.mkdir(parents=True, exist_ok=True)
    return cache_dir


def set_cache_dir(path: Path | str | None) -> None:
    global CACHE_DIR
    if path is None:
        CACHE_DIR = DEFAULT_CACHE_DIR
        return
    dir_path = Path(path).expanduser().resolve()
    if dir_path.exists() and not dir_path.is_dir():
        raise NotADirectoryError(f"Path is not a directory: {dir_path}")
    CACHE_DIR = dir_path


def cache_db_path() -> Path:
    """Return the absolute path to the SQLite cache database."""

    cache_dir = ensure_cache_dir()
    return cache_dir / DB_FILENAME


def _to_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    # fixed width so that text ordering matches chronological ordering
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _connect(db_path: Path | str) -> sqlite3.Connection:
    if str(db_path) == MEMORY_PATH:
        conn = sqlite3.connect(MEMORY_PATH, check_same_thread=False)
    else:
        conn = sqlite3.connect(db_path, timeout=5.0)
    conn.row_factory = sqlite3.Row
    if str(db_path) != MEMORY_PATH:
        conn.execute("PRAGMA journal_mode = WAL;")
        conn.execute("PRAGMA synchronous = NORMAL;")
    conn.execute("PRAGMA temp_store = MEMORY;")
    conn.execute("PRAGMA busy_timeout = 5000;")
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


def _table_exists(conn: sqlite3.Connection, table: str) -> bool:
    row = conn.execute(
        "SELECT name FROM sqlite_master WHERE type = 'table' AND name = ?",
        (table,),
    ).fetchone()
    return row is not None


def _schema_needs_reset(conn: sqlite3.Connection) -> bool:
    if not _table_exists(conn, "cache_metadata"):
        return any(_table_exists(conn, table) for table in _TABLES)
    row = conn.execute(
        "SELECT value FROM cache_metadata WHERE key = 'version'"
    ).fetchone()
    if row is None:
        return True
    try:
        return int(row["value"]) != CACHE_VERSION
    except (TypeError, ValueError):
        return True


def _reset_schema(conn: sqlite3.Connection) -> None:
    logger.info("Resetting cache schema to version %d", CACHE_VERSION)
    conn.execute("PRAGMA foreign_keys = OFF;")
    conn.executescript(
        """
        DROP TABLE IF EXISTS search_association;
        DROP TABLE IF EXISTS search_term;
        DROP TABLE IF EXISTS media_asset;
        DROP TABLE IF EXISTS media_item;
        DROP TABLE IF EXISTS cache_metadata;
        """
    )
    conn.execute("PRAGMA foreign_keys = ON;")


def _ensure_schema(conn: sqlite3.Connection) -> None:
    if _schema_needs_reset(conn):
        _reset_schema(conn)
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS cache_metadata (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS media_item (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            nasa_id TEXT NOT NULL UNIQUE CHECK (length(nasa_id) > 0),
            title TEXT NOT NULL,
            center TEXT,
            description TEXT,
            date_created TEXT,
            media_type TEXT,
            location TEXT,
            photographer TEXT,
            keywords TEXT NOT NULL DEFAULT '[]',
            updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS media_asset (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            item_id INTEGER NOT NULL REFERENCES media_item(id) ON DELETE CASCADE,
            position INTEGER NOT NULL,
            href TEXT,
            rel TEXT,
            render TEXT,
            width INTEGER NOT NULL DEFAULT 0,
            height INTEGER NOT NULL DEFAULT 0,
            size INTEGER NOT NULL DEFAULT 0
        );

        CREATE TABLE IF NOT EXISTS search_term (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            term TEXT NOT NULL UNIQUE,
            created_at TEXT NOT NULL,
            last_searched_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS search_association (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            term_id INTEGER NOT NULL REFERENCES search_term(id) ON DELETE CASCADE,
            item_id INTEGER NOT NULL REFERENCES media_item(id) ON DELETE CASCADE,
            created_at TEXT NOT NULL,
            UNIQUE(term_id, item_id)
        );

        CREATE INDEX IF NOT EXISTS idx_media_asset_item
            ON media_asset(item_id, position);

        CREATE INDEX IF NOT EXISTS idx_search_association_item
            ON search_association(item_id);

        CREATE INDEX IF NOT EXISTS idx_search_term_recency
            ON search_term(last_searched_at);
        """
    )
    conn.execute(
        "INSERT OR REPLACE INTO cache_metadata (key, value) VALUES ('version', ?)",
        (str(CACHE_VERSION),),
    )
    conn.commit()


def _item_from_row(row: sqlite3.Row, assets: Sequence[MediaAsset]) -> MediaItem:
    try:
        keywords = tuple(json.loads(row["keywords"] or "[]"))
    except (TypeError, ValueError):
        keywords = ()
    return MediaItem(
        nasa_id=row["nasa_id"],
        title=row["title"],
        center=row["center"],
        description=row["description"],
        date_created=_from_iso(row["date_created"]),
        media_type=row["media_type"],
        location=row["location"],
        photographer=row["photographer"],
        keywords=keywords,
        assets=tuple(assets),
    )


def _term_from_row(row: sqlite3.Row) -> SearchTerm:
    return SearchTerm(
        term=row["term"],
        created_at=_from_iso(row["created_at"]),
        last_searched_at=_from_iso(row["last_searched_at"]),
    )


class EntityStore:
    """Durable keyed storage for media items, assets, search terms and their joins.

    A file-backed store opens one connection per operation so readers never wait
    on writers (WAL). ``EntityStore.in_memory()`` keeps a single private
    connection guarded by a lock, which gives every test an isolated store.

    Entity operations accept an optional ``conn``; pass the connection yielded by
    :meth:`transaction` to run several of them atomically.
    """

    def __init__(self, path: Path | str | None = None) -> None:
        if path is None:
            self.path: Path | str = cache_db_path()
        elif str(path) == MEMORY_PATH:
            self.path = MEMORY_PATH
        else:
            self.path = Path(path).expanduser()
        self._lock = RLock()
        self._shared: sqlite3.Connection | None = None
        self._schema_ready = False
        if self.path == MEMORY_PATH:
            try:
                self._shared = _connect(MEMORY_PATH)
                _ensure_schema(self._shared)
            except sqlite3.Error as exc:
                raise StorageError(Messages.ERROR_STORAGE.format(reason=str(exc))) from exc
            self._schema_ready = True

    @classmethod
    def in_memory(cls) -> "EntityStore":
        return cls(MEMORY_PATH)

    def close(self) -> None:
        with self._lock:
            if self._shared is not None:
                self._shared.close()

    # -- connections -------------------------------------------------------

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        """Yield a ready connection, translating SQLite failures to StorageError."""

        if self._shared is not None:
            with self._lock:
                try:
                    yield self._shared
                except sqlite3.Error as exc:
                    raise StorageError(Messages.ERROR_STORAGE.format(reason=str(exc))) from exc
            return
        try:
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
            conn = _connect(self.path)
        except (OSError, sqlite3.Error) as exc:
            raise StorageError(Messages.ERROR_STORAGE.format(reason=str(exc))) from exc
        try:
            if not self._schema_ready:
                with self._lock:
                    if not self._schema_ready:
                        _ensure_schema(conn)
                        self._schema_ready = True
            yield conn
        except sqlite3.Error as exc:
            raise StorageError(Messages.ERROR_STORAGE.format(reason=str(exc))) from exc
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection inside ``BEGIN IMMEDIATE``; roll back on any error."""

        with self.connect() as conn:
            with conn:
                conn.execute("BEGIN IMMEDIATE;")
                yield conn

    @contextmanager
    def _use(self, conn: sqlite3.Connection | None) -> Iterator[sqlite3.Connection]:
        if conn is not None:
            try:
                yield conn
            except sqlite3.Error as exc:
                raise StorageError(Messages.ERROR_STORAGE.format(reason=str(exc))) from exc
            return
        with self.connect() as connection:
            with connection:
                yield connection

    # -- lookups -----------------------------------------------------------

    def find_item(
        self,
        nasa_id: str,
        conn: sqlite3.Connection | None = None,
    ) -> MediaItem | None:
        with self._use(conn) as connection:
            row = connection.execute(
                "SELECT * FROM media_item WHERE nasa_id = ?",
                (nasa_id,),
            ).fetchone()
            if row is None:
                return None
            assets = _load_assets(connection, [int(row["id"])])
            return _item_from_row(row, assets.get(int(row["id"]), ()))

    def find_term(
        self,
        term: str,
        conn: sqlite3.Connection | None = None,
    ) -> SearchTerm | None:
        with self._use(conn) as connection:
            row = connection.execute(
                "SELECT term, created_at, last_searched_at FROM search_term WHERE term = ?",
                (term,),
            ).fetchone()
            return _term_from_row(row) if row is not None else None

    def find_association(
        self,
        term: str,
        nasa_id: str,
        conn: sqlite3.Connection | None = None,
    ) -> bool:
        with self._use(conn) as connection:
            row = connection.execute(
                """
                SELECT 1
                FROM search_association AS a
                JOIN search_term AS t ON t.id = a.term_id
                JOIN media_item AS i ON i.id = a.item_id
                WHERE t.term = ? AND i.nasa_id = ?
                """,
                (term, nasa_id),
            ).fetchone()
            return row is not None

    def term_id(self, term: str, conn: sqlite3.Connection | None = None) -> int | None:
        with self._use(conn) as connection:
            row = connection.execute(
                "SELECT id FROM search_term WHERE term = ?",
                (term,),
            ).fetchone()
            return int(row["id"]) if row is not None else None

    def item_id(self, nasa_id: str, conn: sqlite3.Connection | None = None) -> int | None:
        with self._use(conn) as connection:
            row = connection.execute(
                "SELECT id FROM media_item WHERE nasa_id = ?",
                (nasa_id,),
            ).fetchone()
            return int(row["id"]) if row is not None else None

    # -- search terms ------------------------------------------------------

    def insert_term(
        self,
        term: str,
        *,
        now: datetime,
        conn: sqlite3.Connection | None = None,
    ) -> int:
        stamp = _to_iso(now)
        with self._use(conn) as connection:
            cursor = connection.execute(
                """
                INSERT INTO search_term (term, created_at, last_searched_at)
                VALUES (?, ?, ?)
                """,
                (term, stamp, stamp),
            )
            return int(cursor.lastrowid)

    def touch_term(
        self,
        term_id: int,
        *,
        now: datetime,
        conn: sqlite3.Connection | None = None,
    ) -> None:
        with self._use(conn) as connection:
            connection.execute(
                "UPDATE search_term SET last_searched_at = ? WHERE id = ?",
                (_to_iso(now), int(term_id)),
            )

    def delete_term(self, term: str, conn: sqlite3.Connection | None = None) -> bool:
        """Delete *term* and its associations; cached items are kept."""

        with self._use(conn) as connection:
            cursor = connection.execute("DELETE FROM search_term WHERE term = ?", (term,))
            return cursor.rowcount > 0

    # -- media items -------------------------------------------------------

    def upsert_item(
        self,
        record: MediaRecord,
        *,
        now: datetime,
        conn: sqlite3.Connection | None = None,
    ) -> int:
        """Insert or overwrite every scalar attribute of *record*; return its row id."""

        values = (
            record.title,
            record.center,
            record.description,
            _to_iso(record.date_created) if record.date_created is not None else None,
            record.media_type,
            record.location,
            record.photographer,
            json.dumps(list(record.keywords), ensure_ascii=False),
            _to_iso(now),
        )
        with self._use(conn) as connection:
            existing = self.item_id(record.nasa_id, conn=connection)
            if existing is None:
                cursor = connection.execute(
                    """
                    INSERT INTO media_item (
                        title,
                        center,
                        description,
                        date_created,
                        media_type,
                        location,
                        photographer,
                        keywords,
                        updated_at,
                        nasa_id
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (*values, record.nasa_id),
                )
                return int(cursor.lastrowid)
            connection.execute(
                """
                UPDATE media_item SET
                    title = ?,
                    center = ?,
                    description = ?,
                    date_created = ?,
                    media_type = ?,
                    location = ?,
                    photographer = ?,
                    keywords = ?,
                    updated_at = ?
                WHERE id = ?
                """,
                (*values, existing),
            )
            return existing

    def delete_item(self, nasa_id: str, conn: sqlite3.Connection | None = None) -> bool:
        """Delete an item together with its assets and associations."""

        with self._use(conn) as connection:
            cursor = connection.execute("DELETE FROM media_item WHERE nasa_id = ?", (nasa_id,))
            return cursor.rowcount > 0

    def replace_assets(
        self,
        item_id: int,
        assets: Sequence[AssetRecord],
        conn: sqlite3.Connection | None = None,
    ) -> int:
        """Delete every asset owned by *item_id*, then insert *assets* in order."""

        with self._use(conn) as connection:
            connection.execute(
                "DELETE FROM media_asset WHERE item_id = ?",
                (int(item_id),),
            )
            connection.executemany(
                """
                INSERT INTO media_asset (
                    item_id,
                    position,
                    href,
                    rel,
                    render,
                    width,
                    height,
                    size
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        int(item_id),
                        position,
                        asset.href,
                        asset.rel,
                        asset.render,
                        int(asset.width),
                        int(asset.height),
                        int(asset.size),
                    )
                    for position, asset in enumerate(assets)
                ],
            )
            return len(assets)

    # -- associations ------------------------------------------------------

    def insert_association(
        self,
        term_id: int,
        item_id: int,
        *,
        now: datetime,
        conn: sqlite3.Connection | None = None,
    ) -> bool:
        """Create the (term, item) join unless it exists; return True when created."""

        with self._use(conn) as connection:
            cursor = connection.execute(
                """
                INSERT OR IGNORE INTO search_association (term_id, item_id, created_at)
                VALUES (?, ?, ?)
                """,
                (int(term_id), int(item_id), _to_iso(now)),
            )
            return cursor.rowcount > 0

    def prune_associations(
        self,
        term_id: int,
        keep_item_ids: Iterable[int],
        conn: sqlite3.Connection | None = None,
    ) -> int:
        """Delete associations of *term_id* whose item is not in *keep_item_ids*."""

        keep = {int(value) for value in keep_item_ids}
        with self._use(conn) as connection:
            rows = connection.execute(
                "SELECT item_id FROM search_association WHERE term_id = ?",
                (int(term_id),),
            ).fetchall()
            stale = [int(row["item_id"]) for row in rows if int(row["item_id"]) not in keep]
            for chunk in _chunk_values(stale, 900):
                placeholders = ", ".join("?" for _ in chunk)
                connection.execute(
                    f"""
                    DELETE FROM search_association
                    WHERE term_id = ? AND item_id IN ({placeholders})
                    """,
                    (int(term_id), *chunk),
                )
            return len(stale)

    # -- read queries ------------------------------------------------------

    def items_for_term(
        self,
        term: str,
        conn: sqlite3.Connection | None = None,
    ) -> list[MediaItem]:
        with self._use(conn) as connection:
            rows = connection.execute(
                """
                SELECT i.*
                FROM media_item AS i
                JOIN search_association AS a ON a.item_id = i.id
                JOIN search_term AS t ON t.id = a.term_id
                WHERE t.term = ?
                ORDER BY i.title COLLATE BINARY ASC, i.nasa_id COLLATE BINARY ASC
                """,
                (term,),
            ).fetchall()
            assets = _load_assets(connection, [int(row["id"]) for row in rows])
            return [_item_from_row(row, assets.get(int(row["id"]), ())) for row in rows]

    def recent_terms(
        self,
        limit: int,
        conn: sqlite3.Connection | None = None,
    ) -> list[SearchTerm]:
        with self._use(conn) as connection:
            rows = connection.execute(
                """
                SELECT term, created_at, last_searched_at
                FROM search_term
                ORDER BY last_searched_at DESC, id DESC
                LIMIT ?
                """,
                (int(limit),),
            ).fetchall()
            return [_term_from_row(row) for row in rows]

    def stats(self, conn: sqlite3.Connection | None = None) -> dict[str, int]:
        """Return row counts for every entity table."""

        with self._use(conn) as connection:
            counts: dict[str, int] = {}
            for table in _TABLES:
                row = connection.execute(f"SELECT COUNT(*) AS total FROM {table}").fetchone()
                counts[table] = int(row["total"] if row is not None else 0)
            return counts

    def clear(self) -> int:
        """Remove every cached row, returning the number of items removed."""

        with self.transaction() as conn:
            row = conn.execute("SELECT COUNT(*) AS total FROM media_item").fetchone()
            total = int(row["total"] if row is not None else 0)
            for table in reversed(_TABLES):
                conn.execute(f"DELETE FROM {table}")
            return total


def _load_assets(
    conn: sqlite3.Connection,
    item_ids: Sequence[int],
) -> dict[int, list[MediaAsset]]:
    results: dict[int, list[MediaAsset]] = {}
    unique_ids = list(dict.fromkeys(item_ids))
    for chunk in _chunk_values(unique_ids, 900):
        placeholders = ", ".join("?" for _ in chunk)
        rows = conn.execute(
            f"""
            SELECT item_id, href, rel, render, width, height, size
            FROM media_asset
            WHERE item_id IN ({placeholders})
            ORDER BY item_id ASC, position ASC
            """,
            tuple(chunk),
        ).fetchall()
        for row in rows:
            results.setdefault(int(row["item_id"]), []).append(
                MediaAsset(
                    href=row["href"],
                    rel=row["rel"],
                    render=row["render"],
                    width=int(row["width"] or 0),
                    height=int(row["height"] or 0),
                    size=int(row["size"] or 0),
                )
            )
    return results
