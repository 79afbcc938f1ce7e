"""Cache writer and reader built on top of the entity store."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, Iterable, Sequence

from ..cache import EntityStore, MediaItem, SearchTerm
from ..config import DEFAULT_RECENT_LIMIT, RecencyPolicy
from ..errors import InvalidInputError
from ..records import MediaRecord, normalize_records
from ..text import Messages
from ..utils import ensure_positive, normalize_term

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class WriteSummary:
    term: str
    items_written: int
    records_skipped: int
    associations_created: int
    associations_pruned: int


class CacheWriter:
    """Reconcile a batch of search results for one term into the entity store.

    A write for a term runs as a single transaction on a worker thread. Writes
    for the same term are serialized; writes for different terms are not. Once
    a write has started it runs to completion even if the awaiting caller is
    cancelled.
    """

    def __init__(
        self,
        store: EntityStore,
        *,
        clock: Clock | None = None,
        recency_policy: RecencyPolicy | str = RecencyPolicy.REFRESH_ON_SEARCH,
    ) -> None:
        self._store = store
        self._clock = clock or utc_now
        self._recency_policy = RecencyPolicy(recency_policy)
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self._pending: set[asyncio.Task] = set()

    @property
    def recency_policy(self) -> RecencyPolicy:
        return self._recency_policy

    async def record_search_results(
        self,
        term: str,
        results: Iterable[object],
    ) -> WriteSummary:
        clean_term = normalize_term(term)
        if not clean_term:
            raise InvalidInputError(Messages.ERROR_EMPTY_TERM)
        records, skipped = normalize_records(results)
        task = asyncio.ensure_future(self._write_locked(clean_term, records, skipped))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return await asyncio.shield(task)

    async def forget_term(self, term: str) -> bool:
        """Delete *term* and its associations; items stay cached for other terms."""

        clean_term = normalize_term(term)
        if not clean_term:
            raise InvalidInputError(Messages.ERROR_EMPTY_TERM)
        async with self._term_lock(clean_term):
            removed = await asyncio.to_thread(self._store.delete_term, clean_term)
        if removed:
            logger.info("Forgot search term %r", clean_term)
        return removed

    async def drain(self) -> None:
        """Wait for every started write, including ones whose caller was cancelled."""

        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @asynccontextmanager
    async def _term_lock(self, term: str) -> AsyncIterator[None]:
        lock = self._locks.get(term)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[term] = lock
        self._lock_users[term] = self._lock_users.get(term, 0) + 1
        try:
            async with lock:
                yield
        finally:
            # drop the lock once no writer holds or waits for it
            self._lock_users[term] -= 1
            if not self._lock_users[term]:
                del self._lock_users[term]
                del self._locks[term]

    async def _write_locked(
        self,
        term: str,
        records: Sequence[MediaRecord],
        skipped: int,
    ) -> WriteSummary:
        async with self._term_lock(term):
            summary = await asyncio.to_thread(self.write, term, records, skipped)
        logger.info(
            "Cached %d item(s) for %r (skipped=%d, linked=%d, pruned=%d)",
            summary.items_written,
            summary.term,
            summary.records_skipped,
            summary.associations_created,
            summary.associations_pruned,
        )
        return summary

    def write(
        self,
        term: str,
        records: Sequence[MediaRecord],
        skipped: int = 0,
    ) -> WriteSummary:
        """Run the reconciliation transaction synchronously."""

        now = self._clock()
        store = self._store
        created = 0
        keep: set[int] = set()
        with store.transaction() as conn:
            term_id = store.term_id(term, conn=conn)
            if term_id is None:
                term_id = store.insert_term(term, now=now, conn=conn)
            elif self._recency_policy is RecencyPolicy.REFRESH_ON_SEARCH:
                store.touch_term(term_id, now=now, conn=conn)
            for record in records:
                item_id = store.upsert_item(record, now=now, conn=conn)
                store.replace_assets(item_id, record.assets, conn=conn)
                if store.insert_association(term_id, item_id, now=now, conn=conn):
                    created += 1
                keep.add(item_id)
            pruned = store.prune_associations(term_id, keep, conn=conn)
        return WriteSummary(
            term=term,
            items_written=len(records),
            records_skipped=skipped,
            associations_created=created,
            associations_pruned=pruned,
        )


class CacheReader:
    """Read-only queries over the entity store, run off the event loop."""

    def __init__(self, store: EntityStore) -> None:
        self._store = store

    async def items_for_term(self, term: str) -> list[MediaItem]:
        """Return items linked to *term*, ordered by title then NASA id."""

        clean_term = normalize_term(term)
        if not clean_term:
            return []
        return await asyncio.to_thread(self._store.items_for_term, clean_term)

    async def recent_terms(self, limit: int = DEFAULT_RECENT_LIMIT) -> list[SearchTerm]:
        """Return up to *limit* terms, most recently searched first.

        Recency is ``last_searched_at``. With the default refresh policy every
        recorded search updates it; with ``RecencyPolicy.FIRST_SEARCH`` it stays
        at the time the term was first recorded.
        """

        ensure_positive(limit, "limit")
        return await asyncio.to_thread(self._store.recent_terms, limit)

    async def find_item(self, nasa_id: str) -> MediaItem | None:
        clean_id = normalize_term(nasa_id)
        if not clean_id:
            return None
        return await asyncio.to_thread(self._store.find_item, clean_id)
