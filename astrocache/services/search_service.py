"""Offline-first search flow used by the client and the `astrocache search` command."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Protocol, Sequence

from ..cache import MediaItem, SearchTerm
from ..config import DEFAULT_RECENT_LIMIT
from ..errors import InvalidInputError, StorageError, TransportError
from ..text import Messages
from ..utils import normalize_term
from .cache_service import CacheReader, CacheWriter, WriteSummary

logger = logging.getLogger(__name__)


class SearchState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    RECONCILING = "reconciling"
    SETTLED = "settled"


class ErrorKind(str, Enum):
    INVALID_INPUT = "invalid_input"
    TRANSPORT = "transport"
    STORAGE = "storage"


class SearchTransport(Protocol):
    async def search(self, term: str) -> Sequence[Mapping[str, Any]]:
        """Return raw result records for *term* or raise TransportError."""
        ...


StateCallback = Callable[[str, SearchState], None]


@dataclass(slots=True)
class SearchResponse:
    term: str
    items: list[MediaItem] = field(default_factory=list)
    state: SearchState = SearchState.SETTLED
    error: str | None = None
    error_kind: ErrorKind | None = None
    offline: bool = False
    summary: WriteSummary | None = None


class SearchOrchestrator:
    """Fetch from the transport, reconcile into the cache and read back.

    Each call to :meth:`search` moves through ``IDLE -> FETCHING -> RECONCILING
    -> SETTLED``. A transport failure falls back to whatever the cache holds
    for the term; when that is non-empty the failure is logged and the cached
    items are returned with ``offline=True``. A storage failure while
    reconciling ends the attempt with ``ErrorKind.STORAGE``.
    """

    def __init__(
        self,
        transport: SearchTransport,
        writer: CacheWriter,
        reader: CacheReader,
        *,
        on_state_change: StateCallback | None = None,
    ) -> None:
        self._transport = transport
        self._writer = writer
        self._reader = reader
        self._on_state_change = on_state_change
        self._in_flight = 0

    @property
    def is_loading(self) -> bool:
        return self._in_flight > 0

    async def search(self, term: str | None) -> SearchResponse:
        clean_term = normalize_term(term)
        if not clean_term:
            self._emit(clean_term, SearchState.SETTLED)
            return SearchResponse(
                term=clean_term,
                error=Messages.ERROR_EMPTY_TERM,
                error_kind=ErrorKind.INVALID_INPUT,
            )
        self._in_flight += 1
        try:
            self._emit(clean_term, SearchState.FETCHING)
            try:
                results = await self._transport.search(clean_term)
            except TransportError as exc:
                return await self._fallback(clean_term, exc)
            self._emit(clean_term, SearchState.RECONCILING)
            try:
                summary = await self._writer.record_search_results(clean_term, results)
                items = await self._reader.items_for_term(clean_term)
            except StorageError as exc:
                logger.exception("Storage failure while caching results for %r", clean_term)
                return SearchResponse(
                    term=clean_term,
                    error=str(exc),
                    error_kind=ErrorKind.STORAGE,
                )
            return SearchResponse(term=clean_term, items=items, summary=summary)
        finally:
            self._in_flight -= 1
            self._emit(clean_term, SearchState.SETTLED)

    async def load_cached(self, term: str | None) -> list[MediaItem]:
        """Return cached items for *term* without touching the transport."""

        clean_term = normalize_term(term)
        if not clean_term:
            raise InvalidInputError(Messages.ERROR_EMPTY_TERM)
        return await self._reader.items_for_term(clean_term)

    async def recent_terms(self, limit: int = DEFAULT_RECENT_LIMIT) -> list[SearchTerm]:
        return await self._reader.recent_terms(limit)

    async def _fallback(self, term: str, exc: TransportError) -> SearchResponse:
        logger.warning("Search request for %r failed: %s", term, exc)
        try:
            items = await self._reader.items_for_term(term)
        except StorageError:
            logger.error(
                "Storage failure while reading cached results for %r",
                term,
                exc_info=True,
            )
            items = []
        if items:
            logger.info("Serving %d cached item(s) for %r", len(items), term)
            return SearchResponse(term=term, items=items, offline=True)
        return SearchResponse(
            term=term,
            error=str(exc),
            error_kind=ErrorKind.TRANSPORT,
        )

    def _emit(self, term: str, state: SearchState) -> None:
        if self._on_state_change is not None:
            self._on_state_change(term, state)
