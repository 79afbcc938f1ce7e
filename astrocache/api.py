"""Public Python API for astrocache."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from pathlib import Path

from .cache import EntityStore, MediaItem, SearchTerm, cache_dir_context, set_cache_dir
from .config import (
    Config,
    config_dir_context,
    config_from_json,
    load_config,
    resolve_recency_policy,
    set_config_dir,
)
from .errors import InvalidInputError
from .providers.nasa import NasaImagesTransport
from .services.cache_service import CacheReader, CacheWriter, Clock
from .services.search_service import (
    SearchOrchestrator,
    SearchResponse,
    SearchTransport,
    StateCallback,
)


def set_data_dir(path: Path | str | None) -> None:
    """Set the base directory for config and cache data."""
    set_config_dir(path)
    set_cache_dir(path)


class AstrocacheClient:
    """Session-style async API combining the transport, cache and config.

    The client owns one :class:`EntityStore`. Use ``async with`` (or call
    :meth:`aclose`) so pending cache writes finish before the store closes.
    """

    def __init__(
        self,
        *,
        store: EntityStore | None = None,
        transport: SearchTransport | None = None,
        data_dir: Path | str | None = None,
        config: Config | Mapping[str, object] | str | None = None,
        use_config: bool = True,
        clock: Clock | None = None,
        on_state_change: StateCallback | None = None,
    ) -> None:
        self.data_dir = data_dir
        self.config = self._resolve_config(config, use_config)
        if store is None:
            with cache_dir_context(data_dir):
                store = EntityStore()
        if transport is None:
            transport = NasaImagesTransport(
                api_url=self.config.api_url,
                timeout=self.config.timeout,
            )
        self.store = store
        self.transport = transport
        self.writer = CacheWriter(
            store,
            clock=clock,
            recency_policy=resolve_recency_policy(self.config.recency_policy),
        )
        self.reader = CacheReader(store)
        self.orchestrator = SearchOrchestrator(
            transport,
            self.writer,
            self.reader,
            on_state_change=on_state_change,
        )

    @classmethod
    def in_memory(
        cls,
        *,
        transport: SearchTransport | None = None,
        config: Config | Mapping[str, object] | str | None = None,
        clock: Clock | None = None,
        on_state_change: StateCallback | None = None,
    ) -> "AstrocacheClient":
        """Return a client backed by a private in-memory store."""

        return cls(
            store=EntityStore.in_memory(),
            transport=transport,
            config=config,
            use_config=False,
            clock=clock,
            on_state_change=on_state_change,
        )

    def _resolve_config(
        self,
        config: Config | Mapping[str, object] | str | None,
        use_config: bool,
    ) -> Config:
        if isinstance(config, Config):
            return config
        base = Config()
        if use_config:
            with config_dir_context(self.data_dir):
                base = load_config()
        if config is None:
            return base
        try:
            return config_from_json(config, base=base)
        except ValueError as exc:
            raise InvalidInputError(str(exc)) from exc

    @property
    def is_loading(self) -> bool:
        return self.orchestrator.is_loading

    async def search(self, term: str) -> SearchResponse:
        """Search remotely, cache the results and return them from the cache."""

        return await self.orchestrator.search(term)

    async def load_cached(self, term: str) -> list[MediaItem]:
        return await self.orchestrator.load_cached(term)

    async def recent_terms(self, limit: int | None = None) -> list[SearchTerm]:
        effective = self.config.recent_limit if limit is None else limit
        return await self.orchestrator.recent_terms(effective)

    async def find_item(self, nasa_id: str) -> MediaItem | None:
        return await self.reader.find_item(nasa_id)

    async def forget_term(self, term: str) -> bool:
        return await self.writer.forget_term(term)

    async def stats(self) -> dict[str, int]:
        return await asyncio.to_thread(self.store.stats)

    async def clear_cache(self) -> int:
        await self.writer.drain()
        return await asyncio.to_thread(self.store.clear)

    async def aclose(self) -> None:
        await self.writer.drain()
        self.store.close()

    async def __aenter__(self) -> "AstrocacheClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


async def search(
    term: str,
    *,
    data_dir: Path | str | None = None,
    transport: SearchTransport | None = None,
) -> SearchResponse:
    """Run a single search with a short-lived client."""

    async with AstrocacheClient(data_dir=data_dir, transport=transport) as client:
        return await client.search(term)
