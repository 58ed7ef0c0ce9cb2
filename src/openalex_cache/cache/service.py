from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional

from openalex_cache.cache.aggregation import AggregationPropagator
from openalex_cache.cache.context import CacheContext
from openalex_cache.cache.debounce import DebounceScheduler
from openalex_cache.cache.index import DirectoryIndexManager
from openalex_cache.cache.models import FileObservation, StoredPayload
from openalex_cache.cache.paths import map_to_cache_path
from openalex_cache.cache.store import CacheStore
from openalex_cache.cache.urls import absolute_url

logger = logging.getLogger(__name__)


class ResponseCache:
    """
    Entry point used by request handlers.

    ``store`` writes the payload right away. Index files for the containing directory and its
    ancestors are refreshed after the debounce delay, once per burst of writes.
    """

    def __init__(self, context: CacheContext, *, scheduler: Optional[DebounceScheduler] = None):
        self._context = context
        self._store = CacheStore(context)
        self._indexes = DirectoryIndexManager(context)
        self._propagator = AggregationPropagator(context, self._indexes)
        self._scheduler = scheduler or DebounceScheduler(context.debounce_seconds)

    @property
    def context(self) -> CacheContext:
        return self._context

    @property
    def indexes(self) -> DirectoryIndexManager:
        return self._indexes

    def map_to_cache_path(self, url: str) -> Optional[Path]:
        return map_to_cache_path(url, self._context.root_path, base_url=self._context.api_base_url)

    def lookup(self, path: Path) -> Optional[Any]:
        payload, found = self._store.get(Path(path))
        if not found or payload is None:
            return None
        self._context.log_step(logger, "Cache hit. path=%s", path)
        return payload

    async def store(self, path: Path, url: str, payload: Any) -> Optional[StoredPayload]:
        path = Path(path)
        url = absolute_url(url, base_url=self._context.api_base_url)
        try:
            stored = self._store.put(path, payload)
        except OSError:
            logger.exception("Failed to write cached payload. path=%s url=%s", path, url)
            return None

        # Nothing changed on disk in dry-run mode, so there is nothing to index.
        if not stored.written:
            return stored

        directory = path.parent.resolve()
        self._context.record_observation(
            directory,
            path.stem,
            FileObservation(url=url, retrieved_at=stored.retrieved_at, content_hash=stored.content_hash),
        )
        self._scheduler.schedule(str(directory), self._update_indexes, directory)
        return stored

    async def flush(self) -> None:
        await self._scheduler.flush()

    async def close(self) -> None:
        self._scheduler.cancel_all()
        dropped = len(self._context.pending_observations)
        if dropped:
            logger.warning("Index updates dropped on close. directories=%s", dropped)
            self._context.pending_observations.clear()

    async def reindex(self) -> int:
        return self._propagator.rebuild_all()

    async def _update_indexes(self, directory: Path) -> None:
        observations = self._context.take_observations(directory)
        self._propagator.propagate(directory, observations=observations)
