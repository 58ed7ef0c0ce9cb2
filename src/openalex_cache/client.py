from __future__ import annotations

import logging
from typing import Any

from openalex_cache.cache.service import ResponseCache
from openalex_cache.cache.urls import absolute_url
from openalex_cache.fetcher import ApiFetcher

logger = logging.getLogger(__name__)


class CachingClient:
    """Serves API requests from the cache, fetching and storing on a miss."""

    def __init__(self, *, cache: ResponseCache, fetcher: ApiFetcher):
        self._cache = cache
        self._fetcher = fetcher

    async def get(self, url: str) -> Any:
        url = absolute_url(url, base_url=self._cache.context.api_base_url)

        path = self._cache.map_to_cache_path(url)
        if path is None:
            logger.debug("URL is not cacheable, passing through. url=%s", url)
            return await self._fetcher.fetch_json(url)

        payload = self._cache.lookup(path)
        if payload is not None:
            return payload

        logger.debug("Cache miss. url=%s path=%s", url, path)
        payload = await self._fetcher.fetch_json(url)
        await self._cache.store(path, url, payload)
        return payload
