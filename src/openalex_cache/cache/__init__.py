from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from openalex_cache.cache.context import CacheContext
    from openalex_cache.cache.service import ResponseCache

__all__ = ["CacheContext", "ResponseCache"]


def __getattr__(name: str) -> Any:
    if name == "CacheContext":
        from openalex_cache.cache.context import CacheContext

        return CacheContext
    if name == "ResponseCache":
        from openalex_cache.cache.service import ResponseCache

        return ResponseCache
    raise AttributeError(name)
