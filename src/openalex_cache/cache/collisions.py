from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from openalex_cache.cache.models import CollisionInfo, FileEntry
from openalex_cache.cache.paths import JSON_SUFFIX, OPAQUE_PREFIX, decode_filename, relative_cache_path
from openalex_cache.cache.urls import DEFAULT_API_BASE_URL
from openalex_cache.cache.utils import format_rfc3339, utc_now

logger = logging.getLogger(__name__)

# Identity parameters the API accepts; each yields a URL that shares the canonical cache key.
IDENTITY_VARIANTS = (
    ("api_key", "dummy"),
    ("mailto", "test@example.com"),
)


def has_collision(entry: Optional[FileEntry], candidate_url: str, *, base_url: str = DEFAULT_API_BASE_URL) -> bool:
    """True if ``candidate_url`` maps to the entry's cache key and is not yet recorded on it."""
    if entry is None or not candidate_url or not entry.primary_url:
        return False
    if candidate_url in entry.equivalent_urls:
        return False
    primary_key = relative_cache_path(entry.primary_url, base_url=base_url)
    if primary_key is None:
        return False
    return relative_cache_path(candidate_url, base_url=base_url) == primary_key


def merge_collision(entry: FileEntry, candidate_url: str, *, now: Optional[str] = None) -> FileEntry:
    """Record ``candidate_url`` as another name for the entry. Merging a known URL changes nothing."""
    if candidate_url in entry.equivalent_urls:
        return entry

    stamp = now or format_rfc3339(utc_now())
    entry.equivalent_urls.append(candidate_url)
    entry.url_timestamps.setdefault(candidate_url, stamp)

    info = entry.collision_info
    if info is None:
        info = CollisionInfo(merged_count=0, first_collision=stamp, last_merge=stamp)
        entry.collision_info = info
    info.merged_count = len(entry.equivalent_urls) - 1
    info.last_merge = stamp
    return entry


def reconstruct_possible_collisions(
    filename: str,
    resource_type: str,
    *,
    base_url: str = DEFAULT_API_BASE_URL,
) -> List[str]:
    """
    Guess the URLs that could have produced a cached file.

    This is a heuristic: it re-adds the identity parameters in ``IDENTITY_VARIANTS`` to the
    canonical URL, it does not know what traffic actually hit the cache. The canonical URL is
    always first. Opaque (hashed) names give an empty list.
    """
    stem = filename[: -len(JSON_SUFFIX)] if filename.endswith(JSON_SUFFIX) else filename
    if stem.startswith(OPAQUE_PREFIX):
        return []

    query = decode_filename(stem)
    canonical = f"{base_url.rstrip('/')}/{resource_type.strip('/')}"
    separator = "?"
    if query:
        canonical = f"{canonical}?{query}"
        separator = "&"
    return [canonical] + [f"{canonical}{separator}{key}={value}" for key, value in IDENTITY_VARIANTS]


def validate_file_entry(entry: FileEntry, *, base_url: str = DEFAULT_API_BASE_URL) -> bool:
    if not entry.primary_url or not entry.equivalent_urls:
        logger.debug("File entry has no URLs. ref=%s", entry.ref)
        return False
    if entry.equivalent_urls[0] != entry.primary_url:
        logger.debug("File entry primary URL is not first. ref=%s primary=%s", entry.ref, entry.primary_url)
        return False
    if len(set(entry.equivalent_urls)) != len(entry.equivalent_urls):
        logger.debug("File entry has duplicate URLs. ref=%s", entry.ref)
        return False

    expected_key = relative_cache_path(entry.primary_url, base_url=base_url)
    if expected_key is None:
        logger.debug("File entry primary URL is not cacheable. ref=%s primary=%s", entry.ref, entry.primary_url)
        return False
    for url in entry.equivalent_urls[1:]:
        if relative_cache_path(url, base_url=base_url) != expected_key:
            logger.debug("File entry URL maps elsewhere. ref=%s url=%s", entry.ref, url)
            return False

    expected_merged = len(entry.equivalent_urls) - 1
    merged = entry.collision_info.merged_count if entry.collision_info else 0
    if merged != expected_merged:
        logger.debug(
            "File entry merge count mismatch. ref=%s merged_count=%s url_count=%s",
            entry.ref,
            merged,
            len(entry.equivalent_urls),
        )
        return False

    missing = [url for url in entry.equivalent_urls if url not in entry.url_timestamps]
    if missing:
        logger.debug("File entry URLs missing timestamps. ref=%s missing=%s", entry.ref, missing)
        return False
    return True


def migrate_legacy_entry(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Convert an index entry written with a single ``url`` key into the multi-URL shape."""
    if "primaryUrl" in payload or "url" not in payload:
        return payload

    url = payload["url"]
    last_retrieved = payload.get("lastRetrieved", "")
    migrated = {key: value for key, value in payload.items() if key != "url"}
    migrated["primaryUrl"] = url
    migrated["equivalentUrls"] = [url]
    migrated["urlTimestamps"] = {url: last_retrieved}
    logger.debug("Migrated legacy index entry. url=%s", url)
    return migrated
