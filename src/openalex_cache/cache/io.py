from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from openalex_cache.cache.collisions import migrate_legacy_entry
from openalex_cache.cache.models import (
    INDEX_FILENAME,
    AggregatedCollisions,
    CollisionInfo,
    DirectoryEntry,
    DirectoryIndex,
    FileEntry,
)

logger = logging.getLogger(__name__)


def atomic_write_json(path: Path, payload: Any, *, sort_keys: bool = True) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(json.dumps(payload, indent=2, sort_keys=sort_keys), encoding="utf-8")
    tmp_path.replace(path)


def read_json_file(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))


def _encode_file_entry(entry: FileEntry) -> dict:
    payload = {
        "primaryUrl": entry.primary_url,
        "equivalentUrls": list(entry.equivalent_urls),
        "$ref": entry.ref,
        "lastRetrieved": entry.last_retrieved,
        "contentHash": entry.content_hash,
        "urlTimestamps": dict(entry.url_timestamps),
    }
    if entry.collision_info:
        payload["collisionInfo"] = {
            "mergedCount": entry.collision_info.merged_count,
            "firstCollision": entry.collision_info.first_collision,
            "lastMerge": entry.collision_info.last_merge,
        }
    return payload


def _decode_file_entry(payload: dict) -> FileEntry:
    payload = migrate_legacy_entry(payload)
    primary_url = payload["primaryUrl"]
    collision_payload = payload.get("collisionInfo")
    collision_info = None
    if collision_payload:
        last_merge = collision_payload.get("lastMerge", "")
        collision_info = CollisionInfo(
            merged_count=int(collision_payload.get("mergedCount", 0)),
            first_collision=collision_payload.get("firstCollision", last_merge),
            last_merge=last_merge,
        )
    return FileEntry(
        primary_url=primary_url,
        equivalent_urls=list(payload.get("equivalentUrls") or [primary_url]),
        ref=payload.get("$ref", ""),
        last_retrieved=payload.get("lastRetrieved", ""),
        content_hash=payload.get("contentHash", ""),
        url_timestamps=dict(payload.get("urlTimestamps") or {}),
        collision_info=collision_info,
    )


def encode_index(index: DirectoryIndex) -> dict:
    payload: Dict[str, Any] = {
        "lastUpdated": index.last_updated,
        "files": {name: _encode_file_entry(entry) for name, entry in index.files.items()},
        "directories": {
            name: {"$ref": entry.ref, "lastModified": entry.last_modified}
            for name, entry in index.directories.items()
        },
    }
    if index.aggregated_collisions:
        payload["aggregatedCollisions"] = {
            "totalMerged": index.aggregated_collisions.total_merged,
            "totalWithCollisions": index.aggregated_collisions.total_with_collisions,
            "lastCollision": index.aggregated_collisions.last_collision,
        }
    return payload


def decode_index(payload: dict) -> DirectoryIndex:
    files = {name: _decode_file_entry(entry) for name, entry in (payload.get("files") or {}).items()}
    directories = {
        name: DirectoryEntry(ref=entry.get("$ref", f"./{name}"), last_modified=entry.get("lastModified", ""))
        for name, entry in (payload.get("directories") or {}).items()
    }
    aggregated_payload = payload.get("aggregatedCollisions")
    aggregated = None
    if aggregated_payload:
        aggregated = AggregatedCollisions(
            total_merged=int(aggregated_payload.get("totalMerged", 0)),
            total_with_collisions=int(aggregated_payload.get("totalWithCollisions", 0)),
            last_collision=aggregated_payload.get("lastCollision"),
        )
    return DirectoryIndex(
        last_updated=payload.get("lastUpdated", ""),
        files=files,
        directories=directories,
        aggregated_collisions=aggregated,
    )


def read_index_payload(directory: Path) -> Optional[dict]:
    """Raw JSON of the persisted index of ``directory``. Missing or unreadable indexes give None."""
    path = directory / INDEX_FILENAME
    if not path.exists():
        return None
    try:
        payload = read_json_file(path)
    except (OSError, ValueError):
        logger.exception("Failed to read directory index, rebuilding from scratch. path=%s", path)
        return None
    if not isinstance(payload, dict):
        logger.warning("Directory index is not a JSON object, rebuilding from scratch. path=%s", path)
        return None
    return payload


def read_index(directory: Path) -> Optional[DirectoryIndex]:
    payload = read_index_payload(directory)
    if payload is None:
        return None
    try:
        return decode_index(payload)
    except Exception:
        logger.exception("Failed to decode directory index, rebuilding from scratch. path=%s", directory / INDEX_FILENAME)
        return None


def indexes_differ(persisted: Optional[dict], index: DirectoryIndex) -> bool:
    """Compare a raw persisted index with a rebuilt one on the fields that carry meaning."""
    if persisted is None:
        return True
    encoded = encode_index(index)
    for key in ("lastUpdated", "files", "directories", "aggregatedCollisions"):
        if persisted.get(key) != encoded.get(key):
            return True
    return False
