from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Union

INDEX_FILENAME = "index.json"
QUERIES_DIRNAME = "queries"


@dataclass(slots=True)
class CollisionInfo:
    merged_count: int
    first_collision: str
    last_merge: str


@dataclass(slots=True)
class FileEntry:
    primary_url: str
    equivalent_urls: List[str]
    ref: str
    last_retrieved: str
    content_hash: str
    url_timestamps: Dict[str, str] = field(default_factory=dict)
    collision_info: Optional[CollisionInfo] = None


@dataclass(slots=True)
class DirectoryEntry:
    ref: str
    last_modified: str


@dataclass(slots=True)
class AggregatedCollisions:
    total_merged: int
    total_with_collisions: int
    last_collision: Optional[str]


@dataclass(slots=True)
class DirectoryIndex:
    last_updated: str
    files: Dict[str, FileEntry]
    directories: Dict[str, DirectoryEntry]
    aggregated_collisions: Optional[AggregatedCollisions] = None


@dataclass(slots=True)
class SubtreeAggregate:
    """Running totals folded from child directory indexes."""

    last_updated: Optional[str] = None
    total_merged: int = 0
    total_with_collisions: int = 0
    last_collision: Optional[str] = None


@dataclass(frozen=True, slots=True)
class FileObservation:
    """A URL seen by the cache writer for one payload file, pending the next index rebuild."""

    url: str
    retrieved_at: str
    content_hash: str


@dataclass(frozen=True, slots=True)
class StoredPayload:
    path: Path
    content_hash: str
    retrieved_at: str
    written: bool


@dataclass(frozen=True, slots=True)
class SingleEntityKey:
    resource_path: str
    entity_id: str


@dataclass(frozen=True, slots=True)
class QueryKey:
    resource_path: str
    query: str


@dataclass(frozen=True, slots=True)
class OpaqueHashKey:
    digest: str


CacheKey = Union[SingleEntityKey, QueryKey, OpaqueHashKey]
