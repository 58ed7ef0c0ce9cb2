from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence

from openalex_cache.cache.collisions import (
    has_collision,
    merge_collision,
    reconstruct_possible_collisions,
    validate_file_entry,
)
from openalex_cache.cache.context import CacheContext
from openalex_cache.cache.io import (
    atomic_write_json,
    encode_index,
    indexes_differ,
    read_index,
    read_index_payload,
    read_json_file,
)
from openalex_cache.cache.models import (
    INDEX_FILENAME,
    AggregatedCollisions,
    CacheKey,
    DirectoryEntry,
    DirectoryIndex,
    FileEntry,
    FileObservation,
    QueryKey,
    SubtreeAggregate,
)
from openalex_cache.cache.paths import (
    JSON_SUFFIX,
    KNOWN_RESOURCE_TYPES,
    classify_cache_file,
    reconstruct_url,
    relative_cache_path,
)
from openalex_cache.cache.urls import ParseError, absolute_url, canonical_url
from openalex_cache.cache.utils import content_hash, format_mtime, format_rfc3339, latest_timestamp, utc_now

logger = logging.getLogger(__name__)

UNKNOWN_HASH = "unknown"

Observations = Mapping[str, Sequence[FileObservation]]


class DirectoryIndexManager:
    """
    Builds ``index.json`` manifests for cache directories.

    Every rebuild rescans the directory. Metadata for files already listed in the persisted
    index is carried over, fresh URLs come from observations recorded by the cache writer.
    """

    def __init__(self, context: CacheContext):
        self._context = context

    @property
    def root_path(self) -> Path:
        return self._context.root_path

    def read(self, directory: Path) -> Optional[DirectoryIndex]:
        return read_index(directory)

    def rebuild(
        self,
        directory: Path,
        *,
        seed: Optional[SubtreeAggregate] = None,
        observations: Optional[Observations] = None,
    ) -> DirectoryIndex:
        return self._rebuild(Path(directory).resolve(), seed=seed, observations=observations, is_root=False)

    def rebuild_root(
        self,
        *,
        seed: Optional[SubtreeAggregate] = None,
        observations: Optional[Observations] = None,
    ) -> DirectoryIndex:
        return self._rebuild(self.root_path, seed=seed, observations=observations, is_root=True)

    def write_if_changed(self, directory: Path, index: DirectoryIndex) -> bool:
        """Persist ``index`` unless it matches what is on disk. Returns True when a write happened."""
        directory = Path(directory)
        path = directory / INDEX_FILENAME
        if not indexes_differ(read_index_payload(directory), index):
            self._context.log_step(logger, "Directory index unchanged, skipping write. path=%s", path)
            return False

        payload = encode_index(index)
        if self._context.dry_run:
            logger.info(
                "[DRY-RUN] Would update directory index. path=%s index=%s",
                path,
                json.dumps(payload, indent=2, sort_keys=True),
            )
            return False

        atomic_write_json(path, payload)
        self._context.log_step(
            logger,
            "Directory index updated. path=%s files=%s directories=%s last_updated=%s",
            path,
            len(index.files),
            len(index.directories),
            index.last_updated,
        )
        return True

    def _rebuild(
        self,
        directory: Path,
        *,
        seed: Optional[SubtreeAggregate],
        observations: Optional[Observations],
        is_root: bool,
    ) -> DirectoryIndex:
        existing = self.read(directory)
        existing_files = existing.files if existing else {}
        observations = observations or {}
        relative_parts = self._relative_parts(directory)

        files: Dict[str, FileEntry] = {}
        directories: Dict[str, DirectoryEntry] = {}
        for child in self._list_children(directory):
            if child.is_dir():
                if child.name.startswith("."):
                    continue
                if is_root and not _is_content_directory(child):
                    continue
                directories[child.name] = DirectoryEntry(
                    ref=f"./{child.name}",
                    last_modified=format_mtime(child.stat().st_mtime),
                )
                continue

            if child.suffix != JSON_SUFFIX or child.name == INDEX_FILENAME:
                continue
            stem = child.name[: -len(JSON_SUFFIX)]
            if is_root and stem not in KNOWN_RESOURCE_TYPES:
                continue
            entry = self._build_file_entry(
                child,
                relative_parts=relative_parts,
                existing=existing_files.get(stem),
                observed=observations.get(stem, ()),
            )
            if entry is not None:
                files[stem] = entry

        for stem in observations:
            if stem not in files:
                self._context.log_step(logger, "Observed payload is missing on disk. directory=%s file=%s", directory, stem)

        aggregated = _combine_collisions(files.values(), seed)
        last_updated = latest_timestamp(
            [entry.last_retrieved for entry in files.values()] + [seed.last_updated if seed else None]
        )
        if last_updated is None:
            last_updated = existing.last_updated if existing and existing.last_updated else format_rfc3339(utc_now())

        return DirectoryIndex(
            last_updated=last_updated,
            files=files,
            directories=directories,
            aggregated_collisions=aggregated,
        )

    def _build_file_entry(
        self,
        path: Path,
        *,
        relative_parts: Sequence[str],
        existing: Optional[FileEntry],
        observed: Sequence[FileObservation],
    ) -> Optional[FileEntry]:
        try:
            mtime = path.stat().st_mtime
        except OSError as e:
            logger.warning("Cached payload vanished during index rebuild. path=%s error=%s", path, e)
            return None

        if observed:
            latest = observed[-1]
            digest = latest.content_hash
            last_retrieved = latest.retrieved_at
        else:
            digest = _hash_file(path)
            if existing is not None and existing.content_hash == digest and existing.last_retrieved:
                last_retrieved = existing.last_retrieved
            else:
                last_retrieved = format_mtime(mtime)

        key = classify_cache_file(relative_parts, path.name)
        primary = self._primary_url(key, existing=existing, observed=observed)
        if primary is None:
            self._context.log_step(logger, "Skipping payload with no recoverable URL. path=%s", path)
            return None

        ref = f"./{path.name}"
        try:
            entry = self._merge_entry(
                key,
                primary=primary,
                ref=ref,
                digest=digest,
                last_retrieved=last_retrieved,
                existing=existing,
                observed=observed,
            )
            if validate_file_entry(entry, base_url=self._context.api_base_url):
                return entry
            logger.warning("Index entry failed validation, using a minimal entry. path=%s", path)
        except Exception:
            logger.exception("Failed to reconstruct index entry, using a minimal entry. path=%s", path)

        return FileEntry(
            primary_url=primary,
            equivalent_urls=[primary],
            ref=ref,
            last_retrieved=last_retrieved,
            content_hash=digest,
            url_timestamps={primary: last_retrieved},
        )

    def _primary_url(
        self,
        key: Optional[CacheKey],
        *,
        existing: Optional[FileEntry],
        observed: Sequence[FileObservation],
    ) -> Optional[str]:
        """
        The URL an entry is headed by.

        A persisted primary that still maps to this file is kept. A new entry takes the first URL
        it was stored under. Files with no history fall back to the URL rebuilt from their name.
        """
        base_url = self._context.api_base_url
        rebuilt = reconstruct_url(key, base_url=base_url) if key is not None else None
        if existing is not None and existing.primary_url:
            if rebuilt is None or _same_location(existing.primary_url, rebuilt, base_url=base_url):
                return existing.primary_url
        elif observed:
            for observation in observed:
                url = absolute_url(observation.url, base_url=base_url)
                if rebuilt is None or _same_location(url, rebuilt, base_url=base_url):
                    return url
        if rebuilt is not None:
            return rebuilt
        for observation in observed:
            try:
                return canonical_url(observation.url, base_url=base_url)
            except ParseError:
                continue
        return None

    def _merge_entry(
        self,
        key: Optional[CacheKey],
        *,
        primary: str,
        ref: str,
        digest: str,
        last_retrieved: str,
        existing: Optional[FileEntry],
        observed: Sequence[FileObservation],
    ) -> FileEntry:
        base_url = self._context.api_base_url
        if existing is not None:
            entry = existing
            entry.ref = ref
            entry.content_hash = digest
            entry.last_retrieved = last_retrieved
            if entry.primary_url != primary or not entry.equivalent_urls or entry.equivalent_urls[0] != primary:
                self._context.log_step(logger, "Re-heading index entry on canonical URL. ref=%s url=%s", ref, primary)
                entry.primary_url = primary
                entry.equivalent_urls = [primary] + [url for url in entry.equivalent_urls if url != primary]
                if entry.collision_info is not None:
                    entry.collision_info.merged_count = len(entry.equivalent_urls) - 1
        else:
            first_seen = observed[0].retrieved_at if observed else last_retrieved
            entry = FileEntry(
                primary_url=primary,
                equivalent_urls=[primary],
                ref=ref,
                last_retrieved=last_retrieved,
                content_hash=digest,
                url_timestamps={primary: first_seen},
            )
        entry.url_timestamps.setdefault(primary, last_retrieved)

        for observation in observed:
            url = absolute_url(observation.url, base_url=base_url)
            if has_collision(entry, url, base_url=base_url):
                self._context.log_step(logger, "Collision detected, merging URL. ref=%s url=%s", ref, url)
                merge_collision(entry, url, now=observation.retrieved_at)

        if existing is None and not observed:
            for candidate in _heuristic_candidates(key, ref=ref, base_url=base_url):
                if has_collision(entry, candidate, base_url=base_url):
                    self._context.log_step(logger, "Merging reconstructed URL variant. ref=%s url=%s", ref, candidate)
                    merge_collision(entry, candidate, now=last_retrieved)
        return entry

    def _relative_parts(self, directory: Path) -> List[str]:
        try:
            return list(directory.relative_to(self.root_path).parts)
        except ValueError:
            return []

    def _list_children(self, directory: Path) -> List[Path]:
        try:
            return sorted(directory.iterdir(), key=lambda child: child.name)
        except FileNotFoundError:
            return []


def _heuristic_candidates(key: Optional[CacheKey], *, ref: str, base_url: str) -> List[str]:
    # Only query files get guessed identity variants.
    if isinstance(key, QueryKey):
        return reconstruct_possible_collisions(ref[2:], key.resource_path, base_url=base_url)
    return []


def _same_location(first: str, second: str, *, base_url: str) -> bool:
    location = relative_cache_path(first, base_url=base_url)
    return location is not None and location == relative_cache_path(second, base_url=base_url)


def _hash_file(path: Path) -> str:
    try:
        return content_hash(read_json_file(path))
    except (OSError, ValueError) as e:
        logger.warning("Cached payload is unreadable, hash unknown. path=%s error=%s", path, e)
        return UNKNOWN_HASH


def _is_content_directory(directory: Path) -> bool:
    if directory.name not in KNOWN_RESOURCE_TYPES:
        return False
    if (directory / INDEX_FILENAME).exists():
        return True
    return any(child.suffix == JSON_SUFFIX or child.is_dir() for child in directory.iterdir())


def _combine_collisions(entries, seed: Optional[SubtreeAggregate]) -> Optional[AggregatedCollisions]:
    total_merged = seed.total_merged if seed else 0
    total_with_collisions = seed.total_with_collisions if seed else 0
    stamps = [seed.last_collision if seed else None]
    for entry in entries:
        info = entry.collision_info
        if info is None or info.merged_count <= 0:
            continue
        total_merged += info.merged_count
        total_with_collisions += 1
        stamps.append(info.last_merge)
    if total_merged <= 0:
        return None
    return AggregatedCollisions(
        total_merged=total_merged,
        total_with_collisions=total_with_collisions,
        last_collision=latest_timestamp(stamps),
    )
