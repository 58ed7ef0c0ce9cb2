from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from openalex_cache.cache.context import CacheContext
from openalex_cache.cache.index import DirectoryIndexManager, Observations
from openalex_cache.cache.io import read_index
from openalex_cache.cache.models import SubtreeAggregate
from openalex_cache.cache.utils import latest_timestamp

logger = logging.getLogger(__name__)

# Upper bound on levels walked from a leaf towards the root.
MAX_DEPTH = 64


def aggregate_from_children(directory: Path) -> SubtreeAggregate:
    """
    Fold the persisted indexes of the immediate subdirectories of ``directory``.

    Each child index already includes its own subtree, so grandchildren are not read.
    """
    aggregate = SubtreeAggregate()
    try:
        children = sorted(child for child in directory.iterdir() if child.is_dir())
    except FileNotFoundError:
        return aggregate

    for child in children:
        index = read_index(child)
        if index is None:
            continue
        aggregate.last_updated = latest_timestamp([aggregate.last_updated, index.last_updated])
        collisions = index.aggregated_collisions
        if collisions is None:
            continue
        aggregate.total_merged += collisions.total_merged
        aggregate.total_with_collisions += collisions.total_with_collisions
        aggregate.last_collision = latest_timestamp([aggregate.last_collision, collisions.last_collision])
    return aggregate


class AggregationPropagator:
    def __init__(self, context: CacheContext, indexes: DirectoryIndexManager):
        self._context = context
        self._indexes = indexes

    def propagate(self, leaf_directory: Path, *, observations: Optional[Observations] = None) -> int:
        """
        Refresh indexes from ``leaf_directory`` up to the cache root.

        A failure at one level is logged and the walk moves on to the parent. The root index is
        always refreshed last. Returns the number of index files written.
        """
        root = self._context.root_path
        current = Path(leaf_directory).resolve()
        written = 0
        root_observations = observations if current == root else None

        if current != root and not current.is_relative_to(root):
            logger.warning("Directory is outside the cache root, refreshing root only. directory=%s root=%s", current, root)
        elif current != root:
            level_observations = observations
            for _ in range(MAX_DEPTH):
                written += self._update_level(current, level_observations)
                level_observations = None

                parent = current.parent
                if parent == current or parent == root or not parent.is_relative_to(root):
                    break
                current = parent
            else:
                logger.warning("Index propagation stopped at depth bound. directory=%s max_depth=%s", current, MAX_DEPTH)

        try:
            seed = aggregate_from_children(root)
            index = self._indexes.rebuild_root(seed=seed, observations=root_observations)
            if self._indexes.write_if_changed(root, index):
                written += 1
        except Exception:
            logger.exception("Failed to update root index. root=%s", root)
        return written

    def rebuild_all(self) -> int:
        """Rebuild every index under the cache root, children before parents."""
        root = self._context.root_path
        if not root.exists():
            logger.warning("Cache root does not exist, nothing to index. root=%s", root)
            return 0

        written = 0
        for dirpath, dirnames, _ in os.walk(root, topdown=False):
            directory = Path(dirpath)
            if directory == root:
                continue
            relative = directory.relative_to(root)
            if any(part.startswith(".") for part in relative.parts):
                continue
            written += self._update_level(directory, None)

        try:
            index = self._indexes.rebuild_root(seed=aggregate_from_children(root))
            if self._indexes.write_if_changed(root, index):
                written += 1
        except Exception:
            logger.exception("Failed to update root index. root=%s", root)

        logger.info("Cache reindex completed. root=%s indexes_written=%s", root, written)
        return written

    def _update_level(self, directory: Path, observations: Optional[Observations]) -> int:
        if not directory.is_dir():
            self._context.log_step(logger, "Directory no longer exists, skipping index update. directory=%s", directory)
            return 0
        try:
            seed = aggregate_from_children(directory)
            index = self._indexes.rebuild(directory, seed=seed, observations=observations)
            return 1 if self._indexes.write_if_changed(directory, index) else 0
        except Exception:
            logger.exception("Failed to update directory index, continuing with parent. directory=%s", directory)
            return 0
