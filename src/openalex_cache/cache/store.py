from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any, Optional, Tuple

from openalex_cache.cache.context import CacheContext
from openalex_cache.cache.io import atomic_write_json, read_json_file
from openalex_cache.cache.models import StoredPayload
from openalex_cache.cache.utils import content_hash, format_rfc3339, utc_now

logger = logging.getLogger(__name__)


class CacheStore:
    """Reads and writes raw response payloads. Index bookkeeping lives elsewhere."""

    def __init__(self, context: CacheContext):
        self._context = context

    def get(self, path: Path) -> Tuple[Any, bool]:
        try:
            stat = path.stat()
        except FileNotFoundError:
            return None, False
        except OSError as e:
            logger.warning("Cached payload is not accessible, treating as a miss. path=%s error=%s", path, e)
            return None, False

        age_seconds = time.time() - stat.st_mtime
        if age_seconds > self._context.max_age.total_seconds():
            self._context.log_step(logger, "Cached payload is stale. path=%s age_seconds=%.0f", path, age_seconds)
            return None, False

        try:
            payload = read_json_file(path)
        except (OSError, ValueError) as e:
            logger.warning("Cached payload is unreadable, treating as a miss. path=%s error=%s", path, e)
            return None, False
        return payload, True

    def put(self, path: Path, payload: Any, *, retrieved_at: Optional[str] = None) -> StoredPayload:
        digest = content_hash(payload)
        stamp = retrieved_at or format_rfc3339(utc_now())
        if self._context.dry_run:
            logger.info("[DRY-RUN] Would write cached payload. path=%s content_hash=%s", path, digest)
            return StoredPayload(path=path, content_hash=digest, retrieved_at=stamp, written=False)

        atomic_write_json(path, payload, sort_keys=False)
        self._context.log_step(logger, "Cached payload written. path=%s content_hash=%s", path, digest)
        return StoredPayload(path=path, content_hash=digest, retrieved_at=stamp, written=True)
