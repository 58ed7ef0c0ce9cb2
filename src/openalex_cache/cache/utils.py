from __future__ import annotations

import hashlib
import json
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

CONTENT_HASH_LENGTH = 16


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_rfc3339(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_rfc3339(value: str) -> datetime:
    raw = value.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    parsed = datetime.fromisoformat(raw)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_mtime(mtime: float) -> str:
    return format_rfc3339(datetime.fromtimestamp(mtime, timezone.utc))


def latest_timestamp(values: Iterable[Optional[str]]) -> Optional[str]:
    """Return the most recent of the given RFC 3339 strings, ignoring blanks and garbage."""
    best: Optional[str] = None
    best_dt: Optional[datetime] = None
    for value in values:
        if not value:
            continue
        try:
            parsed = parse_rfc3339(value)
        except ValueError:
            continue
        if best_dt is None or parsed > best_dt:
            best, best_dt = value, parsed
    return best


def content_hash(payload: Any) -> str:
    """
    Digest of a response payload.

    The top-level ``meta`` block carries counts and timings that change between identical
    queries, so it is left out.
    """
    if isinstance(payload, dict) and "meta" in payload:
        payload = {key: value for key, value in payload.items() if key != "meta"}
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:CONTENT_HASH_LENGTH]
