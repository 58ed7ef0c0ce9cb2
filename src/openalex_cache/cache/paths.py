from __future__ import annotations

import hashlib
import re
import string
from pathlib import Path, PurePosixPath
from typing import Optional, Sequence

from openalex_cache.cache.models import (
    INDEX_FILENAME,
    QUERIES_DIRNAME,
    CacheKey,
    OpaqueHashKey,
    QueryKey,
    SingleEntityKey,
)
from openalex_cache.cache.urls import DEFAULT_API_BASE_URL, ParseError, api_host, parse_api_url

KNOWN_RESOURCE_TYPES = (
    "works",
    "authors",
    "sources",
    "institutions",
    "topics",
    "concepts",
    "publishers",
    "funders",
    "keywords",
)

MAX_FILENAME_LENGTH = 200
OPAQUE_PREFIX = "_hash_"
JSON_SUFFIX = ".json"

_SAFE_CHARS = frozenset(string.ascii_letters + string.digits + "_.-()[]")
_ENCODED_CHAR = re.compile(r"__([0-9A-F]{2})__")
_RESERVED_SEGMENTS = frozenset({".", "..", QUERIES_DIRNAME})


def encode_filename(text: str) -> str:
    """
    Make text safe to use as a file or directory name.

    ASCII characters outside ``[A-Za-z0-9_.-()[]]`` become ``__XX__`` with the upper-case hex
    code. Non-ASCII characters are kept as is.
    """
    out = []
    for ch in text:
        if ch in _SAFE_CHARS or ord(ch) > 0x7F:
            out.append(ch)
        else:
            out.append(f"__{ord(ch):02X}__")
    return "".join(out)


def decode_filename(name: str) -> str:
    return _ENCODED_CHAR.sub(lambda match: chr(int(match.group(1), 16)), name)


def filename_stem(text: str) -> str:
    """Encoded name for ``text``, replaced by an opaque digest when it is too long."""
    encoded = encode_filename(text)
    if len(encoded) <= MAX_FILENAME_LENGTH:
        return encoded
    digest = hashlib.sha256(text.encode("utf-8")).hexdigest()[:32]
    return f"{OPAQUE_PREFIX}{digest}"


def relative_cache_path(url: str, *, base_url: str = DEFAULT_API_BASE_URL) -> Optional[PurePosixPath]:
    """
    Cache location of ``url`` relative to the cache root, or None if the URL is not cacheable.

    /works/W1            -> works/W1.json
    /works/W1?select=id  -> works/W1/queries/select__3D__id.json
    /works               -> works.json
    /works?filter=x      -> works/queries/filter__3D__x.json
    """
    try:
        parsed = parse_api_url(url, base_url=base_url)
    except ParseError:
        return None
    if parsed.host != api_host(base_url):
        return None

    segments = parsed.segments
    if not segments or segments[0] not in KNOWN_RESOURCE_TYPES:
        return None

    encoded_segments = []
    for segment in segments:
        encoded = encode_filename(segment)
        if segment in _RESERVED_SEGMENTS or len(encoded) > MAX_FILENAME_LENGTH:
            return None
        encoded_segments.append(encoded)

    query = parsed.query
    if query:
        return PurePosixPath(*encoded_segments, QUERIES_DIRNAME, filename_stem(query) + JSON_SUFFIX)

    leaf = encoded_segments[-1] + JSON_SUFFIX
    if leaf == INDEX_FILENAME:
        return None
    return PurePosixPath(*encoded_segments[:-1], leaf)


def map_to_cache_path(url: str, root: Path, *, base_url: str = DEFAULT_API_BASE_URL) -> Optional[Path]:
    relative = relative_cache_path(url, base_url=base_url)
    if relative is None:
        return None
    return Path(root).joinpath(*relative.parts)


def classify_cache_file(relative_parts: Sequence[str], filename: str) -> Optional[CacheKey]:
    """
    Work out what kind of key a payload file was stored under.

    ``relative_parts`` are the directory names between the cache root and the file.
    Returns None for files that do not belong to a known resource type.
    """
    stem = filename[: -len(JSON_SUFFIX)] if filename.endswith(JSON_SUFFIX) else filename
    if not stem:
        return None
    if stem.startswith(OPAQUE_PREFIX):
        return OpaqueHashKey(digest=stem[len(OPAQUE_PREFIX) :])

    parts = [decode_filename(part) for part in relative_parts]
    if parts and parts[-1] == QUERIES_DIRNAME:
        resource = parts[:-1]
        if not resource or resource[0] not in KNOWN_RESOURCE_TYPES:
            return None
        return QueryKey(resource_path="/".join(resource), query=decode_filename(stem))

    entity_id = decode_filename(stem)
    if not parts:
        if entity_id not in KNOWN_RESOURCE_TYPES:
            return None
        return SingleEntityKey(resource_path="", entity_id=entity_id)
    if parts[0] not in KNOWN_RESOURCE_TYPES:
        return None
    return SingleEntityKey(resource_path="/".join(parts), entity_id=entity_id)


def reconstruct_url(key: CacheKey, *, base_url: str = DEFAULT_API_BASE_URL) -> Optional[str]:
    """Canonical absolute URL for a key. Opaque keys cannot be reversed and give None."""
    if isinstance(key, OpaqueHashKey):
        return None
    if isinstance(key, QueryKey):
        relative = f"/{key.resource_path}?{key.query}"
    else:
        relative = "/" + "/".join(part for part in (key.resource_path, key.entity_id) if part)
    try:
        return parse_api_url(relative, base_url=base_url).absolute()
    except ParseError:
        return None
