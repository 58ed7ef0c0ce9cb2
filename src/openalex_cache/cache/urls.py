from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple
from urllib.parse import parse_qsl, quote_plus, urlencode, urlsplit

DEFAULT_API_BASE_URL = "https://api.openalex.org"

# Parameters that identify the caller rather than the query.
IDENTITY_PARAMS = frozenset({"api_key", "mailto"})

# Kept literal in the canonical query so filter expressions stay readable.
# Everything else, including & = + % # ?, is percent-encoded.
_QUERY_SAFE = ":,|*/<>!'()[]@$;~."


class ParseError(ValueError):
    """Raised when a request URL cannot be parsed into host, path and parameters."""


@dataclass(frozen=True, slots=True)
class ParsedApiUrl:
    host: str
    path: str
    params: Tuple[Tuple[str, str], ...]

    @property
    def segments(self) -> Tuple[str, ...]:
        return tuple(part for part in self.path.split("/") if part)

    @property
    def query(self) -> str:
        return render_query(self.params)

    def relative(self) -> str:
        query = self.query
        return f"{self.path}?{query}" if query else self.path

    def absolute(self) -> str:
        return f"https://{self.host}{self.relative()}"


def render_query(params: Tuple[Tuple[str, str], ...]) -> str:
    return urlencode(params, safe=_QUERY_SAFE, quote_via=quote_plus)


def parse_api_url(url: str, *, base_url: str = DEFAULT_API_BASE_URL) -> ParsedApiUrl:
    """
    Parse a request URL, dropping identity parameters and sorting the rest.

    Paths starting with ``/`` are resolved against ``base_url``.
    """
    if not isinstance(url, str) or not url.strip():
        raise ParseError("URL is empty.")

    raw = absolute_url(url, base_url=base_url)

    try:
        parts = urlsplit(raw)
        host = parts.hostname
        pairs = parse_qsl(parts.query, keep_blank_values=True)
    except ValueError as e:
        raise ParseError(f"Malformed URL: {url}") from e

    if parts.scheme not in ("http", "https"):
        raise ParseError(f"Unsupported URL scheme: {url}")
    if not host:
        raise ParseError(f"URL has no host: {url}")

    params = tuple(sorted((key, value) for key, value in pairs if key not in IDENTITY_PARAMS))
    path = "/" + "/".join(part for part in parts.path.split("/") if part)
    return ParsedApiUrl(host=host.lower(), path=path, params=params)


def absolute_url(url: str, *, base_url: str = DEFAULT_API_BASE_URL) -> str:
    """Resolve a path-only request URL against ``base_url``. The query is kept as sent."""
    raw = url.strip()
    if raw.startswith("/"):
        return base_url.rstrip("/") + raw
    return raw


def normalize_url(url: str, *, base_url: str = DEFAULT_API_BASE_URL) -> str:
    """Return ``/<path>?<query>`` with sorted parameters and identity parameters removed."""
    return parse_api_url(url, base_url=base_url).relative()


def canonical_url(url: str, *, base_url: str = DEFAULT_API_BASE_URL) -> str:
    return parse_api_url(url, base_url=base_url).absolute()


def api_host(base_url: str = DEFAULT_API_BASE_URL) -> str:
    return (urlsplit(base_url).hostname or "").lower()


def urls_equivalent(first: str, second: str, *, base_url: str = DEFAULT_API_BASE_URL) -> bool:
    try:
        a = parse_api_url(first, base_url=base_url)
        b = parse_api_url(second, base_url=base_url)
    except ParseError:
        return False
    return a.host == b.host and a.relative() == b.relative()
