from __future__ import annotations

import logging
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

logger = logging.getLogger(__name__)


TRACKING_PARAMS = {
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "utm_term",
    "utm_content",
    "fbclid",
    "gclid",
}

# Browser-internal and local schemes that never reach the remote store
_BLOCKED_PREFIXES: tuple[str, ...] = (
    "about:",
    "chrome:",
    "chrome-extension:",
    "moz-extension:",
    "edge:",
    "brave:",
    "opera:",
    "vivaldi:",
    "file:",
    "data:",
    "javascript:",
    "blob:",
)

_ALLOWED_PREFIXES: tuple[str, ...] = ("http://", "https://")


def _fallback_normalize(url: str) -> str:
    return url.lower().rstrip("/")


def normalize_url(url: str) -> str:
    """Return the canonical form of ``url`` used for matching.

    - Lowercase scheme & host
    - Strip fragment
    - Remove tracking params, sort the rest by key (stable)
    - Collapse trailing slashes except for the root path

    Never raises: input that does not parse as an absolute URL is lowercased
    and stripped of trailing slashes instead.
    """
    if not url:
        return ""

    try:
        parts = urlsplit(url.strip())
    except ValueError:
        logger.debug("normalize_url_fallback", extra={"url": url[:100]})
        return _fallback_normalize(url)

    if not parts.scheme or not parts.netloc:
        return _fallback_normalize(url)

    scheme = parts.scheme.lower()
    netloc = parts.netloc.lower()
    path = parts.path or "/"
    if path != "/":
        path = path.rstrip("/") or "/"

    query_pairs = [
        (k, v)
        for k, v in parse_qsl(parts.query, keep_blank_values=True)
        if k.lower() not in TRACKING_PARAMS
    ]
    query_pairs.sort(key=lambda pair: pair[0])
    query = urlencode(query_pairs)

    return urlunsplit((scheme, netloc, path, query, ""))


def is_valid_sync_url(url: str | None) -> bool:
    """Return True when ``url`` may be synchronized to the remote store."""
    if not url:
        return False
    lowered = url.strip().lower()
    if lowered.startswith(_BLOCKED_PREFIXES):
        return False
    return lowered.startswith(_ALLOWED_PREFIXES)


def urls_match(first: str, second: str) -> bool:
    """Compare two URLs by their normalized form."""
    return normalize_url(first) == normalize_url(second)
