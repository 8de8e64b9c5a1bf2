"""Change-detection fingerprints and identifier generation."""

from __future__ import annotations

import secrets
import string

from bookmark_sync.core.url_utils import normalize_url

_DJB2_SEED = 5381
_UINT32_MASK = 0xFFFFFFFF

ID_ALPHABET = string.ascii_letters + string.digits + "_-"
ID_LENGTH = 21


def hash_string(value: str) -> str:
    """DJB2 (xor variant) folded to an unsigned 32-bit value, hex encoded.

    Not suitable for anything security related; used for cheap change detection.
    """
    h = _DJB2_SEED
    for char in value:
        h = (((h << 5) + h) ^ ord(char)) & _UINT32_MASK
    return format(h, "x")


def content_hash(url: str, title: str | None) -> str:
    """Fingerprint of a bookmark's normalized URL and trimmed title."""
    return hash_string(f"{normalize_url(url)}|{(title or '').strip()}")


def generate_id(length: int = ID_LENGTH) -> str:
    """Return a URL-safe random identifier."""
    return "".join(secrets.choice(ID_ALPHABET) for _ in range(length))
