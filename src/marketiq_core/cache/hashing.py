"""Content addressing for cached analyses."""

import hashlib


def content_hash(text: str) -> str:
    """Return the SHA-256 hex digest of ``text`` with surrounding whitespace removed."""
    return hashlib.sha256(text.strip().encode("utf-8")).hexdigest()
