from __future__ import annotations

import hashlib


def fingerprint(text: str) -> str:
    """Weak entity tag of a document: SHA-256 over its UTF-8 bytes."""
    digest = hashlib.sha256(text.encode("utf-8")).hexdigest()
    return f'W/"{digest}"'
