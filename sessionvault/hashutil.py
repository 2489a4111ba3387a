from __future__ import annotations

import hashlib


def content_checksum(plaintext: str) -> str:
    """SHA-256 hex digest of the UTF-8 plaintext."""
    return hashlib.sha256(plaintext.encode("utf-8")).hexdigest()


def checksum_matches(plaintext: str, expected: str) -> bool:
    return content_checksum(plaintext) == expected.lower()
