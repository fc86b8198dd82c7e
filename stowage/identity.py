"""
Cache key derivation for stored files.

Two modes:
- HASH: hex SHA-256 of the exact bytes. Identical content always yields the
  same key, so a second upload overwrites the entry and refreshes its TTL.
- TOKEN: a fresh random token per call, independent of content.
"""

from __future__ import annotations

import hashlib
import uuid
from enum import Enum
from typing import Union


class KeyMode(str, Enum):
    """How accepted files are keyed in the blob store."""
    HASH = "hash"
    TOKEN = "token"

    @classmethod
    def parse(cls, value: Union[str, "KeyMode"]) -> "KeyMode":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            from .config import ConfigError
            raise ConfigError(
                f"Unknown key mode '{value}' (expected one of: "
                f"{', '.join(m.value for m in cls)})"
            )


def generate_sha256(buffer: bytes) -> str:
    return hashlib.sha256(buffer).hexdigest()


def generate_token() -> str:
    return uuid.uuid4().hex


def identify(mode: KeyMode, buffer: bytes = b"") -> str:
    """
    Derive the cache key for a blob.

    Args:
        mode: KeyMode.HASH or KeyMode.TOKEN
        buffer: File bytes (ignored in token mode)

    Returns:
        64-char hex digest (hash mode) or 32-char hex token (token mode)
    """
    if mode is KeyMode.TOKEN:
        return generate_token()
    return generate_sha256(buffer)
