"""
In-memory blob store.

Single-process backend for development and tests. Entries expire lazily on
access using monotonic time. Guarded by an asyncio.Lock for concurrent
requests.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Dict, Optional, Tuple

from ..faults import StoreWriteFailed
from .base import BlobStore

logger = logging.getLogger("stowage.store.memory")


class MemoryBlobStore(BlobStore):
    """Dict-backed store with per-entry TTL."""

    __slots__ = ("_entries", "_lock", "_max_entries")

    def __init__(self, max_entries: int = 0):
        """
        Args:
            max_entries: Refuse new keys beyond this many live entries (0 = unlimited)
        """
        self._entries: Dict[str, Tuple[bytearray, float]] = {}
        self._lock = asyncio.Lock()
        self._max_entries = max_entries

    @property
    def name(self) -> str:
        return "memory"

    def _expired(self, key: str, now: float) -> bool:
        entry = self._entries.get(key)
        if entry is None:
            return True
        if entry[1] <= now:
            del self._entries[key]
            return True
        return False

    async def put(self, key: str, data: bytes, ttl: int) -> None:
        async with self._lock:
            now = time.monotonic()
            if (
                self._max_entries
                and self._expired(key, now)
                and len(self._entries) >= self._max_entries
            ):
                raise StoreWriteFailed(key, "memory store is full")
            self._entries[key] = (bytearray(data), now + ttl)

    async def append(self, key: str, chunk: bytes) -> None:
        async with self._lock:
            if self._expired(key, time.monotonic()):
                raise StoreWriteFailed(key, "cannot append to a missing key")
            self._entries[key][0].extend(chunk)

    async def get(self, key: str) -> Optional[bytes]:
        async with self._lock:
            if self._expired(key, time.monotonic()):
                return None
            return bytes(self._entries[key][0])

    async def ttl(self, key: str) -> Optional[float]:
        """Remaining lifetime of ``key`` in seconds, or None if absent."""
        async with self._lock:
            now = time.monotonic()
            if self._expired(key, now):
                return None
            return self._entries[key][1] - now

    async def shutdown(self) -> None:
        async with self._lock:
            if self._entries:
                logger.debug("Discarding %d in-memory blobs", len(self._entries))
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
