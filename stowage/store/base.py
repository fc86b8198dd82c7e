"""
Blob store contract.

Stores accepted file bytes under their cache key with a TTL. Backends
raise StoreWriteFailed for every write failure and never retry.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional


class BlobStore(ABC):
    """
    Abstract blob store backend.

    Lifecycle: ``initialize()`` before first use, ``shutdown()`` at exit.
    Both are idempotent.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Backend name for logs."""
        ...

    async def initialize(self) -> None:
        """Open connections (no-op by default)."""

    async def shutdown(self) -> None:
        """Release connections (no-op by default)."""

    @abstractmethod
    async def put(self, key: str, data: bytes, ttl: int) -> None:
        """
        Atomically set ``key`` to ``data`` with an expiry.

        Raises:
            StoreWriteFailed: The backend refused or failed the write
        """
        ...

    @abstractmethod
    async def append(self, key: str, chunk: bytes) -> None:
        """
        Append ``chunk`` to the value at ``key``, keeping its expiry.

        Raises:
            StoreWriteFailed: The backend refused or failed the write
        """
        ...

    @abstractmethod
    async def get(self, key: str) -> Optional[bytes]:
        """Return the stored bytes, or None if absent or expired."""
        ...

    def __bool__(self) -> bool:
        # Backends that define __len__ stay truthy when empty
        return True

    async def __aenter__(self) -> "BlobStore":
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.shutdown()
