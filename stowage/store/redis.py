"""
Redis blob store.

Stores raw file bytes with ``SET key value EX ttl`` through the redis-py
asyncio client. Connection pooling, socket timeouts and the key prefix are
configured once; every failure reaches callers as StoreWriteFailed.
"""

from __future__ import annotations

import logging
from typing import Optional

from ..faults import StoreWriteFailed
from .base import BlobStore

logger = logging.getLogger("stowage.store.redis")


class RedisBlobStore(BlobStore):
    """
    Redis-backed blob store using redis-py async.

    The client is created lazily on ``initialize()`` (or on first write)
    from a URL, with a bounded connection pool.
    """

    __slots__ = (
        "_url",
        "_max_connections",
        "_socket_timeout",
        "_connect_timeout",
        "_retry_on_timeout",
        "_key_prefix",
        "_redis",
        "_initialized",
    )

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        max_connections: int = 10,
        socket_timeout: float = 5.0,
        connect_timeout: float = 5.0,
        retry_on_timeout: bool = True,
        key_prefix: str = "",
        client: Optional[object] = None,
    ):
        self._url = url
        self._max_connections = max_connections
        self._socket_timeout = socket_timeout
        self._connect_timeout = connect_timeout
        self._retry_on_timeout = retry_on_timeout
        self._key_prefix = key_prefix
        self._redis = client
        self._initialized = client is not None

    @property
    def name(self) -> str:
        return "redis"

    async def initialize(self) -> None:
        """Connect to Redis and create the connection pool."""
        if self._initialized:
            return

        try:
            import redis.asyncio as aioredis
        except ImportError:
            raise ImportError(
                "Redis store requires 'redis' package. "
                "Install with: pip install redis[hiredis]"
            )

        try:
            self._redis = aioredis.from_url(
                self._url,
                max_connections=self._max_connections,
                socket_timeout=self._socket_timeout,
                socket_connect_timeout=self._connect_timeout,
                retry_on_timeout=self._retry_on_timeout,
                decode_responses=False,  # Blobs are raw bytes
            )
            await self._redis.ping()
            self._initialized = True
            logger.info(f"Redis blob store connected: {self._url}")
        except Exception as e:
            logger.error(f"Failed to connect to Redis: {e}")
            raise

    async def shutdown(self) -> None:
        """Close the Redis connection pool."""
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
        self._initialized = False

    def _full_key(self, key: str) -> str:
        return f"{self._key_prefix}{key}"

    async def _client(self, key: str):
        if self._redis is None:
            try:
                await self.initialize()
            except ImportError:
                raise
            except Exception as e:
                raise StoreWriteFailed(key, f"redis unavailable: {e}")
        return self._redis

    async def put(self, key: str, data: bytes, ttl: int) -> None:
        client = await self._client(key)
        try:
            await client.set(self._full_key(key), data, ex=ttl)
        except Exception as e:
            logger.error(f"Redis SET failed for {key}: {e}")
            raise StoreWriteFailed(key, str(e) or type(e).__name__)

    async def append(self, key: str, chunk: bytes) -> None:
        client = await self._client(key)
        try:
            await client.append(self._full_key(key), chunk)
        except Exception as e:
            logger.error(f"Redis APPEND failed for {key}: {e}")
            raise StoreWriteFailed(key, str(e) or type(e).__name__)

    async def get(self, key: str) -> Optional[bytes]:
        if self._redis is None:
            await self.initialize()
        return await self._redis.get(self._full_key(key))
