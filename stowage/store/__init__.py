"""
Blob stores for accepted file bytes.

Backends:
- RedisBlobStore: shared store for multi-process deployments
- MemoryBlobStore: in-process store for development and tests
"""

from .base import BlobStore
from .memory import MemoryBlobStore
from .redis import RedisBlobStore


def create_blob_store(config) -> BlobStore:
    """
    Build the backend named by ``config.store_backend``.

    Args:
        config: StowageConfig

    Returns:
        An uninitialized BlobStore
    """
    if config.store_backend == "memory":
        return MemoryBlobStore()
    if config.store_backend == "redis":
        return RedisBlobStore(
            url=config.redis_url,
            max_connections=config.redis_max_connections,
            socket_timeout=config.redis_socket_timeout,
            connect_timeout=config.redis_socket_timeout,
            key_prefix=config.key_prefix,
        )
    from ..config import ConfigError
    raise ConfigError(f"Unknown store backend '{config.store_backend}'")


__all__ = [
    "BlobStore",
    "MemoryBlobStore",
    "RedisBlobStore",
    "create_blob_store",
]
