"""Rate limit storage adapters.

This package provides the storage abstraction behind the rate limiter so the
same engine can run on process memory, a shared Redis instance or a SQL
database without changes to the service layer.
"""

from quotaguard.adapters.storage.base import AbstractStorageBackend, StorageKind
from quotaguard.adapters.storage.ephemeral import EphemeralStorage
from quotaguard.adapters.storage.factory import create_storage_backend
from quotaguard.adapters.storage.redis_cache import RedisCacheStorage
from quotaguard.adapters.storage.relational import RelationalStorage

__all__ = [
    "AbstractStorageBackend",
    "EphemeralStorage",
    "RedisCacheStorage",
    "RelationalStorage",
    "StorageKind",
    "create_storage_backend",
]
