"""Factory for creating the configured storage backend.

Selection happens once at construction. An unsupported backend name is a
configuration error and is raised immediately; a backend that cannot be
reached (connection failure or timeout) degrades to the ephemeral backend
with a logged warning.
"""

from __future__ import annotations

import logging

from quotaguard.adapters.storage.base import AbstractStorageBackend, StorageKind
from quotaguard.adapters.storage.ephemeral import EphemeralStorage
from quotaguard.adapters.storage.redis_cache import RedisCacheStorage
from quotaguard.adapters.storage.relational import RelationalStorage
from quotaguard.core.config import Settings, settings as default_settings
from quotaguard.core.errors import ConfigurationAppError, StorageAppError

logger = logging.getLogger(__name__)

# Names accepted for compatibility with the memory/redis/database vocabulary
STORAGE_ALIASES: dict[str, StorageKind] = {
    "ephemeral": StorageKind.EPHEMERAL,
    "memory": StorageKind.EPHEMERAL,
    "distributed_cache": StorageKind.DISTRIBUTED_CACHE,
    "redis": StorageKind.DISTRIBUTED_CACHE,
    "relational": StorageKind.RELATIONAL,
    "database": StorageKind.RELATIONAL,
}


def resolve_storage_kind(name: str) -> StorageKind:
    """Map a configured storage name to its StorageKind.

    Raises:
        ConfigurationAppError: If the name is not a supported backend.
    """
    kind = STORAGE_ALIASES.get(name.strip().lower())
    if kind is None:
        raise ConfigurationAppError(
            code="unsupported_storage",
            message=f"Unsupported storage type: '{name}'",
            details={"hint": f"Use one of: {', '.join(k.value for k in StorageKind)}"},
        )
    return kind


def _connect(kind: StorageKind, cfg: Settings) -> AbstractStorageBackend:
    if kind is StorageKind.DISTRIBUTED_CACHE:
        storage: AbstractStorageBackend = RedisCacheStorage.from_settings(cfg.redis)
    else:
        storage = RelationalStorage.from_settings(cfg.database)
    storage.ping()
    return storage


def create_storage_backend(cfg: Settings | None = None) -> AbstractStorageBackend:
    """Create the storage backend named by configuration.

    Args:
        cfg: Settings to read; defaults to the global settings.

    Returns:
        AbstractStorageBackend: The requested backend, or EphemeralStorage if
        the requested backend could not be initialized.

    Raises:
        ConfigurationAppError: If the configured backend name is unsupported.
    """
    cfg = cfg or default_settings
    kind = resolve_storage_kind(cfg.rate_limit.storage)

    if kind is StorageKind.EPHEMERAL:
        return EphemeralStorage()

    try:
        storage = _connect(kind, cfg)
    except StorageAppError as exc:
        logger.warning(
            "storage.fallback",
            extra={
                "requested_backend": kind.value,
                "fallback_backend": StorageKind.EPHEMERAL.value,
                "error_code": exc.code,
                "error_message": exc.message,
            },
        )
        return EphemeralStorage()

    logger.info("storage.initialized", extra={"backend": kind.value})
    return storage
