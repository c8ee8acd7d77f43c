"""Redis-backed storage (distributed cache).

Counters are plain Redis integers whose physical TTL is the window expiry.
Increment runs as a MULTI/EXEC transaction:

    SET key 0 EX <expiry> NX   -- opens the window only if the key is absent
    INCR key                   -- keeps the TTL set when the window opened

so check-and-open plus increment is a single atomic unit on the server.
Every redis-py error (including socket timeouts) is re-raised as
StorageAppError.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

import redis

from quotaguard.adapters.storage.base import (
    AbstractStorageBackend,
    StorageKind,
    split_pattern,
)
from quotaguard.core.config import RedisSettings
from quotaguard.core.errors import StorageAppError

logger = logging.getLogger(__name__)

_GLOB_SPECIAL = set("*?[]\\")


def _escape_glob(text: str) -> str:
    """Escape Redis glob metacharacters so text matches literally."""
    return "".join(f"\\{ch}" if ch in _GLOB_SPECIAL else ch for ch in text)


class RedisCacheStorage(AbstractStorageBackend):
    """Storage using a shared Redis instance.

    Args:
        client: A synchronous Redis client (``redis.Redis`` compatible) created
            with ``decode_responses=True``.
        clock: Time source used to turn TTLs into reset timestamps.
    """

    kind = StorageKind.DISTRIBUTED_CACHE

    def __init__(
        self,
        client: Any,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._redis = client
        self._clock = clock

    @classmethod
    def from_settings(cls, redis_settings: RedisSettings) -> "RedisCacheStorage":
        """Build a storage whose every call is bounded by socket timeouts."""

        client = redis.Redis(
            host=redis_settings.host,
            port=redis_settings.port,
            db=redis_settings.db,
            password=redis_settings.password,
            socket_timeout=redis_settings.socket_timeout_seconds,
            socket_connect_timeout=redis_settings.connect_timeout_seconds,
            decode_responses=True,
        )
        return cls(client)

    def _fail(self, operation: str, exc: Exception) -> StorageAppError:
        logger.error(
            "storage.operation_failed",
            extra={
                "backend": self.kind.value,
                "operation": operation,
                "error_type": type(exc).__name__,
                "error_msg": str(exc),
            },
        )
        return StorageAppError(
            code="storage_unavailable",
            message=f"Redis {operation} failed: {exc}",
            details={"backend": self.kind.value, "operation": operation},
        )

    def ping(self) -> None:
        try:
            self._redis.ping()
        except redis.RedisError as exc:
            raise self._fail("ping", exc) from exc

    def close(self) -> None:
        try:
            self._redis.close()
        except redis.RedisError as exc:
            logger.warning(
                "storage.close_failed",
                extra={"backend": self.kind.value, "error_msg": str(exc)},
            )

    def get_count(self, key: str) -> int:
        try:
            value = self._redis.get(key)
        except redis.RedisError as exc:
            raise self._fail("get_count", exc) from exc
        return max(0, int(value)) if value is not None else 0

    def get_reset_time(self, key: str, window_seconds: int) -> int:
        now = int(self._clock())
        ttl = self.get_ttl(key)
        return now + ttl if ttl > 0 else now + window_seconds

    def increment(self, key: str, expiry_seconds: int) -> int:
        try:
            with self._redis.pipeline(transaction=True) as pipe:
                pipe.set(key, 0, ex=expiry_seconds, nx=True)
                pipe.incr(key)
                _, count = pipe.execute()
        except redis.RedisError as exc:
            raise self._fail("increment", exc) from exc
        return int(count)

    def decrement(self, key: str) -> int:
        try:
            with self._redis.pipeline() as pipe:
                while True:
                    try:
                        pipe.watch(key)
                        current = pipe.get(key)
                        if current is None or int(current) <= 0:
                            pipe.unwatch()
                            return 0
                        pipe.multi()
                        pipe.decr(key)
                        (count,) = pipe.execute()
                        return max(0, int(count))
                    except redis.WatchError:
                        continue
        except redis.RedisError as exc:
            raise self._fail("decrement", exc) from exc

    def exists(self, key: str) -> bool:
        try:
            return bool(self._redis.exists(key))
        except redis.RedisError as exc:
            raise self._fail("exists", exc) from exc

    def get_value(self, key: str) -> str | None:
        try:
            return self._redis.get(key)
        except redis.RedisError as exc:
            raise self._fail("get_value", exc) from exc

    def set_with_expiry(self, key: str, value: str, expiry_seconds: int) -> bool:
        try:
            if expiry_seconds > 0:
                return bool(self._redis.set(key, value, ex=expiry_seconds))
            return bool(self._redis.set(key, value))
        except redis.RedisError as exc:
            raise self._fail("set_with_expiry", exc) from exc

    def delete(self, key: str) -> bool:
        try:
            self._redis.delete(key)
        except redis.RedisError as exc:
            raise self._fail("delete", exc) from exc
        return True

    def clear_keys(self, pattern: str) -> bool:
        prefix, wildcard = split_pattern(pattern)
        try:
            if not wildcard:
                self._redis.delete(prefix)
                return True
            # SCAN instead of KEYS so large keyspaces do not block the server
            batch: list[str] = []
            for key in self._redis.scan_iter(match=f"{_escape_glob(prefix)}*", count=500):
                batch.append(key)
                if len(batch) >= 500:
                    self._redis.delete(*batch)
                    batch.clear()
            if batch:
                self._redis.delete(*batch)
        except redis.RedisError as exc:
            raise self._fail("clear_keys", exc) from exc
        return True

    def get_ttl(self, key: str) -> int:
        try:
            ttl = self._redis.ttl(key)
        except redis.RedisError as exc:
            raise self._fail("get_ttl", exc) from exc
        # -2: missing, -1: no expiry
        return max(0, int(ttl))
