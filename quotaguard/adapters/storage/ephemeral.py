"""In-memory storage backend (single instance only).

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: uses a lock around shared state.
- Explicitly constructed and injected; no module-level state, so tests can
  run in isolation.
"""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable

from quotaguard.adapters.storage.base import (
    AbstractStorageBackend,
    StorageKind,
    split_pattern,
)


@dataclass
class _Entry:
    count: int = 0
    value: str | None = None
    # 0 means the entry never expires
    expires_at: float = 0.0


class EphemeralStorage(AbstractStorageBackend):
    """Storage keeping counters and values in process memory.

    Expired entries are never swept eagerly; every read path compares
    ``expires_at`` with the clock and treats stale entries as missing.
    """

    kind = StorageKind.EPHEMERAL

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        """Initialize the in-memory storage.

        Args:
            clock: Time source function returning UNIX time in seconds.
        """
        self._clock = clock
        self._lock = threading.RLock()
        self._entries: dict[str, _Entry] = {}

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return f"EphemeralStorage(size={len(self._entries)})"

    def _live_entry(self, key: str, now: float) -> _Entry | None:
        """Return the entry for key unless missing or expired (caller holds lock)."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at and entry.expires_at <= now:
            del self._entries[key]
            return None
        return entry

    def get_count(self, key: str) -> int:
        with self._lock:
            entry = self._live_entry(key, self._clock())
            return entry.count if entry else 0

    def get_reset_time(self, key: str, window_seconds: int) -> int:
        now = self._clock()
        with self._lock:
            entry = self._live_entry(key, now)
            if entry and entry.expires_at:
                return int(math.ceil(entry.expires_at))
        return int(now) + window_seconds

    def increment(self, key: str, expiry_seconds: int) -> int:
        now = self._clock()
        with self._lock:
            entry = self._live_entry(key, now)
            if entry is None:
                entry = _Entry(count=0, expires_at=now + expiry_seconds)
                self._entries[key] = entry
            entry.count += 1
            return entry.count

    def decrement(self, key: str) -> int:
        with self._lock:
            entry = self._live_entry(key, self._clock())
            if entry is None:
                return 0
            entry.count = max(0, entry.count - 1)
            return entry.count

    def exists(self, key: str) -> bool:
        with self._lock:
            return self._live_entry(key, self._clock()) is not None

    def get_value(self, key: str) -> str | None:
        with self._lock:
            entry = self._live_entry(key, self._clock())
            return entry.value if entry else None

    def set_with_expiry(self, key: str, value: str, expiry_seconds: int) -> bool:
        expires_at = self._clock() + expiry_seconds if expiry_seconds > 0 else 0.0
        with self._lock:
            self._entries[key] = _Entry(value=value, expires_at=expires_at)
        return True

    def delete(self, key: str) -> bool:
        with self._lock:
            self._entries.pop(key, None)
        return True

    def clear_keys(self, pattern: str) -> bool:
        prefix, wildcard = split_pattern(pattern)
        with self._lock:
            if not wildcard:
                self._entries.pop(prefix, None)
                return True
            for key in [k for k in self._entries if k.startswith(prefix)]:
                del self._entries[key]
        return True

    def get_ttl(self, key: str) -> int:
        now = self._clock()
        with self._lock:
            entry = self._live_entry(key, now)
            if entry is None or not entry.expires_at:
                return 0
            return max(0, int(math.ceil(entry.expires_at - now)))

    def clear(self) -> None:
        """Remove all stored entries."""

        with self._lock:
            self._entries.clear()
