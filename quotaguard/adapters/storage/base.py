"""Storage backend interfaces.

The rate limiter depends on this abstraction (not the concrete implementation)
so the ephemeral, distributed cache and relational backends stay swappable
behind one capability set, selected once at construction.

Contract shared by every backend:
- Counters use lazy expiry: a record whose reset_at is in the past reads as
  count 0, and incrementing it opens a new window with count 1.
- ``increment`` returns the post-increment count in one atomic operation and
  sets the expiry only when it opens a window (fixed window).
- Failures surface as StorageAppError; callers decide how to degrade.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum


class StorageKind(str, Enum):
    """Closed set of supported storage backends."""

    EPHEMERAL = "ephemeral"
    DISTRIBUTED_CACHE = "distributed_cache"
    RELATIONAL = "relational"


class AbstractStorageBackend(ABC):
    """Interface for rate limit storage backends.

    Implementations must be safe for concurrent use by multiple in-flight
    requests; the backend, not the limiter, owns thread/connection safety.
    """

    kind: StorageKind

    @abstractmethod
    def get_count(self, key: str) -> int:
        """Return the live count for key (0 when missing or expired)."""
        raise NotImplementedError

    @abstractmethod
    def get_reset_time(self, key: str, window_seconds: int) -> int:
        """Return the reset timestamp of a live key, else now + window_seconds.

        Args:
            key: Window key.
            window_seconds: Window duration used when no live record exists.

        Returns:
            UNIX epoch seconds when the window resets.
        """
        raise NotImplementedError

    @abstractmethod
    def increment(self, key: str, expiry_seconds: int) -> int:
        """Atomically increment key and return the post-increment count.

        Opens a new window (count 1, expiry ``expiry_seconds``) when the key
        is missing or expired; otherwise keeps the existing expiry.
        """
        raise NotImplementedError

    @abstractmethod
    def decrement(self, key: str) -> int:
        """Atomically undo one increment and return the new count (never < 0)."""
        raise NotImplementedError

    @abstractmethod
    def exists(self, key: str) -> bool:
        """Return whether key holds a live (non-expired) record."""
        raise NotImplementedError

    @abstractmethod
    def get_value(self, key: str) -> str | None:
        """Return the stored string value of a live key, or None."""
        raise NotImplementedError

    @abstractmethod
    def set_with_expiry(self, key: str, value: str, expiry_seconds: int) -> bool:
        """Store value under key; expiry_seconds <= 0 stores it without expiry."""
        raise NotImplementedError

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Delete key. Returns True when the operation succeeded."""
        raise NotImplementedError

    @abstractmethod
    def clear_keys(self, pattern: str) -> bool:
        """Delete every key matching pattern.

        The pattern is either an exact key or a prefix followed by a single
        trailing ``*`` wildcard.
        """
        raise NotImplementedError

    @abstractmethod
    def get_ttl(self, key: str) -> int:
        """Return remaining whole seconds for key (0 if missing, expired or persistent)."""
        raise NotImplementedError

    def ping(self) -> None:
        """Verify the backend is reachable.

        Raises:
            StorageAppError: If the backend cannot be reached.
        """

    def close(self) -> None:
        """Release connections held by the backend."""


def split_pattern(pattern: str) -> tuple[str, bool]:
    """Split a key pattern into (prefix, is_wildcard).

    Only a single trailing ``*`` is treated as a wildcard.
    """

    if pattern.endswith("*"):
        return pattern[:-1], True
    return pattern, False
