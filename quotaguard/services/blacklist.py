"""Blacklist overlay that unconditionally denies an identifier.

Entries live in their own key namespace, independent of window counters.
A duration of 0 stores a permanent entry; positive durations expire through
the backend TTL.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import asdict, dataclass
from typing import Callable

from quotaguard.adapters.storage.base import AbstractStorageBackend
from quotaguard.core.errors import ValidationAppError
from quotaguard.core.logging import hash_identifier
from quotaguard.services.keys import blacklist_key

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BlacklistEntry:
    """A live blacklist record.

    Attributes:
        identifier: Blacklisted caller.
        reason: Operator supplied reason.
        created_at: UNIX epoch seconds when the entry was written.
        expires_at: UNIX epoch seconds when it lapses (0 = permanent).
    """

    identifier: str
    reason: str
    created_at: int
    expires_at: int

    @property
    def permanent(self) -> bool:
        return self.expires_at == 0


class BlacklistManager:
    """Manage blacklist entries on a storage backend.

    Storage failures propagate as StorageAppError; the rate limiter decides
    how to degrade.
    """

    def __init__(
        self,
        storage: AbstractStorageBackend,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._storage = storage
        self._clock = clock

    def is_blacklisted(self, identifier: str) -> bool:
        return self._storage.exists(blacklist_key(identifier))

    def blacklist(self, identifier: str, duration_seconds: int = 0, reason: str = "") -> bool:
        """Blacklist identifier for duration_seconds (0 = until removed).

        Raises:
            ValidationAppError: If duration_seconds is negative.
        """
        if duration_seconds < 0:
            raise ValidationAppError(
                code="invalid_blacklist_duration",
                message="duration_seconds must be >= 0",
                details={"hint": "Use 0 for a permanent entry"},
            )

        now = int(self._clock())
        entry = BlacklistEntry(
            identifier=identifier,
            reason=reason,
            created_at=now,
            expires_at=now + duration_seconds if duration_seconds > 0 else 0,
        )
        stored = self._storage.set_with_expiry(
            blacklist_key(identifier),
            json.dumps(asdict(entry)),
            duration_seconds,
        )
        logger.info(
            "blacklist.added",
            extra={
                "identifier_hash": hash_identifier(identifier),
                "duration_s": duration_seconds,
                "permanent": entry.permanent,
            },
        )
        return stored

    def remove(self, identifier: str) -> bool:
        removed = self._storage.delete(blacklist_key(identifier))
        logger.info(
            "blacklist.removed",
            extra={"identifier_hash": hash_identifier(identifier)},
        )
        return removed

    def get_entry(self, identifier: str) -> BlacklistEntry | None:
        """Return the live entry for identifier, or None."""
        raw = self._storage.get_value(blacklist_key(identifier))
        if raw is None:
            return None
        try:
            data = json.loads(raw)
            return BlacklistEntry(
                identifier=str(data.get("identifier", identifier)),
                reason=str(data.get("reason", "")),
                created_at=int(data.get("created_at", 0)),
                expires_at=int(data.get("expires_at", 0)),
            )
        except (ValueError, AttributeError):
            logger.warning(
                "blacklist.corrupt_entry",
                extra={"identifier_hash": hash_identifier(identifier)},
            )
            return BlacklistEntry(identifier=identifier, reason="", created_at=0, expires_at=0)
