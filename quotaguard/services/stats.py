"""Per (identifier, endpoint) request statistics.

Statistics never influence admission. Records are merged with a
read-modify-write cycle, so concurrent writers for the same key may lose an
increment; that trade-off keeps every backend on the same plain
get/set capability.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable

from quotaguard.adapters.storage.base import AbstractStorageBackend
from quotaguard.core.logging import hash_identifier
from quotaguard.services.keys import stats_key

logger = logging.getLogger(__name__)


def _optional_int(value: Any) -> int | None:
    return None if value is None else int(value)


@dataclass
class StatsRecord:
    """Accumulated counters for one identifier/endpoint pair."""

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    first_request_at: int | None = None
    last_request_at: int | None = None

    @classmethod
    def from_json(cls, raw: str | None) -> "StatsRecord":
        """Parse a stored record; missing or unreadable payloads yield an empty record."""
        if not raw:
            return cls()
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("stats.corrupt_record", extra={"payload_length": len(raw)})
            return cls()
        if not isinstance(data, dict):
            logger.warning("stats.corrupt_record", extra={"payload_length": len(raw)})
            return cls()
        try:
            return cls(
                total_requests=int(data.get("total_requests", 0)),
                successful_requests=int(data.get("successful_requests", 0)),
                failed_requests=int(data.get("failed_requests", 0)),
                first_request_at=_optional_int(data.get("first_request_at")),
                last_request_at=_optional_int(data.get("last_request_at")),
            )
        except (TypeError, ValueError):
            logger.warning("stats.corrupt_record", extra={"payload_length": len(raw)})
            return cls()

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @property
    def success_rate(self) -> float:
        if self.total_requests <= 0:
            return 100.0
        return round(self.successful_requests / self.total_requests * 100, 2)


def empty_stats() -> dict[str, Any]:
    """Statistics view for an identifier with no recorded requests."""
    return {
        "total_requests": 0,
        "successful_requests": 0,
        "failed_requests": 0,
        "success_rate": 100.0,
        "last_request": None,
        "first_request": None,
    }


class StatsRecorder:
    """Accumulates total/success/fail counts and first/last-seen timestamps.

    Args:
        storage: Backend holding the JSON records.
        ttl_seconds: Retention applied on every write.
        clock: Time source function returning UNIX time in seconds.
    """

    def __init__(
        self,
        storage: AbstractStorageBackend,
        *,
        ttl_seconds: int = 86400 * 7,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._storage = storage
        self._ttl = ttl_seconds
        self._clock = clock

    def record(self, identifier: str, endpoint: str, success: bool) -> StatsRecord:
        """Merge one request outcome into the stored record.

        Raises:
            StorageAppError: If the backend fails.
        """
        key = stats_key(identifier, endpoint)
        now = int(self._clock())

        record = StatsRecord.from_json(self._storage.get_value(key))
        record.total_requests += 1
        if success:
            record.successful_requests += 1
        else:
            record.failed_requests += 1
        if record.first_request_at is None:
            record.first_request_at = now
        record.last_request_at = now

        self._storage.set_with_expiry(key, record.to_json(), self._ttl)
        logger.debug(
            "stats.recorded",
            extra={
                "identifier_hash": hash_identifier(identifier),
                "endpoint": endpoint,
                "success": success,
                "total_requests": record.total_requests,
            },
        )
        return record

    def get(self, identifier: str, endpoint: str) -> dict[str, Any]:
        """Return the derived statistics view for identifier/endpoint."""
        record = StatsRecord.from_json(self._storage.get_value(stats_key(identifier, endpoint)))
        return {
            "total_requests": record.total_requests,
            "successful_requests": record.successful_requests,
            "failed_requests": record.failed_requests,
            "success_rate": record.success_rate,
            "last_request": record.last_request_at,
            "first_request": record.first_request_at,
        }

    def reset(self, identifier: str, endpoint: str) -> bool:
        """Delete the stored record (the only way counters go down)."""
        return self._storage.delete(stats_key(identifier, endpoint))
