"""Tiered fixed-window rate limiter.

Every request is evaluated against three windows (hourly, minute, burst)
whose limits come from the caller's tier. Admission flow:

1. Read each window's live count in the fixed order hourly -> minute ->
   burst. The first window already at its limit is reported as the denial,
   even when a later window is also exhausted. Nothing is written.
2. When every window has room, reserve one slot per window with an atomic
   increment that returns the post-increment count. If a concurrent caller
   took the last slot in between, the reservations made by this call are
   undone and the call is denied. At most ``limit`` requests are admitted
   per window regardless of concurrency.

The blacklist is a separate gate: ``check_limit`` does not consult it.
Callers check ``is_blacklisted`` first (the HTTP dependency does).

Storage failures never raise out of this module's public operations. They
are logged and the limiter fails open, or closed when configured.
"""

from __future__ import annotations

import logging
import sys
import time
from dataclasses import dataclass
from typing import Any, Callable

from quotaguard.adapters.storage.base import AbstractStorageBackend
from quotaguard.adapters.storage.factory import create_storage_backend
from quotaguard.core.config import Settings, settings as default_settings
from quotaguard.core.errors import StorageAppError
from quotaguard.core.logging import hash_identifier
from quotaguard.services.blacklist import BlacklistEntry, BlacklistManager
from quotaguard.services.keys import window_key, window_prefix
from quotaguard.services.stats import StatsRecorder, empty_stats
from quotaguard.services.tiers import WINDOWS, TierLimits, WindowType, resolve_tier

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "default"


@dataclass(frozen=True)
class RateLimitResult:
    """Result of a rate limit check.

    Attributes:
        allowed: Whether the request is allowed to proceed.
        limit: Max requests of the reported window.
        remaining: Remaining requests (0 when blocked).
        reset_at: UNIX epoch seconds when the reported window resets.
        retry_after: Seconds to wait before retrying (0 when allowed).
    """

    allowed: bool
    limit: int
    remaining: int
    reset_at: int
    retry_after: int

    def as_dict(self) -> dict[str, Any]:
        return {
            "allowed": self.allowed,
            "limit": self.limit,
            "remaining": self.remaining,
            "reset_at": self.reset_at,
            "retry_after": self.retry_after,
        }


@dataclass(frozen=True)
class WindowResult:
    """Evaluation of one (identifier, endpoint, window) tuple."""

    window: WindowType
    key: str
    window_seconds: int
    limit: int
    count: int
    reset_at: int
    now: int

    @property
    def allowed(self) -> bool:
        return self.count < self.limit

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.count)

    @property
    def retry_after(self) -> int:
        return 0 if self.allowed else max(0, self.reset_at - self.now)

    def to_result(self) -> RateLimitResult:
        return RateLimitResult(
            allowed=self.allowed,
            limit=self.limit,
            remaining=self.remaining,
            reset_at=self.reset_at,
            retry_after=self.retry_after,
        )


class WindowChecker:
    """Evaluate a single window against its limit without mutating state."""

    def __init__(
        self,
        storage: AbstractStorageBackend,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._storage = storage
        self._clock = clock

    def check(
        self,
        identifier: str,
        endpoint: str,
        window: WindowType,
        window_seconds: int,
        limit: int,
    ) -> WindowResult:
        """Read count and reset time for the window, applying lazy rollover.

        Raises:
            StorageAppError: If the backend fails.
        """
        key = window_key(identifier, endpoint, window.value)
        now = int(self._clock())
        count = self._storage.get_count(key)
        reset_at = self._storage.get_reset_time(key, window_seconds)

        # Expired windows restart at zero even if the record still exists
        if reset_at <= now:
            count = 0
            reset_at = now + window_seconds

        return WindowResult(
            window=window,
            key=key,
            window_seconds=window_seconds,
            limit=limit,
            count=count,
            reset_at=reset_at,
            now=now,
        )


class RateLimiter:
    """Admission engine combining windows, blacklist and statistics.

    Args:
        storage: Backend for counters, blacklist entries and statistics.
        enabled: When False every request is admitted with a maximal limit.
        fail_closed: Deny (instead of admit) when the backend fails.
        default_limit: Limit reported on fail-open results.
        default_window_seconds: Window reported on disabled/fail-closed results.
        stats_ttl_seconds: Retention of statistics records.
        clock: Time source function returning UNIX time in seconds.
    """

    def __init__(
        self,
        storage: AbstractStorageBackend,
        *,
        enabled: bool = True,
        fail_closed: bool = False,
        default_limit: int = 100,
        default_window_seconds: int = 3600,
        stats_ttl_seconds: int = 86400 * 7,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._storage = storage
        self._enabled = enabled
        self._fail_closed = fail_closed
        self._default_limit = default_limit
        self._default_window = default_window_seconds
        self._clock = clock
        self._checker = WindowChecker(storage, clock=clock)
        self.blacklist_manager = BlacklistManager(storage, clock=clock)
        self.stats_recorder = StatsRecorder(storage, ttl_seconds=stats_ttl_seconds, clock=clock)

    @classmethod
    def from_settings(
        cls,
        cfg: Settings | None = None,
        *,
        storage: AbstractStorageBackend | None = None,
    ) -> "RateLimiter":
        """Build a limiter from settings, creating the configured storage.

        Raises:
            ConfigurationAppError: If the configured storage is unsupported.
        """
        cfg = cfg or default_settings
        return cls(
            storage if storage is not None else create_storage_backend(cfg),
            enabled=cfg.rate_limit.enabled,
            fail_closed=cfg.rate_limit.fail_closed,
            default_limit=cfg.rate_limit.default_limit,
            default_window_seconds=cfg.rate_limit.default_window_seconds,
            stats_ttl_seconds=cfg.rate_limit.stats_ttl_seconds,
        )

    @property
    def storage(self) -> AbstractStorageBackend:
        return self._storage

    @property
    def enabled(self) -> bool:
        return self._enabled

    def close(self) -> None:
        self._storage.close()

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------
    def check_limit(
        self,
        identifier: str,
        endpoint: str = DEFAULT_ENDPOINT,
        tier: str = "basic",
    ) -> RateLimitResult:
        """Decide whether identifier may call endpoint, consuming quota if so.

        Args:
            identifier: Opaque caller identity (API key, user id, IP).
            endpoint: Protected resource name.
            tier: Tier name; unknown names fall back to basic.

        Returns:
            RateLimitResult for the first failing window, or a composite
            success result (hourly limit/reset, minimum remaining).
        """
        now = int(self._clock())
        if not self._enabled:
            return RateLimitResult(
                allowed=True,
                limit=sys.maxsize,
                remaining=sys.maxsize,
                reset_at=now + self._default_window,
                retry_after=0,
            )

        tier_name, limits = resolve_tier(tier)
        try:
            checked: list[WindowResult] = []
            for window, window_seconds in WINDOWS:
                result = self._checker.check(
                    identifier, endpoint, window, window_seconds, limits.limit_for(window)
                )
                if not result.allowed:
                    self._log_exceeded(identifier, endpoint, tier_name, result)
                    return result.to_result()
                checked.append(result)

            return self._reserve(identifier, endpoint, tier_name, checked)
        except StorageAppError as exc:
            return self._degraded_result(identifier, endpoint, limits, exc)

    def _reserve(
        self,
        identifier: str,
        endpoint: str,
        tier_name: str,
        checked: list[WindowResult],
    ) -> RateLimitResult:
        reserved: list[str] = []
        remaining: list[int] = []
        try:
            for result in checked:
                count = self._storage.increment(result.key, result.window_seconds)
                reserved.append(result.key)
                if count > result.limit:
                    # Lost the race for the last slot
                    self._release(reserved)
                    now = int(self._clock())
                    reset_at = self._storage.get_reset_time(result.key, result.window_seconds)
                    denied = RateLimitResult(
                        allowed=False,
                        limit=result.limit,
                        remaining=0,
                        reset_at=reset_at,
                        retry_after=max(0, reset_at - now),
                    )
                    logger.warning(
                        "rate_limit.exceeded",
                        extra={
                            "identifier_hash": hash_identifier(identifier),
                            "endpoint": endpoint,
                            "tier": tier_name,
                            "window": result.window.value,
                            "limit": result.limit,
                            "retry_after_s": denied.retry_after,
                            "contended": True,
                        },
                    )
                    return denied
                remaining.append(result.limit - count)
        except StorageAppError:
            self._release(reserved)
            raise

        hourly = checked[0]
        admitted = RateLimitResult(
            allowed=True,
            limit=hourly.limit,
            remaining=max(0, min(remaining)),
            reset_at=hourly.reset_at,
            retry_after=0,
        )
        logger.debug(
            "rate_limit.allowed",
            extra={
                "identifier_hash": hash_identifier(identifier),
                "endpoint": endpoint,
                "tier": tier_name,
                "limit": admitted.limit,
                "remaining": admitted.remaining,
            },
        )
        return admitted

    def _release(self, keys: list[str]) -> None:
        for key in keys:
            try:
                self._storage.decrement(key)
            except StorageAppError as exc:
                logger.error(
                    "rate_limit.release_failed",
                    extra={"error_code": exc.code, "error_message": exc.message},
                )

    def _degraded_result(
        self,
        identifier: str,
        endpoint: str,
        limits: TierLimits,
        exc: StorageAppError,
    ) -> RateLimitResult:
        now = int(self._clock())
        logger.error(
            "rate_limit.storage_error",
            extra={
                "identifier_hash": hash_identifier(identifier),
                "endpoint": endpoint,
                "error_code": exc.code,
                "error_message": exc.message,
                "fail_closed": self._fail_closed,
            },
        )
        if self._fail_closed:
            return RateLimitResult(
                allowed=False,
                limit=limits.requests_per_hour,
                remaining=0,
                reset_at=now + self._default_window,
                retry_after=self._default_window,
            )
        return RateLimitResult(
            allowed=True,
            limit=self._default_limit,
            remaining=self._default_limit,
            reset_at=now + self._default_window,
            retry_after=0,
        )

    def _log_exceeded(
        self,
        identifier: str,
        endpoint: str,
        tier_name: str,
        result: WindowResult,
    ) -> None:
        logger.warning(
            "rate_limit.exceeded",
            extra={
                "identifier_hash": hash_identifier(identifier),
                "endpoint": endpoint,
                "tier": tier_name,
                "window": result.window.value,
                "limit": result.limit,
                "retry_after_s": result.retry_after,
            },
        )

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------
    def record_request(
        self,
        identifier: str,
        endpoint: str = DEFAULT_ENDPOINT,
        success: bool = True,
    ) -> None:
        """Record a request outcome. Never raises and never denies."""
        if not self._enabled:
            return
        try:
            self.stats_recorder.record(identifier, endpoint, success)
        except StorageAppError as exc:
            logger.warning(
                "stats.record_failed",
                extra={
                    "identifier_hash": hash_identifier(identifier),
                    "endpoint": endpoint,
                    "error_code": exc.code,
                },
            )

    def get_stats(self, identifier: str, endpoint: str = DEFAULT_ENDPOINT) -> dict[str, Any]:
        try:
            return self.stats_recorder.get(identifier, endpoint)
        except StorageAppError as exc:
            logger.warning(
                "stats.read_failed",
                extra={
                    "identifier_hash": hash_identifier(identifier),
                    "endpoint": endpoint,
                    "error_code": exc.code,
                },
            )
            return empty_stats()

    def reset_stats(self, identifier: str, endpoint: str = DEFAULT_ENDPOINT) -> bool:
        try:
            return self.stats_recorder.reset(identifier, endpoint)
        except StorageAppError as exc:
            logger.error(
                "stats.reset_failed",
                extra={"identifier_hash": hash_identifier(identifier), "error_code": exc.code},
            )
            return False

    # ------------------------------------------------------------------
    # Quota management
    # ------------------------------------------------------------------
    def reset_limits(self, identifier: str, endpoint: str | None = None) -> bool:
        """Delete window counters for identifier (optionally one endpoint only).

        Returns:
            True on success, False when the backend failed.
        """
        try:
            cleared = self._storage.clear_keys(window_prefix(identifier, endpoint))
        except StorageAppError as exc:
            logger.error(
                "rate_limit.reset_failed",
                extra={
                    "identifier_hash": hash_identifier(identifier),
                    "endpoint": endpoint,
                    "error_code": exc.code,
                    "error_message": exc.message,
                },
            )
            return False

        logger.info(
            "rate_limit.reset",
            extra={"identifier_hash": hash_identifier(identifier), "endpoint": endpoint},
        )
        return cleared

    def get_time_until_reset(self, identifier: str, endpoint: str = DEFAULT_ENDPOINT) -> int:
        """Seconds remaining on the hourly window (informational)."""
        try:
            return max(0, self._storage.get_ttl(window_key(identifier, endpoint, WindowType.HOURLY.value)))
        except StorageAppError as exc:
            logger.warning(
                "rate_limit.ttl_failed",
                extra={"identifier_hash": hash_identifier(identifier), "error_code": exc.code},
            )
            return 0

    # ------------------------------------------------------------------
    # Blacklist
    # ------------------------------------------------------------------
    def is_blacklisted(self, identifier: str) -> bool:
        """Return whether identifier is blacklisted.

        On storage failure returns False, or True when failing closed.
        """
        try:
            return self.blacklist_manager.is_blacklisted(identifier)
        except StorageAppError as exc:
            logger.error(
                "blacklist.check_failed",
                extra={
                    "identifier_hash": hash_identifier(identifier),
                    "error_code": exc.code,
                    "fail_closed": self._fail_closed,
                },
            )
            return self._fail_closed

    def blacklist(self, identifier: str, duration_seconds: int = 0, reason: str = "") -> bool:
        """Blacklist identifier; duration_seconds=0 is permanent.

        Raises:
            ValidationAppError: If duration_seconds is negative.
        """
        try:
            return self.blacklist_manager.blacklist(identifier, duration_seconds, reason)
        except StorageAppError as exc:
            logger.error(
                "blacklist.add_failed",
                extra={"identifier_hash": hash_identifier(identifier), "error_code": exc.code},
            )
            return False

    def remove_from_blacklist(self, identifier: str) -> bool:
        try:
            return self.blacklist_manager.remove(identifier)
        except StorageAppError as exc:
            logger.error(
                "blacklist.remove_failed",
                extra={"identifier_hash": hash_identifier(identifier), "error_code": exc.code},
            )
            return False

    def get_blacklist_entry(self, identifier: str) -> BlacklistEntry | None:
        try:
            return self.blacklist_manager.get_entry(identifier)
        except StorageAppError as exc:
            logger.error(
                "blacklist.read_failed",
                extra={"identifier_hash": hash_identifier(identifier), "error_code": exc.code},
            )
            return None
