"""Tier policy: named bundles of quota limits.

The table is static; unknown tier names fall back to ``basic``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Mapping


class WindowType(str, Enum):
    """Window granularities, in evaluation order."""

    HOURLY = "hourly"
    MINUTE = "minute"
    BURST = "burst"


# Evaluation order matters: the first failing window is the one reported.
WINDOWS: tuple[tuple[WindowType, int], ...] = (
    (WindowType.HOURLY, 3600),
    (WindowType.MINUTE, 60),
    (WindowType.BURST, 10),
)

DEFAULT_TIER = "basic"


@dataclass(frozen=True)
class TierLimits:
    """Limits applied to a caller class.

    Attributes:
        requests_per_hour: Limit of the hourly window.
        requests_per_minute: Limit of the minute window.
        burst_limit: Limit of the 10 second burst window.
    """

    requests_per_hour: int
    requests_per_minute: int
    burst_limit: int

    def limit_for(self, window: WindowType) -> int:
        if window is WindowType.HOURLY:
            return self.requests_per_hour
        if window is WindowType.MINUTE:
            return self.requests_per_minute
        return self.burst_limit


TIERS: Mapping[str, TierLimits] = MappingProxyType(
    {
        "basic": TierLimits(requests_per_hour=100, requests_per_minute=10, burst_limit=5),
        "premium": TierLimits(requests_per_hour=1000, requests_per_minute=50, burst_limit=20),
        "enterprise": TierLimits(requests_per_hour=10000, requests_per_minute=200, burst_limit=100),
    }
)


def resolve_tier(tier: str | None) -> tuple[str, TierLimits]:
    """Return (tier_name, limits), falling back to basic for unknown names."""

    name = (tier or DEFAULT_TIER).strip().lower()
    if name not in TIERS:
        name = DEFAULT_TIER
    return name, TIERS[name]
