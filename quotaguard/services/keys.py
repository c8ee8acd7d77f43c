"""Storage key layout for windows, statistics and the blacklist.

Identifier and endpoint components are percent-encoded so that neither a
``:`` separator nor a ``*`` wildcard inside caller-supplied values can make
one caller's prefix match another caller's keys.
"""

from __future__ import annotations

from urllib.parse import quote

WINDOW_NAMESPACE = "rate_limit"
STATS_NAMESPACE = "rate_limit_stats"
BLACKLIST_NAMESPACE = "blacklist"


def _encode(component: str) -> str:
    return quote(component, safe="")


def window_key(identifier: str, endpoint: str, window_type: str) -> str:
    """Key for one (identifier, endpoint, window) counter."""
    return f"{WINDOW_NAMESPACE}:{_encode(identifier)}:{_encode(endpoint)}:{window_type}"


def window_prefix(identifier: str, endpoint: str | None = None) -> str:
    """Pattern matching every window key of identifier (optionally one endpoint)."""
    if endpoint is None:
        return f"{WINDOW_NAMESPACE}:{_encode(identifier)}:*"
    return f"{WINDOW_NAMESPACE}:{_encode(identifier)}:{_encode(endpoint)}:*"


def stats_key(identifier: str, endpoint: str) -> str:
    return f"{STATS_NAMESPACE}:{_encode(identifier)}:{_encode(endpoint)}"


def blacklist_key(identifier: str) -> str:
    return f"{BLACKLIST_NAMESPACE}:{_encode(identifier)}"
