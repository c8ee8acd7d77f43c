"""Rate limiting dependency for FastAPI routes.

This module wires the rate limiting engine into the HTTP layer.

Design goals:
- Minimal coupling: API routes depend on a dependency function only.
- Swap-friendly: storage backend is chosen by configuration behind an
  abstract interface.
- Explicit composition: the blacklist gate runs before the quota check.

Rate limiting strategy:
- Three fixed windows (hourly, minute, burst) per caller and route.
- Callers are identified by API key; without one, by client IP.
- The caller's tier comes from the APP_API_KEY_TIERS mapping (default basic).
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import Header, HTTPException, Request, Response, status

from quotaguard.core.config import settings
from quotaguard.core.logging import hash_identifier
from quotaguard.services.rate_limiter import RateLimiter, RateLimitResult
from quotaguard.services.tiers import DEFAULT_TIER

logger = logging.getLogger(__name__)


_limiter: RateLimiter | None = None


def get_rate_limiter() -> RateLimiter:
    """Return a process-wide rate limiter instance.

    The instance is cached in-module to preserve state across requests.

    Returns:
        RateLimiter: Configured limiter instance.

    Raises:
        ConfigurationAppError: If the configured storage backend is unsupported.
    """

    global _limiter

    if _limiter is None:
        _limiter = RateLimiter.from_settings(settings)

    return _limiter


def set_rate_limiter(limiter: RateLimiter | None) -> None:
    """Replace (or drop, with None) the cached limiter; used by tests and startup."""

    global _limiter
    _limiter = limiter


def parse_api_key_tiers(mapping: str | None) -> dict[str, str]:
    """Parse comma-separated ``key:tier`` pairs.

    Examples:
        >>> parse_api_key_tiers("k1:premium, k2:enterprise")
        {'k1': 'premium', 'k2': 'enterprise'}
        >>> parse_api_key_tiers(None)
        {}
    """
    if not mapping:
        return {}

    tiers: dict[str, str] = {}
    for pair in mapping.split(","):
        key, sep, tier = pair.strip().rpartition(":")
        if sep and key.strip() and tier.strip():
            tiers[key.strip()] = tier.strip().lower()
    return tiers


def resolve_caller(request: Request, x_api_key: str | None) -> tuple[str, str]:
    """Build the limiter identifier and tier for the current request.

    Args:
        request: FastAPI request.
        x_api_key: API key value from the X-API-Key header.

    Returns:
        Tuple of (identifier, tier_name).
    """

    if x_api_key:
        tier = parse_api_key_tiers(settings.app.api_key_tiers).get(x_api_key, DEFAULT_TIER)
        return f"api_key:{hash_identifier(x_api_key)}", tier

    client_host = request.client.host if request.client else "unknown"
    return f"ip:{client_host}", DEFAULT_TIER


def build_rate_limit_headers(result: RateLimitResult) -> dict[str, str]:
    """Map a RateLimitResult onto response headers.

    ``Retry-After`` and ``X-RateLimit-Retry-After`` are only present on denial.
    """

    headers = {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(max(0, result.remaining)),
        "X-RateLimit-Reset": str(result.reset_at),
    }
    if not result.allowed:
        headers["Retry-After"] = str(result.retry_after)
        headers["X-RateLimit-Retry-After"] = str(result.retry_after)
    return headers


def _endpoint_name(request: Request) -> str:
    route = request.scope.get("route")
    path = getattr(route, "path", None) or request.url.path
    return f"{request.method} {path}"


def enforce_rate_limit(
    request: Request,
    response: Response,
    x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
) -> RateLimitResult | None:
    """FastAPI dependency enforcing blacklist and rate limits.

    Declared sync so FastAPI runs it in the threadpool: every storage call
    below is blocking I/O (Redis or SQL).

    Denies blacklisted callers with HTTP 403, then consumes one unit from each
    window. Admitted requests get X-RateLimit-* headers and are recorded in
    the caller's statistics.

    Args:
        request: FastAPI request.
        response: Response whose headers receive the rate limit metadata.
        x_api_key: API key from X-API-Key header.

    Returns:
        The RateLimitResult of the admitted request, or None when disabled.

    Raises:
        HTTPException: 403 when blacklisted, 429 when a window is exhausted.
    """

    limiter = get_rate_limiter()
    if not limiter.enabled:
        return None

    identifier, tier = resolve_caller(request, x_api_key)
    endpoint = _endpoint_name(request)
    identifier_hash = hash_identifier(identifier)

    if limiter.is_blacklisted(identifier):
        logger.warning(
            "rate_limit.blacklisted",
            extra={"identifier_hash": identifier_hash, "endpoint": endpoint},
        )
        limiter.record_request(identifier, endpoint, success=False)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied. Your access has been temporarily restricted.",
        )

    result = limiter.check_limit(identifier, endpoint, tier)
    headers = build_rate_limit_headers(result) if settings.rate_limit.include_headers else {}

    if result.allowed:
        logger.info(
            "rate_limit.allowed",
            extra={
                "identifier_hash": identifier_hash,
                "endpoint": endpoint,
                "tier": tier,
                "limit": result.limit,
                "remaining": result.remaining,
            },
        )
        response.headers.update(headers)
        limiter.record_request(identifier, endpoint, success=True)
        return result

    logger.warning(
        "rate_limit.rejected",
        extra={
            "identifier_hash": identifier_hash,
            "endpoint": endpoint,
            "tier": tier,
            "limit": result.limit,
            "retry_after_s": result.retry_after,
        },
    )
    limiter.record_request(identifier, endpoint, success=False)
    raise HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail=f"Rate limit exceeded. Try again in {result.retry_after} seconds.",
        headers=headers or None,
    )
