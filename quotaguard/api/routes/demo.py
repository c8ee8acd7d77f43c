"""Rate limited demo endpoints used to exercise the limiter end to end."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated

from fastapi import APIRouter, Depends, Header, Request

from quotaguard.core.logging import get_request_id
from quotaguard.core.rate_limit import (
    enforce_rate_limit,
    get_rate_limiter,
    resolve_caller,
)
from quotaguard.schemas.rate_limit import (
    RateLimitInfo,
    RateLimitStatusResponse,
    StatsResponse,
)
from quotaguard.services.rate_limiter import RateLimitResult

router = APIRouter(prefix="/api/test", tags=["Demo"])


def _utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@router.get("/simple")
def simple(
    request: Request,
    _: Annotated[RateLimitResult | None, Depends(enforce_rate_limit)],
) -> dict:
    """Minimal rate limited endpoint."""

    return {
        "message": "Test endpoint response",
        "timestamp": _utc_now(),
        "request_id": get_request_id(),
        "method": request.method,
        "endpoint": request.url.path,
    }


@router.get("/status")
def status(
    _: Annotated[RateLimitResult | None, Depends(enforce_rate_limit)],
) -> dict:
    limiter = get_rate_limiter()
    return {
        "status": "operational",
        "timestamp": _utc_now(),
        "storage": limiter.storage.kind.value,
        "rate_limit_enabled": limiter.enabled,
    }


@router.get("/rate-limit-info", response_model=RateLimitStatusResponse)
def rate_limit_info(
    request: Request,
    result: Annotated[RateLimitResult | None, Depends(enforce_rate_limit)],
    x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
) -> RateLimitStatusResponse:
    """Return the caller's quota state after admitting this request.

    Statistics are scoped to this route, the same endpoint name the
    rate limit dependency records under.
    """

    limiter = get_rate_limiter()
    identifier, tier = resolve_caller(request, x_api_key)
    endpoint = f"{request.method} {request.scope['route'].path}"

    if result is None:
        # Limiter disabled: report the unbounded decision
        result = limiter.check_limit(identifier, endpoint, tier)

    stats = limiter.get_stats(identifier, endpoint)
    return RateLimitStatusResponse(
        identifier=identifier,
        tier=tier,
        rate_limit=RateLimitInfo(**result.as_dict()),
        seconds_until_reset=limiter.get_time_until_reset(identifier, endpoint),
        stats=StatsResponse(identifier=identifier, endpoint=endpoint, **stats),
    )
