"""Operator endpoints for quota resets, statistics and the blacklist.

All routes require a valid X-API-Key. Storage failures degrade to
``success: false`` responses instead of errors.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from quotaguard.core.auth import verify_api_key
from quotaguard.core.rate_limit import get_rate_limiter
from quotaguard.schemas.rate_limit import (
    BlacklistRequest,
    BlacklistResponse,
    OperationResponse,
    StatsResponse,
)
from quotaguard.services.rate_limiter import DEFAULT_ENDPOINT

router = APIRouter(
    prefix="/admin",
    tags=["Admin"],
    dependencies=[Depends(verify_api_key)],
)


@router.get("/rate-limits/{identifier}/stats", response_model=StatsResponse)
def get_stats(
    identifier: str,
    endpoint: str = Query(DEFAULT_ENDPOINT, description="Endpoint the stats are scoped to"),
) -> StatsResponse:
    stats = get_rate_limiter().get_stats(identifier, endpoint)
    return StatsResponse(identifier=identifier, endpoint=endpoint, **stats)


@router.delete("/rate-limits/{identifier}/stats", response_model=OperationResponse)
def reset_stats(
    identifier: str,
    endpoint: str = Query(DEFAULT_ENDPOINT),
) -> OperationResponse:
    success = get_rate_limiter().reset_stats(identifier, endpoint)
    return OperationResponse(identifier=identifier, endpoint=endpoint, success=success)


@router.delete("/rate-limits/{identifier}", response_model=OperationResponse)
def reset_limits(
    identifier: str,
    endpoint: str | None = Query(None, description="Only reset this endpoint's windows"),
) -> OperationResponse:
    """Zero the window counters of identifier (all endpoints unless one is given)."""

    success = get_rate_limiter().reset_limits(identifier, endpoint)
    return OperationResponse(identifier=identifier, endpoint=endpoint, success=success)


@router.get("/blacklist/{identifier}", response_model=BlacklistResponse)
def get_blacklist_entry(identifier: str) -> BlacklistResponse:
    entry = get_rate_limiter().get_blacklist_entry(identifier)
    if entry is None:
        return BlacklistResponse(identifier=identifier, blacklisted=False)
    return BlacklistResponse(
        identifier=identifier,
        blacklisted=True,
        reason=entry.reason,
        created_at=entry.created_at,
        expires_at=entry.expires_at,
    )


@router.put("/blacklist/{identifier}", response_model=OperationResponse)
def add_to_blacklist(identifier: str, body: BlacklistRequest) -> OperationResponse:
    success = get_rate_limiter().blacklist(identifier, body.duration_seconds, body.reason)
    return OperationResponse(identifier=identifier, success=success)


@router.delete("/blacklist/{identifier}", response_model=OperationResponse)
def remove_from_blacklist(identifier: str) -> OperationResponse:
    success = get_rate_limiter().remove_from_blacklist(identifier)
    return OperationResponse(identifier=identifier, success=success)
