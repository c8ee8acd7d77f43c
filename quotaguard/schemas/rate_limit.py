"""Pydantic schemas for rate limiting and quota management responses."""

from __future__ import annotations

from pydantic import BaseModel, Field


class RateLimitInfo(BaseModel):
    """Rate limit decision as exposed over HTTP."""

    allowed: bool = Field(..., description="Whether the request was admitted.")
    limit: int = Field(..., description="Limit of the reported window.")
    remaining: int = Field(..., description="Requests left before the limit is hit.")
    reset_at: int = Field(..., description="UNIX epoch seconds when the window resets.")
    retry_after: int = Field(0, description="Seconds to wait before retrying (0 when allowed).")


class StatsResponse(BaseModel):
    """Accumulated request statistics for an identifier/endpoint pair."""

    identifier: str
    endpoint: str
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    success_rate: float = Field(100.0, description="Percentage of successful requests.")
    last_request: int | None = Field(None, description="UNIX epoch seconds of the last request.")
    first_request: int | None = Field(None, description="UNIX epoch seconds of the first request.")


class RateLimitStatusResponse(BaseModel):
    """Caller-facing view of the current quota state."""

    identifier: str
    tier: str
    rate_limit: RateLimitInfo
    seconds_until_reset: int = Field(..., description="Seconds left on the hourly window.")
    stats: StatsResponse


class BlacklistRequest(BaseModel):
    """Operator request to blacklist an identifier."""

    duration_seconds: int = Field(
        0,
        ge=0,
        description="Blacklist duration in seconds; 0 keeps the entry until removed.",
    )
    reason: str = Field("", max_length=500, description="Why the identifier is blocked.")


class BlacklistResponse(BaseModel):
    """Blacklist state of an identifier."""

    identifier: str
    blacklisted: bool
    reason: str | None = None
    created_at: int | None = None
    expires_at: int | None = Field(None, description="0 means permanent.")


class OperationResponse(BaseModel):
    """Outcome of a best-effort management operation."""

    identifier: str
    endpoint: str | None = None
    success: bool
