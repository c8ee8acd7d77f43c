"""Application-level exception types.

This module defines domain errors used across services/adapters, enabling
consistent error handling, logging, and API responses.

Taxonomy for the rate limiting engine:
- ConfigurationAppError: fatal at initialization (e.g., unsupported backend).
- StorageAppError: backend connectivity/operation failures; recovered locally
  by the limiter (fallback, fail-open or fail-closed) and never raised to
  callers of check_limit/record_request.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional to keep backward compatibility while encouraging
    consistent shapes across the codebase.
    """

    code: str
    message: str
    hint: str
    backend: str
    operation: str
    http_status: int
    retry_after: int
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when input validation fails."""


class ConfigurationAppError(AppError):
    """Raised when configuration is invalid (e.g., unknown storage backend)."""


class StorageAppError(AppError):
    """Raised when a storage backend is unreachable, times out or fails."""


class AuthenticationAppError(AppError):
    """Raised when authentication/authorization fails."""
