from __future__ import annotations

from fastapi import APIRouter

from quotaguard.core.rate_limit import get_rate_limiter

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check() -> dict:
    """Health check endpoint.

    Reports the active storage backend, which differs from the configured
    one when the limiter fell back to ephemeral storage.

    Returns:
        dict: ``status``, ``storage`` and ``rate_limit_enabled`` keys.
    """

    limiter = get_rate_limiter()
    return {
        "status": "ok",
        "storage": limiter.storage.kind.value,
        "rate_limit_enabled": limiter.enabled,
    }
