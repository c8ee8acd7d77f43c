"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It ensures that the TESTING environment variable is set to prevent
loading the .env file during tests.
"""

import os

# CRITICAL: Set this before any imports that might load settings
# This prevents Pydantic from loading the .env file in tests
os.environ["TESTING"] = "true"

# Set default env vars that all tests might need
os.environ.setdefault("RATE_LIMIT_STORAGE", "ephemeral")
os.environ.setdefault("APP_API_KEY_REQUIRED", "true")
os.environ.setdefault("APP_API_KEYS", "test-api-key-123,test-api-key-456")

from unittest.mock import Mock

import pytest

from quotaguard.adapters.storage.ephemeral import EphemeralStorage
from quotaguard.services.rate_limiter import RateLimiter


@pytest.fixture
def clock() -> Mock:
    """Controllable time source starting at t=1000."""
    return Mock(return_value=1000.0)


@pytest.fixture
def storage(clock: Mock) -> EphemeralStorage:
    return EphemeralStorage(clock=clock)


@pytest.fixture
def limiter(storage: EphemeralStorage, clock: Mock) -> RateLimiter:
    return RateLimiter(storage, clock=clock)
