"""Tests for storage backend selection and fallback."""

import pytest

from quotaguard.adapters.storage.base import StorageKind, split_pattern
from quotaguard.adapters.storage.ephemeral import EphemeralStorage
from quotaguard.adapters.storage.factory import create_storage_backend, resolve_storage_kind
from quotaguard.adapters.storage.relational import RelationalStorage
from quotaguard.core.config import DatabaseSettings, RateLimitSettings, RedisSettings, Settings
from quotaguard.core.errors import ConfigurationAppError
from quotaguard.services.rate_limiter import RateLimiter


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("ephemeral", StorageKind.EPHEMERAL),
        ("memory", StorageKind.EPHEMERAL),
        ("Redis", StorageKind.DISTRIBUTED_CACHE),
        ("distributed_cache", StorageKind.DISTRIBUTED_CACHE),
        ("database", StorageKind.RELATIONAL),
        (" relational ", StorageKind.RELATIONAL),
    ],
)
def test_resolve_storage_kind(name: str, expected: StorageKind) -> None:
    assert resolve_storage_kind(name) is expected


def test_unsupported_storage_is_a_configuration_error() -> None:
    cfg = Settings(rate_limit=RateLimitSettings(storage="mongodb"))

    with pytest.raises(ConfigurationAppError) as exc_info:
        create_storage_backend(cfg)

    assert exc_info.value.code == "unsupported_storage"
    assert "mongodb" in exc_info.value.message


def test_unsupported_storage_fails_limiter_construction() -> None:
    cfg = Settings(rate_limit=RateLimitSettings(storage="mongodb"))

    with pytest.raises(ConfigurationAppError):
        RateLimiter.from_settings(cfg)


def test_ephemeral_storage_selected() -> None:
    cfg = Settings(rate_limit=RateLimitSettings(storage="ephemeral"))

    assert isinstance(create_storage_backend(cfg), EphemeralStorage)


def test_unreachable_redis_falls_back_to_ephemeral() -> None:
    cfg = Settings(
        rate_limit=RateLimitSettings(storage="distributed_cache"),
        redis=RedisSettings(
            host="127.0.0.1",
            port=1,
            socket_timeout_seconds=0.2,
            connect_timeout_seconds=0.2,
        ),
    )

    storage = create_storage_backend(cfg)

    assert storage.kind is StorageKind.EPHEMERAL


def test_relational_storage_selected(tmp_path) -> None:
    cfg = Settings(
        rate_limit=RateLimitSettings(storage="relational"),
        database=DatabaseSettings(url=f"sqlite:///{tmp_path / 'rl.db'}"),
    )

    storage = create_storage_backend(cfg)

    assert isinstance(storage, RelationalStorage)
    storage.close()


def test_unreachable_database_falls_back_to_ephemeral(tmp_path) -> None:
    cfg = Settings(
        rate_limit=RateLimitSettings(storage="relational"),
        database=DatabaseSettings(url=f"sqlite:///{tmp_path / 'no' / 'such' / 'dir.db'}"),
    )

    assert isinstance(create_storage_backend(cfg), EphemeralStorage)


def test_limiter_from_settings_reads_flags() -> None:
    cfg = Settings(
        rate_limit=RateLimitSettings(storage="memory", enabled=False, fail_closed=True)
    )

    limiter = RateLimiter.from_settings(cfg)

    assert limiter.enabled is False
    assert limiter.storage.kind is StorageKind.EPHEMERAL


def test_split_pattern() -> None:
    assert split_pattern("rate_limit:a:*") == ("rate_limit:a:", True)
    assert split_pattern("blacklist:a") == ("blacklist:a", False)
