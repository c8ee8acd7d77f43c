"""Tests for the blacklist overlay and request statistics."""

import pytest

from quotaguard.core.errors import ValidationAppError
from quotaguard.services.blacklist import BlacklistManager
from quotaguard.services.keys import stats_key
from quotaguard.services.stats import StatsRecord, StatsRecorder


class TestBlacklist:
    def test_permanent_entry(self, storage, clock) -> None:
        manager = BlacklistManager(storage, clock=clock)

        assert manager.blacklist("user", 0, "abuse") is True

        clock.return_value = 10_000_000.0
        assert manager.is_blacklisted("user") is True
        entry = manager.get_entry("user")
        assert entry is not None
        assert entry.permanent is True
        assert entry.reason == "abuse"
        assert entry.created_at == 1000

    def test_temporary_entry_expires(self, storage, clock) -> None:
        manager = BlacklistManager(storage, clock=clock)

        manager.blacklist("user", 60)
        entry = manager.get_entry("user")
        assert entry.expires_at == 1060
        assert entry.permanent is False

        clock.return_value = 1059.0
        assert manager.is_blacklisted("user") is True

        clock.return_value = 1060.0
        assert manager.is_blacklisted("user") is False
        assert manager.get_entry("user") is None

    def test_remove(self, storage, clock) -> None:
        manager = BlacklistManager(storage, clock=clock)
        manager.blacklist("user")

        assert manager.remove("user") is True
        assert manager.is_blacklisted("user") is False
        assert manager.remove("user") is True

    def test_reblacklisting_overwrites(self, storage, clock) -> None:
        manager = BlacklistManager(storage, clock=clock)
        manager.blacklist("user", 60, "first")
        manager.blacklist("user", 0, "second")

        clock.return_value = 5000.0
        assert manager.get_entry("user").reason == "second"

    def test_negative_duration_rejected(self, storage) -> None:
        manager = BlacklistManager(storage)

        with pytest.raises(ValidationAppError) as exc_info:
            manager.blacklist("user", -1)

        assert exc_info.value.code == "invalid_blacklist_duration"
        assert manager.is_blacklisted("user") is False

    def test_corrupt_entry_still_blacklists(self, storage) -> None:
        storage.set_with_expiry("blacklist:user", "not-json", 0)
        manager = BlacklistManager(storage)

        assert manager.is_blacklisted("user") is True
        assert manager.get_entry("user").permanent is True

    def test_limiter_propagates_validation_error(self, limiter) -> None:
        with pytest.raises(ValidationAppError):
            limiter.blacklist("user", -5)


class TestStats:
    def test_empty_stats(self, storage, clock) -> None:
        recorder = StatsRecorder(storage, clock=clock)

        assert recorder.get("user", "ep") == {
            "total_requests": 0,
            "successful_requests": 0,
            "failed_requests": 0,
            "success_rate": 100.0,
            "last_request": None,
            "first_request": None,
        }

    def test_record_accumulates(self, storage, clock) -> None:
        recorder = StatsRecorder(storage, clock=clock)

        recorder.record("user", "ep", True)
        clock.return_value = 1005.0
        recorder.record("user", "ep", True)
        clock.return_value = 1010.0
        recorder.record("user", "ep", False)

        stats = recorder.get("user", "ep")
        assert stats["total_requests"] == 3
        assert stats["successful_requests"] == 2
        assert stats["failed_requests"] == 1
        assert stats["success_rate"] == 66.67
        assert stats["first_request"] == 1000
        assert stats["last_request"] == 1010

    def test_stats_scoped_per_endpoint(self, storage, clock) -> None:
        recorder = StatsRecorder(storage, clock=clock)

        recorder.record("user", "ep1", True)

        assert recorder.get("user", "ep2")["total_requests"] == 0

    def test_stats_expire_after_ttl(self, storage, clock) -> None:
        recorder = StatsRecorder(storage, ttl_seconds=100, clock=clock)
        recorder.record("user", "ep", True)

        clock.return_value = 1100.0

        assert recorder.get("user", "ep")["total_requests"] == 0

    def test_reset(self, storage, clock) -> None:
        recorder = StatsRecorder(storage, clock=clock)
        recorder.record("user", "ep", False)

        assert recorder.reset("user", "ep") is True
        assert recorder.get("user", "ep")["total_requests"] == 0

    def test_corrupt_record_restarts_counting(self, storage, clock) -> None:
        storage.set_with_expiry(stats_key("user", "ep"), "{broken", 0)
        recorder = StatsRecorder(storage, clock=clock)

        record = recorder.record("user", "ep", True)

        assert record.total_requests == 1

    @pytest.mark.parametrize(
        "payload",
        [
            '{"total_requests": "n/a"}',
            '{"total_requests": 4, "first_request_at": "yesterday"}',
            '{"successful_requests": [1, 2]}',
            "[1, 2, 3]",
        ],
    )
    def test_non_numeric_fields_yield_empty_record(self, payload) -> None:
        assert StatsRecord.from_json(payload) == StatsRecord()

    def test_record_request_survives_non_numeric_record(self, storage, limiter) -> None:
        storage.set_with_expiry(stats_key("user", "ep"), '{"total_requests": "n/a"}', 0)

        limiter.record_request("user", "ep", True)

        stats = limiter.get_stats("user", "ep")
        assert stats["total_requests"] == 1
        assert stats["successful_requests"] == 1

    def test_success_rate_rounding(self) -> None:
        assert StatsRecord(total_requests=3, successful_requests=1).success_rate == 33.33
        assert StatsRecord().success_rate == 100.0

    def test_record_request_through_limiter(self, limiter) -> None:
        limiter.record_request("user", "ep", success=True)
        limiter.record_request("user", "ep", success=False)

        stats = limiter.get_stats("user", "ep")
        assert stats["total_requests"] == 2
        assert stats["success_rate"] == 50.0

        assert limiter.reset_stats("user", "ep") is True
        assert limiter.get_stats("user", "ep")["total_requests"] == 0
