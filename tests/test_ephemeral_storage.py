"""Unit tests for the in-memory storage backend."""

import threading

from quotaguard.adapters.storage.ephemeral import EphemeralStorage


def test_increment_opens_window_and_counts(storage, clock) -> None:
    assert storage.increment("k", 60) == 1
    assert storage.increment("k", 60) == 2
    assert storage.get_count("k") == 2
    assert storage.get_reset_time("k", 60) == 1060


def test_increment_keeps_expiry_of_open_window(storage, clock) -> None:
    storage.increment("k", 60)

    clock.return_value = 1030.0
    storage.increment("k", 60)

    # Fixed window: later increments do not push the reset time out
    assert storage.get_reset_time("k", 60) == 1060
    assert storage.get_ttl("k") == 30


def test_expired_window_reads_as_zero_and_reopens(storage, clock) -> None:
    storage.increment("k", 10)
    storage.increment("k", 10)

    clock.return_value = 1010.0
    assert storage.get_count("k") == 0
    assert storage.exists("k") is False
    assert storage.get_reset_time("k", 10) == 1020

    assert storage.increment("k", 10) == 1
    assert storage.get_reset_time("k", 10) == 1020


def test_decrement_never_goes_below_zero(storage) -> None:
    storage.increment("k", 60)

    assert storage.decrement("k") == 0
    assert storage.decrement("k") == 0
    assert storage.decrement("missing") == 0


def test_values_with_and_without_expiry(storage, clock) -> None:
    storage.set_with_expiry("temp", "v1", 30)
    storage.set_with_expiry("perm", "v2", 0)

    assert storage.get_value("temp") == "v1"
    assert storage.get_ttl("temp") == 30
    assert storage.get_ttl("perm") == 0

    clock.return_value = 1_000_000.0
    assert storage.get_value("temp") is None
    assert storage.get_value("perm") == "v2"


def test_delete_missing_key_succeeds(storage) -> None:
    assert storage.delete("nothing") is True


def test_clear_keys_prefix_and_exact(storage) -> None:
    storage.increment("rate_limit:a:x:hourly", 60)
    storage.increment("rate_limit:a:y:hourly", 60)
    storage.increment("rate_limit:b:x:hourly", 60)

    assert storage.clear_keys("rate_limit:a:*") is True
    assert storage.exists("rate_limit:a:x:hourly") is False
    assert storage.exists("rate_limit:a:y:hourly") is False
    assert storage.exists("rate_limit:b:x:hourly") is True

    storage.clear_keys("rate_limit:b:x:hourly")
    assert storage.exists("rate_limit:b:x:hourly") is False


def test_get_ttl_missing_key_is_zero(storage) -> None:
    assert storage.get_ttl("nope") == 0


def test_concurrent_increments_are_not_lost() -> None:
    storage = EphemeralStorage()
    barrier = threading.Barrier(20)

    def worker() -> None:
        barrier.wait()
        for _ in range(50):
            storage.increment("k", 60)

    threads = [threading.Thread(target=worker) for _ in range(20)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert storage.get_count("k") == 1000
