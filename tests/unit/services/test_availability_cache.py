"""
Unit tests for the availability cache read path.
"""

from __future__ import annotations

import json
import threading
from datetime import date, datetime, timezone

import pytest

from casa_booking.errors import CacheUnavailable, UpstreamUnavailable, ValidationError
from casa_booking.schemas.availability import CacheEnvelope
from casa_booking.services.availability_cache import AvailabilityCache, cache_key

PROPERTY_ID = "listing-123"


@pytest.mark.unit
def test_cache_key_normalizes_date_types() -> None:
    """Test that dates, datetimes and ISO strings map to the same key."""
    as_strings = cache_key(PROPERTY_ID, "2025-11-01", "2025-12-01")
    as_dates = cache_key(PROPERTY_ID, date(2025, 11, 1), date(2025, 12, 1))
    as_datetimes = cache_key(
        PROPERTY_ID,
        datetime(2025, 11, 1, 15, 30, tzinfo=timezone.utc),
        "2025-12-01T00:00:00Z",
    )

    assert as_strings == as_dates == as_datetimes == "availability:listing-123:2025-11-01:2025-12-01"


@pytest.mark.unit
def test_cache_key_rejects_inverted_range() -> None:
    """Test that an empty or inverted range is a ValidationError."""
    with pytest.raises(ValidationError):
        cache_key(PROPERTY_ID, "2025-12-01", "2025-12-01")
    with pytest.raises(ValidationError):
        cache_key(PROPERTY_ID, "2025-12-05", "2025-12-01")


@pytest.mark.unit
def test_cache_key_rejects_garbage_dates() -> None:
    with pytest.raises(ValidationError, match="Invalid start"):
        cache_key(PROPERTY_ID, "next tuesday", "2025-12-01")


@pytest.mark.unit
def test_two_reads_within_ttl_fetch_once(cache: AvailabilityCache, calendar_source, clock) -> None:
    """Test that a second read inside the TTL is served from the store."""
    first = cache.get_availability(PROPERTY_ID, "2025-12-01", "2025-12-08")
    clock.advance(minutes=30)
    second = cache.get_availability(PROPERTY_ID, "2025-12-01", "2025-12-08")

    assert len(calendar_source.calls) == 1
    assert first.payload == second.payload
    assert second.fetched_at == first.fetched_at
    assert second.stale is False


@pytest.mark.unit
def test_read_after_ttl_refetches_exactly_once(
    cache: AvailabilityCache, calendar_source, clock
) -> None:
    """Test that an expired entry triggers one fetch and updates fetched_at."""
    first = cache.get_availability(PROPERTY_ID, "2025-12-01", "2025-12-08")
    clock.advance(hours=2)

    refreshed = cache.get_availability(PROPERTY_ID, "2025-12-01", "2025-12-08")
    again = cache.get_availability(PROPERTY_ID, "2025-12-01", "2025-12-08")

    assert len(calendar_source.calls) == 2
    assert refreshed.fetched_at > first.fetched_at
    assert again.fetched_at == refreshed.fetched_at


@pytest.mark.unit
def test_payload_is_returned_unchanged(cache: AvailabilityCache, calendar_source) -> None:
    """Test that the upstream payload passes through without interpretation."""
    calendar_source.overrides["2025-12-02"] = {"status": "booked", "minNights": 3}

    record = cache.get_availability(PROPERTY_ID, "2025-12-01", "2025-12-04")

    assert record.payload == calendar_source.get_calendar(
        PROPERTY_ID, date(2025, 12, 1), date(2025, 12, 4)
    )
    assert record.start == date(2025, 12, 1)
    assert record.end == date(2025, 12, 4)
    assert record.property_id == PROPERTY_ID


@pytest.mark.unit
def test_stored_envelope_carries_ttl_and_retention(cache: AvailabilityCache, store) -> None:
    """Test that the stored envelope records the TTL and expires after retention."""
    cache.get_availability(PROPERTY_ID, "2025-12-01", "2025-12-08")
    key = "availability:listing-123:2025-12-01:2025-12-08"

    envelope = CacheEnvelope.model_validate_json(store.data[key])

    assert envelope.ttl_seconds == 3600
    assert store.ttls[key] == 7 * 24 * 3600


@pytest.mark.unit
def test_serves_stale_when_refresh_fails(cache: AvailabilityCache, calendar_source, clock) -> None:
    """Test that an expired entry is served flagged stale when Guesty is down."""
    original = cache.get_availability(PROPERTY_ID, "2025-12-01", "2025-12-08")
    clock.advance(hours=2)
    calendar_source.failing.add(date(2025, 12, 1))

    record = cache.get_availability(PROPERTY_ID, "2025-12-01", "2025-12-08")

    assert record.stale is True
    assert record.payload == original.payload
    assert record.fetched_at == original.fetched_at
    assert len(calendar_source.calls) == 2


@pytest.mark.unit
def test_miss_with_failing_upstream_raises(cache: AvailabilityCache, calendar_source, store) -> None:
    """Test that without a cached value the upstream error propagates."""
    calendar_source.failing.add(date(2025, 12, 1))

    with pytest.raises(UpstreamUnavailable):
        cache.get_availability(PROPERTY_ID, "2025-12-01", "2025-12-08")

    assert store.data == {}


@pytest.mark.unit
def test_corrupt_entry_is_treated_as_miss(cache: AvailabilityCache, calendar_source, store) -> None:
    key = "availability:listing-123:2025-12-01:2025-12-08"
    store.data[key] = "not-json"

    record = cache.get_availability(PROPERTY_ID, "2025-12-01", "2025-12-08")

    assert len(calendar_source.calls) == 1
    assert record.stale is False
    assert CacheEnvelope.model_validate_json(store.data[key])


@pytest.mark.unit
def test_write_failure_still_returns_fresh_data(
    cache: AvailabilityCache, calendar_source, store
) -> None:
    """Test that a store write failure after a good fetch does not fail the read."""

    def broken_write(*args: object, **kwargs: object) -> bool:
        raise CacheUnavailable("Store unavailable during compare_and_set")

    store.compare_and_set = broken_write  # type: ignore[method-assign]

    record = cache.get_availability(PROPERTY_ID, "2025-12-01", "2025-12-08")

    assert record.stale is False
    assert len(record.payload) == 7


@pytest.mark.unit
def test_older_fetch_never_overwrites_newer_entry(
    cache: AvailabilityCache, store, clock
) -> None:
    """Test that a write is skipped when the stored entry was fetched later."""
    key = "availability:listing-123:2025-12-01:2025-12-08"
    newer = CacheEnvelope(
        payload=json.dumps([{"date": "2025-12-01", "status": "booked"}]).encode(),
        fetched_at=datetime(2025, 11, 17, 10, 0, tzinfo=timezone.utc),
        ttl_seconds=3600,
    )
    store.data[key] = newer.model_dump_json()

    # The clock (09:00) is earlier than the stored fetch (10:00).
    cache.refresh_partition(PROPERTY_ID, date(2025, 12, 1), date(2025, 12, 8))

    stored = CacheEnvelope.model_validate_json(store.data[key])
    assert stored.fetched_at == newer.fetched_at
    assert stored.decoded() == [{"date": "2025-12-01", "status": "booked"}]


@pytest.mark.unit
def test_concurrent_misses_fetch_once(cache: AvailabilityCache, calendar_source) -> None:
    """Test that concurrent readers of one missing key share a single fetch."""
    results = []

    def read() -> None:
        results.append(cache.get_availability(PROPERTY_ID, "2025-12-01", "2025-12-08"))

    threads = [threading.Thread(target=read) for _ in range(5)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(results) == 5
    assert len(calendar_source.calls) == 1


@pytest.mark.unit
def test_get_month_uses_partition_key(cache: AvailabilityCache, calendar_source, store) -> None:
    """Test that month reads share keys with the scheduled refresh."""
    record = cache.get_month(PROPERTY_ID, 2025, 12)

    assert record.start == date(2025, 12, 1)
    assert record.end == date(2026, 1, 1)
    assert "availability:listing-123:2025-12-01:2026-01-01" in store.data
    assert calendar_source.calls == [(PROPERTY_ID, date(2025, 12, 1), date(2026, 1, 1))]


@pytest.mark.unit
def test_get_month_rejects_invalid_month(cache: AvailabilityCache) -> None:
    with pytest.raises(ValidationError):
        cache.get_month(PROPERTY_ID, 2025, 13)


@pytest.mark.unit
def test_invalidate_forces_refetch(cache: AvailabilityCache, calendar_source) -> None:
    cache.get_availability(PROPERTY_ID, "2025-12-01", "2025-12-08")
    cache.invalidate(PROPERTY_ID, "2025-12-01", "2025-12-08")
    cache.get_availability(PROPERTY_ID, "2025-12-01", "2025-12-08")

    assert len(calendar_source.calls) == 2


@pytest.mark.unit
def test_range_longer_than_cap_is_rejected(cache: AvailabilityCache, calendar_source) -> None:
    """Test that a multi-year range is refused before any upstream call."""
    with pytest.raises(ValidationError, match="limited to 400 days"):
        cache.get_availability(PROPERTY_ID, "2025-12-01", "2027-12-01")

    assert calendar_source.calls == []


@pytest.mark.unit
def test_slow_fetch_is_not_duplicated_by_waiting_readers(
    store, calendar_source, clock
) -> None:
    """Test that readers timing out on the lock never start a second fetch."""
    slow_cache = AvailabilityCache(
        store,
        calendar_source,
        property_id=PROPERTY_ID,
        ttl_seconds=3600,
        clock=clock,
        lock_wait_seconds=0.1,
    )
    fetch_started = threading.Event()
    release_fetch = threading.Event()
    original_get_calendar = calendar_source.get_calendar

    def slow_get_calendar(listing_id: str, start: date, end: date) -> object:
        fetch_started.set()
        release_fetch.wait(timeout=5)
        return original_get_calendar(listing_id, start, end)

    calendar_source.get_calendar = slow_get_calendar
    results: list[object] = []
    errors: list[Exception] = []

    def read() -> None:
        try:
            results.append(slow_cache.get_availability(PROPERTY_ID, "2025-12-01", "2025-12-08"))
        except UpstreamUnavailable as e:
            errors.append(e)

    leader = threading.Thread(target=read)
    leader.start()
    assert fetch_started.wait(timeout=5)

    followers = [threading.Thread(target=read) for _ in range(2)]
    for thread in followers:
        thread.start()
    for thread in followers:
        thread.join()
    release_fetch.set()
    leader.join()

    assert len(calendar_source.calls) == 1
    assert len(results) == 1
    assert len(errors) == 2
    assert "being refreshed" in str(errors[0])


@pytest.mark.unit
def test_lock_not_acquired_serves_expired_entry_as_stale(
    cache: AvailabilityCache, calendar_source, store, clock
) -> None:
    """Test that a reader without the lock serves the stored entry instead of fetching."""
    original = cache.get_availability(PROPERTY_ID, "2025-12-01", "2025-12-08")
    clock.advance(hours=2)
    store.locks_available = False

    record = cache.get_availability(PROPERTY_ID, "2025-12-01", "2025-12-08")

    assert len(calendar_source.calls) == 1
    assert record.stale is True
    assert record.fetched_at == original.fetched_at


@pytest.mark.unit
def test_lock_not_acquired_without_entry_raises(
    cache: AvailabilityCache, calendar_source, store
) -> None:
    store.locks_available = False

    with pytest.raises(UpstreamUnavailable, match="being refreshed"):
        cache.get_availability(PROPERTY_ID, "2025-12-01", "2025-12-08")

    assert calendar_source.calls == []
    assert store.data == {}


@pytest.mark.unit
def test_refresh_partition_without_lock_raises(
    cache: AvailabilityCache, calendar_source, store
) -> None:
    """Test that a refresh never fetches while another refresh holds the key."""
    store.locks_available = False

    with pytest.raises(UpstreamUnavailable, match="already in progress"):
        cache.refresh_partition(PROPERTY_ID, date(2025, 12, 1), date(2026, 1, 1))

    assert calendar_source.calls == []
