"""
Availability cache in front of the Guesty calendar endpoint.

Reads serve a stored envelope while it is younger than its TTL and fetch
from Guesty otherwise. The scheduled refresh rewrites month partitions
unconditionally.

Policy on upstream failure (every read path): serve-stale-on-error. When a
refresh attempt fails and an expired envelope is still stored, it is
returned with ``stale=True``; without one the upstream error propagates.
Envelopes are kept in the store for ``retention_seconds`` (longer than the
TTL) so there is something to fall back on.

Concurrent refreshes of one key are serialized by a store lock. A reader
that cannot get the lock in time serves whatever is stored (flagged stale
if expired) instead of fetching in parallel. Writes are a compare-and-set
on ``fetched_at``, so an older fetch never replaces newer data even if a
lock expired under a slow fetch.
"""

from __future__ import annotations

import json
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import date, datetime
from typing import Any, Callable, Protocol

import structlog
from pydantic import ValidationError as PydanticValidationError

from casa_booking.errors import (
    CacheUnavailable,
    UpstreamError,
    UpstreamUnavailable,
    ValidationError,
)
from casa_booking.metrics import cache_lookups, refresh_duration, refresh_partitions
from casa_booking.schemas.availability import (
    AvailabilityRecord,
    CacheEnvelope,
    PartitionFailure,
    RefreshResult,
)
from casa_booking.store.handle import StoreHandle
from casa_booking.utils.dates import DateLike, month_partitions, next_month_start, to_date, utc_now

logger = structlog.get_logger(__name__)

KEY_PREFIX = "availability"
MAX_REFRESH_WORKERS = 3
MAX_RANGE_DAYS = 400


class CalendarSource(Protocol):
    def get_calendar(self, listing_id: str, start: date, end: date) -> Any: ...


def normalize_range(start: DateLike, end: DateLike) -> tuple[date, date]:
    """
    Normalize a ``[start, end)`` range to dates.

    Raises:
        ValidationError: if either bound is unparseable, end <= start, or the
            range is longer than MAX_RANGE_DAYS
    """
    start_day = to_date(start, "start")
    end_day = to_date(end, "end")
    if end_day <= start_day:
        raise ValidationError(f"End date {end_day} must be after start date {start_day}")
    if (end_day - start_day).days > MAX_RANGE_DAYS:
        raise ValidationError(f"Date range is limited to {MAX_RANGE_DAYS} days")
    return start_day, end_day


def cache_key(property_id: str, start: DateLike, end: DateLike) -> str:
    """
    Build the store key for a property and date range.

    Example:
        >>> cache_key("abc", "2025-11-01", datetime(2025, 12, 1, 8, 30))
        'availability:abc:2025-11-01:2025-12-01'
    """
    start_day, end_day = normalize_range(start, end)
    return f"{KEY_PREFIX}:{property_id}:{start_day.isoformat()}:{end_day.isoformat()}"


def partition_label(start: date) -> str:
    return start.strftime("%Y-%m")


def encode_payload(payload: Any) -> bytes:
    # Sorted keys keep repeated refreshes of unchanged data byte-identical.
    return json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")


class AvailabilityCache:
    """
    Store-backed availability cache.

    Example:
        >>> cache = AvailabilityCache(store, guesty_client, property_id="abc")
        >>> record = cache.get_availability("abc", "2025-11-01", "2025-12-01")
        >>> result = cache.refresh_all(6)
        >>> result.failed
        0
    """

    def __init__(
        self,
        store: StoreHandle,
        source: CalendarSource,
        property_id: str = "",
        ttl_seconds: int = 24 * 60 * 60,
        retention_seconds: int = 7 * 24 * 60 * 60,
        clock: Callable[[], datetime] = utc_now,
        lock_hold_seconds: float = 60.0,
        lock_wait_seconds: float = 25.0,
        max_workers: int = MAX_REFRESH_WORKERS,
    ) -> None:
        self.store = store
        self.source = source
        self.property_id = property_id
        self.ttl_seconds = ttl_seconds
        self.retention_seconds = max(retention_seconds, ttl_seconds)
        self.clock = clock
        self.lock_hold_seconds = lock_hold_seconds
        self.lock_wait_seconds = lock_wait_seconds
        self.max_workers = max_workers

    # ------------------------------------------------------------------
    # Store access
    # ------------------------------------------------------------------

    def _parse(self, key: str, raw: str | None) -> CacheEnvelope | None:
        if raw is None:
            return None
        try:
            return CacheEnvelope.model_validate_json(raw)
        except PydanticValidationError:
            logger.warning("availability_cache_entry_corrupt", key=key)
            return None

    def _read(self, key: str) -> CacheEnvelope | None:
        return self._parse(key, self.store.get(key))

    def _write(self, key: str, envelope: CacheEnvelope) -> bool:
        """Write ``envelope`` unless the stored one was fetched later."""

        def not_newer(raw: str | None) -> bool:
            current = self._parse(key, raw)
            return current is None or current.fetched_at <= envelope.fetched_at

        written = self.store.compare_and_set(
            key, envelope.model_dump_json(), not_newer, ttl_seconds=self.retention_seconds
        )
        if not written:
            logger.info(
                "availability_cache_write_skipped",
                key=key,
                fetched_at=envelope.fetched_at.isoformat(),
            )
            return False
        logger.debug("availability_cache_written", key=key)
        return True

    def _fetch(self, property_id: str, start: date, end: date) -> CacheEnvelope:
        fetched_at = self.clock()
        payload = self.source.get_calendar(property_id, start, end)
        return CacheEnvelope(
            payload=encode_payload(payload),
            fetched_at=fetched_at,
            ttl_seconds=self.ttl_seconds,
        )

    def _record(
        self, property_id: str, start: date, end: date, envelope: CacheEnvelope, stale: bool = False
    ) -> AvailabilityRecord:
        return AvailabilityRecord(
            property_id=property_id,
            start=start,
            end=end,
            payload=envelope.decoded(),
            fetched_at=envelope.fetched_at,
            ttl_seconds=envelope.ttl_seconds,
            stale=stale,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_availability(
        self, property_id: str, start: DateLike, end: DateLike
    ) -> AvailabilityRecord:
        """
        Return availability for ``[start, end)``, fetching from Guesty when
        the stored entry is missing or older than its TTL.

        Raises:
            ValidationError: bad range
            UpstreamUnavailable / UpstreamDataError: fetch failed and nothing is cached
            CacheUnavailable: store unreachable
        """
        start_day, end_day = normalize_range(start, end)
        key = cache_key(property_id, start_day, end_day)

        cached = self._read(key)
        if cached is not None and cached.is_fresh(self.clock()):
            cache_lookups.labels(result="hit").inc()
            logger.debug("availability_cache_hit", key=key)
            return self._record(property_id, start_day, end_day, cached)

        cache_lookups.labels(result="stale" if cached is not None else "miss").inc()
        logger.info("availability_cache_miss", key=key, stale=cached is not None)

        lock = self.store.single_flight(key, self.lock_hold_seconds, self.lock_wait_seconds)
        with lock as owned:
            # Another request may have refreshed the key while we waited.
            latest = self._read(key)
            if latest is not None and latest.is_fresh(self.clock()):
                cache_lookups.labels(result="hit").inc()
                return self._record(property_id, start_day, end_day, latest)
            if latest is not None:
                cached = latest

            if not owned:
                # Another refresh of this key is still running; never fetch in parallel.
                if cached is None:
                    logger.error("availability_refresh_in_progress", key=key, operation="get")
                    raise UpstreamUnavailable(
                        f"Availability for {start_day} to {end_day} is being refreshed, try again"
                    )
                cache_lookups.labels(result="stale_served").inc()
                logger.warning(
                    "availability_serving_stale",
                    key=key,
                    fetched_at=cached.fetched_at.isoformat(),
                    reason="refresh_in_progress",
                )
                return self._record(property_id, start_day, end_day, cached, stale=True)

            try:
                envelope = self._fetch(property_id, start_day, end_day)
            except UpstreamError as e:
                if cached is None:
                    logger.error(
                        "availability_fetch_failed", key=key, operation="get", error=str(e)
                    )
                    raise
                cache_lookups.labels(result="stale_served").inc()
                logger.warning(
                    "availability_serving_stale",
                    key=key,
                    fetched_at=cached.fetched_at.isoformat(),
                    error=str(e),
                )
                return self._record(property_id, start_day, end_day, cached, stale=True)

            try:
                self._write(key, envelope)
            except CacheUnavailable as e:
                # The fetch succeeded; the caller still gets fresh data.
                logger.error("availability_cache_write_failed", key=key, error=str(e))

        return self._record(property_id, start_day, end_day, envelope)

    def get_month(self, property_id: str, year: int, month: int) -> AvailabilityRecord:
        """Availability for one calendar month, sharing keys with the refresh."""
        try:
            start = date(year, month, 1)
        except ValueError as e:
            raise ValidationError(f"Invalid month {year}-{month}") from e
        return self.get_availability(property_id, start, next_month_start(start))

    def invalidate(self, property_id: str, start: DateLike, end: DateLike) -> None:
        key = cache_key(property_id, start, end)
        self.store.delete(key)
        logger.info("availability_cache_invalidated", key=key)

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    def refresh_partition(self, property_id: str, start: date, end: date) -> AvailabilityRecord:
        """
        Fetch ``[start, end)`` from Guesty and overwrite the stored entry,
        regardless of its TTL.
        """
        key = cache_key(property_id, start, end)
        lock = self.store.single_flight(key, self.lock_hold_seconds, self.lock_wait_seconds)
        with lock as owned:
            if not owned:
                raise UpstreamUnavailable(f"Refresh of {key} already in progress")
            envelope = self._fetch(property_id, start, end)
            self._write(key, envelope)
        logger.info("availability_partition_refreshed", key=key)
        return self._record(property_id, start, end, envelope)

    def refresh_all(self, horizon_months: int, property_id: str | None = None) -> RefreshResult:
        """
        Refresh every month partition from the current month through
        ``horizon_months`` ahead.

        A failing partition is recorded and the others still run.

        Args:
            horizon_months: Number of month partitions, current month included
            property_id: Listing to refresh; defaults to the configured property

        Returns:
            RefreshResult: per-run success/failure breakdown
        """
        if horizon_months < 1:
            raise ValidationError("horizon_months must be at least 1")
        listing = property_id or self.property_id
        if not listing:
            raise ValidationError("No property id configured for refresh")

        partitions = month_partitions(self.clock().date(), horizon_months)
        errors: dict[date, str | None] = {}

        logger.info("availability_refresh_started", property_id=listing, partitions=len(partitions))
        with refresh_duration.time():
            workers = max(1, min(self.max_workers, len(partitions)))
            with ThreadPoolExecutor(max_workers=workers) as pool:
                futures = {
                    pool.submit(self.refresh_partition, listing, start, end): start
                    for start, end in partitions
                }
                for future in as_completed(futures):
                    start = futures[future]
                    try:
                        future.result()
                        errors[start] = None
                        refresh_partitions.labels(status="success").inc()
                    except Exception as e:
                        errors[start] = f"{type(e).__name__}: {e}"
                        refresh_partitions.labels(status="failure").inc()
                        logger.error(
                            "availability_partition_refresh_failed",
                            property_id=listing,
                            partition=partition_label(start),
                            error=str(e),
                        )

        failures = [
            PartitionFailure(partition=partition_label(start), error=error)
            for start, _ in partitions
            if (error := errors.get(start)) is not None
        ]
        result = RefreshResult(
            partitions=[partition_label(start) for start, _ in partitions],
            succeeded=len(partitions) - len(failures),
            failed=len(failures),
            failed_partitions=failures,
        )
        logger.info(
            "availability_refresh_completed",
            property_id=listing,
            succeeded=result.succeeded,
            failed=result.failed,
        )
        return result
