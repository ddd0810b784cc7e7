"""
Prometheus metrics for the availability cache, Guesty API calls and the
family portal.

Metrics are exposed via the /metrics endpoint for scraping by Prometheus.

Example:
    >>> from casa_booking.metrics import cache_lookups, upstream_latency
    >>> cache_lookups.labels(result="hit").inc()
    >>> with upstream_latency.labels(endpoint="calendar").time():
    ...     payload = client.get_calendar(listing_id, start, end)
"""

from __future__ import annotations

from prometheus_client import Counter, Histogram

# =============================================================================
# Availability Cache Metrics
# =============================================================================

cache_lookups = Counter(
    "casa_availability_cache_lookups_total",
    "Availability cache lookups by outcome",
    ["result"],
)
"""
Counter for availability cache lookups.

Labels:
    result: hit, miss, stale (expired entry found), stale_served (expired
            entry returned because the refresh failed)
"""

refresh_partitions = Counter(
    "casa_refresh_partitions_total",
    "Month partitions processed by the scheduled refresh",
    ["status"],
)
"""
Counter for refreshed month partitions.

Labels:
    status: success or failure
"""

refresh_duration = Histogram(
    "casa_refresh_duration_seconds",
    "Duration of a full scheduled refresh run in seconds",
    buckets=(1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, float("inf")),
)

# =============================================================================
# Upstream (Guesty) Metrics
# =============================================================================

upstream_requests = Counter(
    "casa_upstream_requests_total",
    "Total Guesty API requests made",
    ["endpoint", "status_code"],
)
"""
Counter for Guesty API requests.

Labels:
    endpoint: logical endpoint name (calendar, quotes, bookings, token)
    status_code: HTTP status code, or "timeout" / "error" when no response
"""

upstream_latency = Histogram(
    "casa_upstream_latency_seconds",
    "Guesty API request latency in seconds",
    ["endpoint"],
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, float("inf")),
)

token_fetches = Counter(
    "casa_upstream_token_fetches_total",
    "OAuth tokens requested from Guesty (rate limited upstream)",
)

# =============================================================================
# Family Portal Metrics
# =============================================================================

family_transitions = Counter(
    "casa_family_booking_transitions_total",
    "Family booking lifecycle events",
    ["event"],
)
"""
Counter for family booking lifecycle events.

Labels:
    event: submitted, approved, rejected
"""

family_logins = Counter(
    "casa_family_logins_total",
    "Family portal login attempts",
    ["status"],
)
