"""
Unit tests for metrics endpoint.
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from casa_booking.metrics import (
    cache_lookups,
    family_transitions,
    refresh_partitions,
    upstream_latency,
    upstream_requests,
)


@pytest.mark.unit
def test_metrics_endpoint_returns_prometheus_format(client: TestClient) -> None:
    """Test that /metrics endpoint returns Prometheus text format."""
    response = client.get("/metrics")

    assert response.status_code == 200
    assert "text/plain" in response.headers["content-type"]


@pytest.mark.unit
def test_metrics_endpoint_contains_custom_metrics(client: TestClient) -> None:
    """Test that /metrics endpoint includes the service's own metrics."""
    cache_lookups.labels(result="hit").inc()
    refresh_partitions.labels(status="success").inc()
    upstream_requests.labels(endpoint="calendar", status_code="200").inc()
    upstream_latency.labels(endpoint="calendar").observe(0.45)
    family_transitions.labels(event="approved").inc()

    content = client.get("/metrics").text

    assert "casa_availability_cache_lookups_total" in content
    assert "casa_refresh_partitions_total" in content
    assert "casa_upstream_requests_total" in content
    assert "casa_upstream_latency_seconds" in content
    assert "casa_family_booking_transitions_total" in content


@pytest.mark.unit
def test_cache_hits_are_counted(client: TestClient) -> None:
    """Test that serving a cached range increments the hit counter."""
    before = cache_lookups.labels(result="hit")._value.get()

    client.get("/api/availability", params={"start": "2025-12-01", "end": "2025-12-03"})
    client.get("/api/availability", params={"start": "2025-12-01", "end": "2025-12-03"})

    assert cache_lookups.labels(result="hit")._value.get() == before + 1
