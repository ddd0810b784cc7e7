from __future__ import annotations

import json
from datetime import date, datetime, timedelta
from typing import Any

from pydantic import BaseModel, Field


class CacheEnvelope(BaseModel):
    """
    Stored form of a cached availability response.

    ``payload`` holds the upstream JSON as bytes; the cache never looks
    inside it.
    """

    payload: bytes
    fetched_at: datetime
    ttl_seconds: int

    def is_fresh(self, now: datetime) -> bool:
        return now - self.fetched_at < timedelta(seconds=self.ttl_seconds)

    def decoded(self) -> Any:
        return json.loads(self.payload)


class AvailabilityRecord(BaseModel):
    """Availability for one property and date range, as returned to callers."""

    property_id: str
    start: date = Field(..., description="First night, inclusive")
    end: date = Field(..., description="Range end, exclusive")
    payload: Any = Field(..., description="Upstream calendar payload, unchanged")
    fetched_at: datetime
    ttl_seconds: int
    stale: bool = Field(False, description="Served past its TTL because the refresh failed")


class PartitionFailure(BaseModel):
    partition: str = Field(..., description="Month partition, YYYY-MM")
    error: str


class RefreshResult(BaseModel):
    """Outcome of one refresh_all run."""

    partitions: list[str]
    succeeded: int
    failed: int
    failed_partitions: list[PartitionFailure]


class RefreshReport(RefreshResult):
    """Response body of the scheduled refresh endpoint."""

    success: bool
    horizon_months: int
    timestamp: datetime
