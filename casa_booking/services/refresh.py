"""Scheduled availability refresh, triggered by the external cron."""

from __future__ import annotations

import hmac
from datetime import datetime
from typing import Callable

import structlog

from casa_booking.schemas.availability import RefreshReport
from casa_booking.services.availability_cache import AvailabilityCache
from casa_booking.utils.dates import utc_now

logger = structlog.get_logger(__name__)


def verify_cron_secret(auth_header: str | None, secret: str | None) -> bool:
    """
    Validate the scheduler's ``Authorization: Bearer <secret>`` header.

    Args:
        auth_header: Authorization header value
        secret: Configured CRON_SECRET. When unset every request is refused.

    Returns:
        bool: True if the header carries the configured secret
    """
    if not secret:
        logger.error("cron_secret_not_configured")
        return False
    if not auth_header or not auth_header.startswith("Bearer "):
        return False
    supplied = auth_header[len("Bearer "):]
    return hmac.compare_digest(supplied.encode("utf-8"), secret.encode("utf-8"))


def run_scheduled_refresh(
    cache: AvailabilityCache,
    horizon_months: int,
    property_id: str | None = None,
    clock: Callable[[], datetime] = utc_now,
) -> RefreshReport:
    """
    Refresh every month partition in the horizon and report the outcome.

    Partial failure is reported, not raised: ``success`` is False when any
    partition failed.
    """
    logger.info("scheduled_refresh_started", horizon_months=horizon_months)
    result = cache.refresh_all(horizon_months, property_id=property_id)

    report = RefreshReport(
        **result.model_dump(),
        success=result.failed == 0,
        horizon_months=horizon_months,
        timestamp=clock(),
    )
    log = logger.info if report.success else logger.warning
    log(
        "scheduled_refresh_completed",
        succeeded=report.succeeded,
        failed=report.failed,
        failed_partitions=[f.partition for f in report.failed_partitions],
    )
    return report
