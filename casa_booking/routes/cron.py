"""Scheduled cache refresh endpoint, called by the external cron."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from casa_booking import config
from casa_booking.context import ServiceContext
from casa_booking.dependencies import get_context
from casa_booking.services.refresh import run_scheduled_refresh, verify_cron_secret
from casa_booking.utils.dates import utc_now

router = APIRouter()
logger = structlog.get_logger(__name__)


@router.api_route("/cron/cache-refresh", methods=["GET", "POST"])
def cache_refresh(request: Request, ctx: ServiceContext = Depends(get_context)) -> JSONResponse:
    """
    Force-refresh every availability partition in the configured horizon.

    Authentication: ``Authorization: Bearer <CRON_SECRET>``.

    Returns:
        200 with the per-partition breakdown (also on partial failure),
        401 on a bad secret, 500 on unexpected failure.

    Example Response:
        {"success": true, "succeeded": 6, "failed": 0, "failed_partitions": [], ...}
    """
    if not verify_cron_secret(request.headers.get("Authorization"), config.CRON_SECRET):
        logger.warning("cron_authentication_failed")
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"error": "Unauthorized"},
        )

    try:
        report = run_scheduled_refresh(ctx.availability, config.REFRESH_HORIZON_MONTHS)
    except Exception as e:
        logger.exception("cron_cache_refresh_failed", error=str(e))
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "success": False,
                "error": "Cache refresh failed",
                "timestamp": utc_now().isoformat(),
            },
        )

    return JSONResponse(content=report.model_dump(mode="json"))
