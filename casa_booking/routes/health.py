"""
Health and readiness check endpoints.

Used by the hosting platform to decide whether to restart the service or
route traffic to it.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from casa_booking.context import ServiceContext
from casa_booking.dependencies import get_context

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.get("/health")
def health_check() -> JSONResponse:
    """
    Liveness check endpoint.

    Example:
        >>> GET /health
        {"status": "ok"}
    """
    return JSONResponse(content={"status": "ok"})


@router.get("/ready")
def readiness_check(ctx: ServiceContext = Depends(get_context)) -> JSONResponse:
    """
    Readiness check endpoint.

    Returns 200 when the key-value store answers, 503 otherwise.

    Example:
        >>> GET /ready
        {"status": "ready", "checks": {"store": "ok"}}
    """
    checks = {}

    if ctx.store.ping():
        checks["store"] = "ok"
        return JSONResponse(content={"status": "ready", "checks": checks})

    logger.error("readiness_check_failed", reason="store_not_accessible")
    checks["store"] = "failed"
    return JSONResponse(
        status_code=503,
        content={"status": "not ready", "checks": checks},
    )
