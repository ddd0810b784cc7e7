"""
Prometheus metrics endpoint.

Example:
    GET /metrics

    Response:
        # HELP casa_availability_cache_lookups_total Availability cache lookups by outcome
        # TYPE casa_availability_cache_lookups_total counter
        casa_availability_cache_lookups_total{result="hit"} 42.0
        ...
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

router = APIRouter()


@router.get("/metrics", response_class=Response)
async def metrics() -> Any:
    """Return all registered metrics in Prometheus text exposition format."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
