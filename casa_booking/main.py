# casa_booking/main.py

from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from casa_booking.config import ALLOWED_ORIGINS
from casa_booking.context import build_context
from casa_booking.errors import CasaError
from casa_booking.logging_config import setup_logging
from casa_booking.middleware import RequestIDMiddleware
from casa_booking.routes.availability import router as availability_router
from casa_booking.routes.cron import router as cron_router
from casa_booking.routes.family import auth_router as family_auth_router
from casa_booking.routes.family import router as family_router
from casa_booking.routes.health import router as health_router
from casa_booking.routes.metrics import router as metrics_router

# Initialize structured logging
setup_logging()
logger = structlog.get_logger(__name__)

app = FastAPI(
    title="Casa Booking API",
    description="Direct-booking backend: cached Guesty availability and the family portal",
    version="1.0.0",
)


def cors_options(origins: list[str]) -> dict[str, Any]:
    """
    CORSMiddleware options for ``origins``.

    Credentials (the family session cookie) are only allowed for an explicit
    origin list, never together with a wildcard.
    """
    wildcard = "*" in origins
    if wildcard:
        logger.warning("cors_wildcard_origin", allow_credentials=False)
    return {
        "allow_origins": ["*"] if wildcard else origins,
        "allow_credentials": bool(origins) and not wildcard,
        "allow_methods": ["*"],
        "allow_headers": ["*"],
    }


# Configure CORS
app.add_middleware(CORSMiddleware, **cors_options(ALLOWED_ORIGINS))
app.add_middleware(RequestIDMiddleware)


@app.exception_handler(CasaError)
async def casa_error_handler(request: Request, exc: CasaError) -> JSONResponse:
    """Render domain errors as ``{"error": message}`` with their mapped status."""
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "request_failed",
        path=request.url.path,
        error_type=type(exc).__name__,
        status_code=exc.status_code,
        error=exc.message,
    )
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


# Register routers
app.include_router(health_router, tags=["Health"])
app.include_router(metrics_router, tags=["Metrics"])
app.include_router(availability_router, prefix="/api", tags=["Availability"])
app.include_router(cron_router, prefix="/api", tags=["Cron"])
app.include_router(family_auth_router, prefix="/api", tags=["Family"])
app.include_router(family_router, prefix="/api", tags=["Family"])


@app.on_event("startup")
def startup_event() -> None:
    """Wire the service context. The store connects lazily on first use."""
    logger.info("FastAPI application starting up...")
    app.state.context = build_context()
    logger.info("FastAPI application initialized")
