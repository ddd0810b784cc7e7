"""Public availability, pricing and booking endpoints."""

from __future__ import annotations

from typing import Any, Optional

import structlog
from fastapi import APIRouter, Depends, Query

from casa_booking.context import ServiceContext
from casa_booking.dependencies import get_context
from casa_booking.errors import ValidationError
from casa_booking.schemas.availability import AvailabilityRecord
from casa_booking.schemas.booking import BookingPayload, QuotePayload
from casa_booking.services.promo import apply_discount, resolve

logger = structlog.get_logger(__name__)
router = APIRouter()


@router.get("/availability", response_model=AvailabilityRecord)
def get_availability(
    start: Optional[str] = Query(None, description="YYYY-MM-DD, inclusive"),
    end: Optional[str] = Query(None, description="YYYY-MM-DD, exclusive"),
    ctx: ServiceContext = Depends(get_context),
) -> AvailabilityRecord:
    """
    Availability and nightly pricing for ``[start, end)``, served from the
    cache when fresh.
    """
    if not start or not end:
        raise ValidationError("start and end are required")
    return ctx.availability.get_availability(ctx.property_id, start, end)


@router.get("/calendar", response_model=AvailabilityRecord)
def get_month_calendar(
    year: int = Query(..., ge=2000, le=2100),
    month: int = Query(..., ge=1, le=12),
    ctx: ServiceContext = Depends(get_context),
) -> AvailabilityRecord:
    """One calendar month, sharing cache entries with the scheduled refresh."""
    return ctx.availability.get_month(ctx.property_id, year, month)


@router.get("/promo/{code}")
def get_promo(code: str) -> dict[str, Any]:
    """
    Resolve a promo code.

    Example:
        >>> GET /api/promo/casa-o20
        {"valid": true, "promo": {"code": "CasaO20", "discount": 0.2, ...}}
    """
    promo = resolve(code)
    if promo is None:
        return {"valid": False, "promo": None}
    return {"valid": True, "promo": promo.model_dump()}


@router.post("/quotes")
def create_quote(
    payload: QuotePayload, ctx: ServiceContext = Depends(get_context)
) -> dict[str, Any]:
    """
    Price a stay through Guesty. A valid promo code adds the discounted total
    next to the untouched upstream quote.
    """
    promo = resolve(payload.promo_code)
    quote = ctx.guesty.create_quote(
        ctx.property_id,
        payload.check_in,
        payload.check_out,
        payload.guests,
        coupon=promo.code if promo else None,
    )
    logger.info(
        "quote_created",
        check_in=payload.check_in.isoformat(),
        check_out=payload.check_out.isoformat(),
        guests=payload.guests,
        promo=promo.code if promo else None,
    )

    response: dict[str, Any] = {"quote": quote, "promo": None}
    if promo is not None:
        total = (quote.get("money") or {}).get("totalPrice")
        response["promo"] = {
            **promo.model_dump(),
            "original_total": total if isinstance(total, (int, float)) else None,
            "discounted_total": (
                apply_discount(total, promo) if isinstance(total, (int, float)) else None
            ),
        }
    return response


@router.post("/booking")
def create_booking(
    payload: BookingPayload, ctx: ServiceContext = Depends(get_context)
) -> dict[str, Any]:
    """Create a reservation in Guesty and return its confirmation unchanged."""
    return ctx.guesty.create_booking(
        ctx.property_id,
        payload.check_in,
        payload.check_out,
        guest=payload.guest.to_guesty(),
        address=payload.address.model_dump(exclude_none=True) if payload.address else None,
    )
