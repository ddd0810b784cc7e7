"""
Family portal endpoints.

``/family/auth`` is open; every other route requires the family session
cookie, checked against the store on each request.
"""

from __future__ import annotations

from typing import Any, Optional

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request, Response, status
from fastapi.responses import JSONResponse

from casa_booking import config
from casa_booking.context import ServiceContext
from casa_booking.dependencies import get_context, require_family_session
from casa_booking.errors import ValidationError
from casa_booking.schemas.family import (
    BookingStatus,
    FamilyBookingRequest,
    FamilyLoginPayload,
    GuestyBlockedPayload,
)
from casa_booking.services.family_calendar import build_family_calendar
from casa_booking.services.family_sessions import SESSION_COOKIE
from casa_booking.services.notifications import notify_owner

logger = structlog.get_logger(__name__)

auth_router = APIRouter()
router = APIRouter(dependencies=[Depends(require_family_session)])


@auth_router.post("/family/auth")
def login(
    payload: FamilyLoginPayload, response: Response, ctx: ServiceContext = Depends(get_context)
) -> Any:
    """
    Check the family password and issue a 30-day session cookie.

    Returns:
        200 with the cookie set, 400 without a password, 401 on a wrong one
    """
    if not payload.password:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Password is required"},
        )

    if not ctx.sessions.verify_password(payload.password):
        logger.warning("family_login_failed")
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"error": "Incorrect password"},
        )

    token = ctx.sessions.create_session()
    response.set_cookie(
        SESSION_COOKIE,
        token,
        max_age=ctx.sessions.session_seconds,
        httponly=True,
        secure=config.COOKIE_SECURE,
        samesite="lax",
        path="/",
    )
    logger.info("family_login_succeeded")
    return {"success": True, "message": "Authentication successful"}


@auth_router.delete("/family/auth")
def logout(
    request: Request, response: Response, ctx: ServiceContext = Depends(get_context)
) -> dict[str, Any]:
    ctx.sessions.revoke(request.cookies.get(SESSION_COOKIE))
    response.delete_cookie(SESSION_COOKIE, path="/")
    return {"success": True, "message": "Logged out successfully"}


@router.get("/family/bookings")
def list_approved_bookings(ctx: ServiceContext = Depends(get_context)) -> dict[str, Any]:
    """List approved family bookings, newest first."""
    bookings = ctx.family.list_bookings(BookingStatus.APPROVED)
    return {
        "success": True,
        "bookings": [b.model_dump(mode="json") for b in bookings],
        "count": len(bookings),
    }


@router.post("/family/bookings", status_code=status.HTTP_201_CREATED)
def submit_booking(
    payload: FamilyBookingRequest,
    background_tasks: BackgroundTasks,
    ctx: ServiceContext = Depends(get_context),
) -> dict[str, Any]:
    """
    Create a booking request in ``pending`` state and notify the owner in
    the background.
    """
    booking = ctx.family.submit(payload)
    background_tasks.add_task(
        notify_owner,
        booking,
        user_key=config.PUSHOVER_USER_KEY,
        api_token=config.PUSHOVER_API_TOKEN,
    )
    return {"success": True, "booking": booking.model_dump(mode="json")}


@router.get("/family/availability")
def family_availability(
    from_: Optional[str] = Query(None, alias="from"),
    to: Optional[str] = Query(None),
    ctx: ServiceContext = Depends(get_context),
) -> dict[str, Any]:
    """Day-by-day calendar merging Guesty availability with approved family stays."""
    if not from_ or not to:
        raise ValidationError("Missing from or to date parameters")
    days = build_family_calendar(ctx.availability, ctx.family, ctx.property_id, from_, to)
    return {
        "success": True,
        "days": [d.model_dump(mode="json") for d in days],
        "family_days": sum(1 for d in days if d.status == "family"),
    }


@router.get("/family/admin/pending")
def list_pending(
    start: Optional[str] = Query(None, description="YYYY-MM-DD, inclusive"),
    end: Optional[str] = Query(None, description="YYYY-MM-DD, exclusive"),
    ctx: ServiceContext = Depends(get_context),
) -> dict[str, Any]:
    """
    Pending requests ordered by check-in. With ``start``/``end`` only
    requests overlapping that range are returned.
    """
    if start or end:
        if not start or not end:
            raise ValidationError("start and end must be given together")
        bookings = ctx.family.list_pending(start, end)
    else:
        bookings = sorted(
            ctx.family.list_bookings(BookingStatus.PENDING),
            key=lambda b: (b.check_in, b.created_at),
        )
    return {
        "success": True,
        "bookings": [b.model_dump(mode="json") for b in bookings],
        "count": len(bookings),
    }


@router.post("/family/admin/approve/{booking_id}")
def approve_booking(booking_id: str, ctx: ServiceContext = Depends(get_context)) -> dict[str, Any]:
    booking = ctx.family.approve(booking_id)
    return {"success": True, "message": "Booking approved", "booking": booking.model_dump(mode="json")}


@router.post("/family/admin/reject/{booking_id}")
def reject_booking(booking_id: str, ctx: ServiceContext = Depends(get_context)) -> dict[str, Any]:
    booking = ctx.family.reject(booking_id)
    return {"success": True, "message": "Booking rejected", "booking": booking.model_dump(mode="json")}


@router.post("/family/admin/guesty-blocked/{booking_id}")
def set_guesty_blocked(
    booking_id: str,
    payload: GuestyBlockedPayload,
    ctx: ServiceContext = Depends(get_context),
) -> dict[str, Any]:
    """Record that the owner blocked (or unblocked) these dates in Guesty."""
    booking = ctx.family.mark_guesty_blocked(booking_id, payload.blocked)
    return {"success": True, "booking": booking.model_dump(mode="json")}
