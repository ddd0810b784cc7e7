"""Merged day-by-day calendar for the family portal."""

from __future__ import annotations

from datetime import date, timedelta
from typing import Any

import structlog

from casa_booking.errors import ValidationError
from casa_booking.guesty.client import calendar_days
from casa_booking.schemas.family import CalendarDay, FamilyBooking
from casa_booking.services.availability_cache import AvailabilityCache
from casa_booking.services.family_bookings import FamilyBookingWorkflow
from casa_booking.utils.dates import DateLike, month_start, next_month_start, to_date

logger = structlog.get_logger(__name__)

MAX_CALENDAR_DAYS = 400


def _guesty_status(day: dict[str, Any]) -> str:
    status = day.get("status", "available")
    if status == "available":
        return "available"
    if status == "booked":
        return "booked"
    return "owner"


def _price(day: dict[str, Any]) -> float | None:
    price = day.get("price")
    return float(price) if isinstance(price, (int, float)) else None


def build_family_calendar(
    cache: AvailabilityCache,
    workflow: FamilyBookingWorkflow,
    property_id: str,
    start: DateLike,
    end: DateLike,
) -> list[CalendarDay]:
    """
    One entry per day in ``[start, end]`` (both inclusive).

    Approved family stays take precedence over Guesty data; a stay covers
    its nights, so the check-out day is not marked. Guesty days map
    ``available`` to available, ``booked`` to booked, anything else to owner.
    Days Guesty says nothing about are available.
    """
    first = to_date(start, "from")
    last = to_date(end, "to")
    if last < first:
        raise ValidationError("'to' must not be before 'from'")
    if (last - first).days >= MAX_CALENDAR_DAYS:
        raise ValidationError(f"Calendar range is limited to {MAX_CALENDAR_DAYS} days")

    family_by_day: dict[date, FamilyBooking] = {}
    for booking in workflow.approved_in_range(first, last + timedelta(days=1)):
        night = booking.check_in
        while night < booking.check_out:
            family_by_day[night] = booking
            night += timedelta(days=1)

    guesty_by_day: dict[str, dict[str, Any]] = {}
    month = month_start(first)
    while month <= last:
        record = cache.get_availability(property_id, month, next_month_start(month))
        for day in calendar_days(record.payload):
            guesty_by_day[str(day["date"])[:10]] = day
        month = next_month_start(month)

    days = []
    current = first
    while current <= last:
        booking = family_by_day.get(current)
        guesty_day = guesty_by_day.get(current.isoformat(), {})
        if booking is not None:
            days.append(
                CalendarDay(
                    date=current,
                    status="family",
                    booking={
                        "guest_name": booking.guest_name,
                        "guest_count": booking.guest_count,
                        "check_in": booking.check_in.isoformat(),
                        "check_out": booking.check_out.isoformat(),
                        "notes": booking.notes,
                    },
                )
            )
        else:
            days.append(
                CalendarDay(date=current, status=_guesty_status(guesty_day), price=_price(guesty_day))
            )
        current += timedelta(days=1)

    logger.debug(
        "family_calendar_built",
        start=first.isoformat(),
        end=last.isoformat(),
        family_days=len(family_by_day),
    )
    return days
