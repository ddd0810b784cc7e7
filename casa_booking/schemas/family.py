from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


class BookingStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class FamilyBookingRequest(BaseModel):
    """
    Booking request submitted from the family portal.

    Fields are optional at the schema level so the workflow can report
    missing or out-of-range values with a single descriptive 400.
    """

    check_in: Optional[str] = Field(None, description="YYYY-MM-DD, first night")
    check_out: Optional[str] = Field(None, description="YYYY-MM-DD, departure day")
    guest_name: Optional[str] = None
    guest_email: Optional[str] = None
    guest_count: Optional[int] = Field(None, description="1-12")
    notes: Optional[str] = None


class FamilyBooking(BaseModel):
    """
    Stored family booking.

    ``status`` moves from pending to approved or rejected exactly once.
    ``guesty_blocked`` is set by the owner after blocking the dates in Guesty
    by hand.
    """

    id: str
    check_in: date
    check_out: date
    guest_name: str
    guest_email: Optional[str] = None
    guest_count: int
    notes: Optional[str] = None
    status: BookingStatus = BookingStatus.PENDING
    guesty_blocked: bool = False
    created_at: datetime
    updated_at: datetime

    @property
    def nights(self) -> int:
        return (self.check_out - self.check_in).days

    def overlaps(self, start: date, end: date) -> bool:
        """True if the stay shares at least one night with ``[start, end)``."""
        return self.check_in < end and self.check_out > start


class FamilyLoginPayload(BaseModel):
    password: Optional[str] = None


class GuestyBlockedPayload(BaseModel):
    blocked: bool = True


class CalendarDay(BaseModel):
    date: date
    status: Literal["available", "family", "owner", "booked"]
    price: Optional[float] = None
    booking: Optional[dict[str, Any]] = None
