"""
Family portal booking requests and their approval workflow.

Bookings live in the key-value store as ``family:bookings:{id}`` with the
set ``family:bookings:list`` indexing every id.

State machine::

    pending --approve--> approved
    pending --reject---> rejected

approved and rejected are terminal; only the ``guesty_blocked`` flag may
change afterwards.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Callable

import structlog

from casa_booking.errors import (
    BookingConflict,
    CacheUnavailable,
    InvalidTransition,
    NotFound,
    ValidationError,
)
from casa_booking.metrics import family_transitions
from casa_booking.schemas.family import BookingStatus, FamilyBooking, FamilyBookingRequest
from casa_booking.store.handle import StoreHandle
from casa_booking.utils.dates import DateLike, to_date, utc_now

logger = structlog.get_logger(__name__)

BOOKING_INDEX_KEY = "family:bookings:list"
APPROVAL_LOCK_KEY = "family:bookings:approvals"
MIN_GUESTS = 1
MAX_GUESTS = 12


def booking_key(booking_id: str) -> str:
    return f"family:bookings:{booking_id}"


def _new_id() -> str:
    return str(uuid.uuid4())


class FamilyBookingWorkflow:
    def __init__(
        self,
        store: StoreHandle,
        clock: Callable[[], datetime] = utc_now,
        id_factory: Callable[[], str] = _new_id,
    ) -> None:
        self.store = store
        self.clock = clock
        self.id_factory = id_factory

    def _load(self, booking_id: str) -> FamilyBooking | None:
        raw = self.store.get(booking_key(booking_id))
        return FamilyBooking.model_validate_json(raw) if raw else None

    def _save(self, booking: FamilyBooking) -> None:
        self.store.set(booking_key(booking.id), booking.model_dump_json())

    def get(self, booking_id: str) -> FamilyBooking:
        booking = self._load(booking_id)
        if booking is None:
            raise NotFound(f"Booking {booking_id} not found")
        return booking

    def list_bookings(self, status: BookingStatus | None = None) -> list[FamilyBooking]:
        """All bookings, optionally filtered by status, newest first."""
        bookings = []
        for booking_id in self.store.set_members(BOOKING_INDEX_KEY):
            booking = self._load(booking_id)
            if booking is None:
                logger.warning("family_booking_index_orphan", booking_id=booking_id)
                continue
            if status is None or booking.status == status:
                bookings.append(booking)
        return sorted(bookings, key=lambda b: b.created_at, reverse=True)

    def _in_range(
        self, status: BookingStatus, start: DateLike, end: DateLike
    ) -> list[FamilyBooking]:
        start_day = to_date(start, "start")
        end_day = to_date(end, "end")
        if end_day <= start_day:
            raise ValidationError(f"End date {end_day} must be after start date {start_day}")
        matches = [b for b in self.list_bookings(status) if b.overlaps(start_day, end_day)]
        return sorted(matches, key=lambda b: (b.check_in, b.created_at))

    def list_pending(self, start: DateLike, end: DateLike) -> list[FamilyBooking]:
        """Pending bookings overlapping ``[start, end)``, earliest check-in first."""
        return self._in_range(BookingStatus.PENDING, start, end)

    def approved_in_range(self, start: DateLike, end: DateLike) -> list[FamilyBooking]:
        return self._in_range(BookingStatus.APPROVED, start, end)

    def submit(self, request: FamilyBookingRequest) -> FamilyBooking:
        """
        Validate and store a new booking request in ``pending`` state.

        Raises:
            ValidationError: missing fields, bad dates or guest count out of range
            BookingConflict: dates overlap an approved family booking
        """
        guest_name = (request.guest_name or "").strip()
        missing = [
            name
            for name, value in (
                ("check_in", request.check_in),
                ("check_out", request.check_out),
                ("guest_name", guest_name),
                ("guest_count", request.guest_count),
            )
            if value is None or value == ""
        ]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

        check_in = to_date(request.check_in or "", "check_in")
        check_out = to_date(request.check_out or "", "check_out")
        if check_out <= check_in:
            raise ValidationError("Check-out must be after check-in")

        guest_count = request.guest_count or 0
        if not MIN_GUESTS <= guest_count <= MAX_GUESTS:
            raise ValidationError(f"Guest count must be between {MIN_GUESTS} and {MAX_GUESTS}")

        conflicts = self.approved_in_range(check_in, check_out)
        if conflicts:
            logger.info(
                "family_booking_conflict",
                check_in=check_in.isoformat(),
                check_out=check_out.isoformat(),
                conflicting_id=conflicts[0].id,
            )
            raise BookingConflict("These dates conflict with an existing booking")

        now = self.clock()
        booking = FamilyBooking(
            id=self.id_factory(),
            check_in=check_in,
            check_out=check_out,
            guest_name=guest_name,
            guest_email=(request.guest_email or "").strip() or None,
            guest_count=guest_count,
            notes=(request.notes or "").strip() or None,
            status=BookingStatus.PENDING,
            guesty_blocked=False,
            created_at=now,
            updated_at=now,
        )
        # Index before save: a failed save leaves only an orphan id, which list_bookings skips.
        self.store.add_to_set(BOOKING_INDEX_KEY, booking.id)
        self._save(booking)

        family_transitions.labels(event="submitted").inc()
        logger.info(
            "family_booking_submitted",
            booking_id=booking.id,
            check_in=booking.check_in.isoformat(),
            check_out=booking.check_out.isoformat(),
            guest_count=booking.guest_count,
        )
        return booking

    def _transition(self, booking_id: str, target: BookingStatus) -> FamilyBooking:
        lock = self.store.single_flight(booking_key(booking_id), hold_seconds=10, wait_seconds=5)
        with lock as owned:
            if not owned:
                raise CacheUnavailable(f"Booking {booking_id} is being updated, try again")

            booking = self.get(booking_id)
            if booking.status != BookingStatus.PENDING:
                raise InvalidTransition(
                    f"Booking {booking_id} is already {booking.status.value}; "
                    f"cannot mark it {target.value}"
                )

            if target == BookingStatus.APPROVED:
                self._check_no_approved_overlap(booking)

            updated = booking.model_copy(update={"status": target, "updated_at": self.clock()})
            self._save(updated)

        family_transitions.labels(event=target.value).inc()
        logger.info("family_booking_transitioned", booking_id=booking_id, status=target.value)
        return updated

    def _check_no_approved_overlap(self, booking: FamilyBooking) -> None:
        approved = self.approved_in_range(booking.check_in, booking.check_out)
        conflicts = [b for b in approved if b.id != booking.id]
        if conflicts:
            logger.info(
                "family_booking_approve_conflict",
                booking_id=booking.id,
                conflicting_id=conflicts[0].id,
            )
            raise BookingConflict(
                f"Booking {booking.id} overlaps approved booking {conflicts[0].id}"
            )

    def approve(self, booking_id: str) -> FamilyBooking:
        """
        Approve a pending booking.

        Approvals are serialized by one store lock so two overlapping
        requests cannot both pass the overlap check.

        Raises:
            BookingConflict: dates overlap a booking approved since submission
        """
        lock = self.store.single_flight(APPROVAL_LOCK_KEY, hold_seconds=10, wait_seconds=5)
        with lock as owned:
            if not owned:
                raise CacheUnavailable("Another approval is in progress, try again")
            return self._transition(booking_id, BookingStatus.APPROVED)

    def reject(self, booking_id: str) -> FamilyBooking:
        return self._transition(booking_id, BookingStatus.REJECTED)

    def mark_guesty_blocked(self, booking_id: str, blocked: bool = True) -> FamilyBooking:
        """Record whether the owner has blocked these dates in Guesty."""
        lock = self.store.single_flight(booking_key(booking_id), hold_seconds=10, wait_seconds=5)
        with lock as owned:
            if not owned:
                raise CacheUnavailable(f"Booking {booking_id} is being updated, try again")
            booking = self.get(booking_id)
            updated = booking.model_copy(
                update={"guesty_blocked": blocked, "updated_at": self.clock()}
            )
            self._save(updated)
        logger.info("family_booking_guesty_blocked", booking_id=booking_id, blocked=blocked)
        return updated
