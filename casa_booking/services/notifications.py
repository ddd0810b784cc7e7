"""Owner notifications for new family booking requests (Pushover)."""

from __future__ import annotations

import requests
import structlog

from casa_booking.schemas.family import FamilyBooking

logger = structlog.get_logger(__name__)

PUSHOVER_URL = "https://api.pushover.net/1/messages.json"


def format_request_message(booking: FamilyBooking) -> str:
    lines = [
        "New family booking request!",
        "",
        f"{booking.guest_name} ({booking.guest_email or 'no email'})",
        f"{booking.check_in.isoformat()} -> {booking.check_out.isoformat()} "
        f"({booking.nights} nights, {booking.guest_count} guests)",
    ]
    if booking.notes:
        lines += ["", f"Notes: {booking.notes}"]
    return "\n".join(lines)


def notify_owner(
    booking: FamilyBooking, user_key: str | None, api_token: str | None, timeout: float = 10.0
) -> bool:
    """
    Push a high-priority notification about a new request.

    Notifications are best effort: failures are logged and reported through
    the return value, never raised, so a submission never fails because of
    them.

    Returns:
        bool: True if Pushover accepted the message
    """
    if not user_key or not api_token:
        logger.debug("owner_notification_skipped", reason="pushover_not_configured")
        return False

    try:
        response = requests.post(
            PUSHOVER_URL,
            data={
                "token": api_token,
                "user": user_key,
                "title": "Family Booking Request",
                "message": format_request_message(booking),
                "priority": "1",
            },
            timeout=timeout,
        )
        response.raise_for_status()
    except requests.RequestException as e:
        logger.error("owner_notification_failed", booking_id=booking.id, error=str(e))
        return False

    logger.info("owner_notification_sent", booking_id=booking.id)
    return True
