"""UTC datetime and calendar-month helpers."""

from __future__ import annotations

from datetime import date, datetime, timezone

from dateutil.relativedelta import relativedelta

from casa_booking.errors import ValidationError

DateLike = date | datetime | str


def utc_now() -> datetime:
    """
    Return current UTC time as timezone-aware datetime.

    Use this instead of datetime.now() or datetime.utcnow() so every stored
    timestamp is timezone-aware and in UTC.
    """
    return datetime.now(timezone.utc)


def to_date(value: DateLike, field: str = "date") -> date:
    """
    Normalize a date-like value to a ``date``.

    Accepts ``date``, ``datetime`` (the calendar day is kept) and ISO strings
    (``YYYY-MM-DD`` or full ISO timestamps).

    Raises:
        ValidationError: if the value cannot be parsed.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        text = value.strip()
        try:
            return date.fromisoformat(text[:10])
        except ValueError:
            pass
    raise ValidationError(f"Invalid {field}: {value!r} (expected YYYY-MM-DD)")


def month_start(day: date) -> date:
    return day.replace(day=1)


def next_month_start(day: date) -> date:
    return month_start(day) + relativedelta(months=1)


def month_partitions(today: date, horizon_months: int) -> list[tuple[date, date]]:
    """
    Month-aligned ``[start, end)`` ranges from the month of ``today`` onward.

    Args:
        today: Any day inside the first partition's month
        horizon_months: Number of partitions, including the current month

    Returns:
        list of (first day of month, first day of following month)

    Example:
        >>> month_partitions(date(2025, 11, 17), 2)
        [(date(2025, 11, 1), date(2025, 12, 1)), (date(2025, 12, 1), date(2026, 1, 1))]
    """
    first = month_start(today)
    partitions = []
    for offset in range(horizon_months):
        start = first + relativedelta(months=offset)
        partitions.append((start, start + relativedelta(months=1)))
    return partitions
