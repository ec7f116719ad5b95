"""
Canteen Service - Date and money helpers
"""
from datetime import date, datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

CENT = Decimal("0.01")

_MONTHS = ("", "Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def monday_of(day: date) -> date:
    """Monday of the ISO week containing `day`."""
    if isinstance(day, datetime):
        day = day.date()
    return day - timedelta(days=day.weekday())


def week_label(monday: date) -> str:
    """'Jan 6 - 10, 2025', or 'Jan 27 - Feb 1, 2025' across a month boundary."""
    friday = monday + timedelta(days=4)
    if monday.month == friday.month:
        return f"{_MONTHS[monday.month]} {monday.day} - {friday.day}, {monday.year}"
    return f"{_MONTHS[monday.month]} {monday.day} - {_MONTHS[friday.month]} {friday.day}, {monday.year}"


def to_cents(amount: Decimal | int | float | str) -> int:
    """Convert a currency amount to integer cents. Raises ValueError on garbage."""
    try:
        value = Decimal(str(amount)).quantize(CENT, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"Not a number: {amount!r}") from exc
    if not value.is_finite():
        raise ValueError(f"Not a number: {amount!r}")
    return int(value * 100)


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT)
