"""Date-range helpers shared by the metrics and export code."""
from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Iterator

from fabrilog.errors import ValidationError

MAX_RANGE_DAYS = 90
SUNDAY = 6


def parse_date(val) -> date | None:
    """Return ``val`` as a :class:`date` or ``None`` when it cannot be parsed."""

    if not val:
        return None

    if isinstance(val, datetime):
        return val.date()

    if isinstance(val, date):
        return val

    text = str(val).strip()
    if not text:
        return None

    if text.endswith("Z"):
        text = text[:-1] + "+00:00"

    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        pass

    try:
        return datetime.strptime(text, "%d/%m/%Y").date()
    except ValueError:
        return None


def is_sunday(day: date) -> bool:
    return day.weekday() == SUNDAY


def iter_dates(start: date, end: date) -> Iterator[date]:
    """Yield every calendar day from ``start`` to ``end`` inclusive."""

    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def working_days(start: date, end: date) -> list[date]:
    """Return the Monday to Saturday dates in the inclusive range."""

    return [day for day in iter_dates(start, end) if not is_sunday(day)]


def count_working_days(start: date | None, end: date | None) -> int:
    if not start or not end:
        return 0
    return len(working_days(start, end))


def validate_range(
    start: date | None,
    end: date | None,
    *,
    max_days: int = MAX_RANGE_DAYS,
) -> tuple[date, date]:
    """Check a requested reporting window before anything is fetched.

    Raises:
        ValidationError: when either bound is missing, the end precedes the
            start, or the window spans more than ``max_days`` days.
    """

    if start is None or end is None:
        raise ValidationError("Both start_date and end_date are required.")
    if start > end:
        raise ValidationError("The start date must be on or before the end date.")
    if (end - start).days > max_days:
        raise ValidationError(
            f"The date range is too wide; select at most {max_days} days (3 months)."
        )
    return start, end


def month_range(today: date) -> tuple[date, date]:
    """Return the first and last day of the month containing ``today``."""

    first = today.replace(day=1)
    if first.month == 12:
        next_month = first.replace(year=first.year + 1, month=1)
    else:
        next_month = first.replace(month=first.month + 1)
    return first, next_month - timedelta(days=1)


def format_display_date(day: date | None) -> str:
    """Format ``day`` the way spreadsheets and PDFs show it (dd/mm/yyyy)."""

    if not day:
        return ""
    return day.strftime("%d/%m/%Y")


def compact_date(day: date) -> str:
    return day.strftime("%Y%m%d")
