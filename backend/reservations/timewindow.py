"""Calendar-day and elapsed-time predicates shared by the reservation rules."""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Iterator

DAY_KEY_FORMAT = "%Y-%m-%d"


def day_key(day: date) -> str:
    """Render a calendar day as a timezone-agnostic ``yyyy-mm-dd`` key."""
    return day.strftime(DAY_KEY_FORMAT)


def parse_day_key(value: str | date) -> date:
    """
    Parse a ``yyyy-mm-dd`` key into a date.

    Datetimes are truncated to their calendar day; other inputs raise ValueError.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.strptime(str(value).strip(), DAY_KEY_FORMAT).date()


def days_between(start: date, end: date) -> int:
    """Return whole calendar days in the half-open range [start, end)."""
    return (end - start).days


def is_valid_range(start: date | None, end: date | None) -> bool:
    """True when both days exist and the range covers at least one day."""
    if start is None or end is None:
        return False
    return start < end


def iter_days(start: date, end: date) -> Iterator[date]:
    """Yield each day of [start, end) in ascending order."""
    current = start
    while current < end:
        yield current
        current += timedelta(days=1)


def has_elapsed(since: datetime | None, now: datetime, window: timedelta) -> bool:
    """
    Return True once more than ``window`` has passed since ``since``.

    A missing ``since`` never elapses.
    """
    if since is None:
        return False
    return now - since > window


def within_window(since: datetime | None, now: datetime, window: timedelta) -> bool:
    """True when ``since`` exists and ``now - since <= window`` (boundary inclusive)."""
    if since is None:
        return False
    return now - since <= window
