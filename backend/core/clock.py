"""Injectable wall-clock sources."""

from __future__ import annotations

from datetime import datetime, timedelta
from threading import Lock
from typing import Protocol


class Clock(Protocol):
    """Anything that can tell the current aware instant."""

    def now(self) -> datetime: ...


class SystemClock:
    """Read the time from Django's timezone-aware clock."""

    def now(self) -> datetime:
        from django.utils import timezone

        return timezone.now()


class FixedClock:
    """
    Clock pinned to a given instant until moved explicitly.

    Used by tests and by replay tooling that must evaluate time-window rules
    at a known moment.
    """

    def __init__(self, at: datetime):
        if at.tzinfo is None:
            raise ValueError("FixedClock requires an aware datetime.")
        self._at = at
        self._lock = Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._at

    def set(self, at: datetime) -> None:
        if at.tzinfo is None:
            raise ValueError("FixedClock requires an aware datetime.")
        with self._lock:
            self._at = at

    def advance(self, delta: timedelta) -> datetime:
        with self._lock:
            self._at = self._at + delta
            return self._at
