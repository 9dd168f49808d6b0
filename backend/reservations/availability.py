"""
Per-item calendar of blocked days.

The index maps every blocked day to the reservation that owns it; the key set
is the blocked set and the values explain conflicts. Instances are treated as
immutable values: claims and releases return a new index, so a failed claim
can never leave a range half-blocked.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from types import MappingProxyType
from typing import Mapping

from .results import Conflict, Result
from .timewindow import iter_days

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AvailabilityIndex:
    item_id: str
    owners: Mapping[date, str] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "owners", MappingProxyType(dict(self.owners)))

    def is_range_free(self, start: date, end: date) -> bool:
        """True iff no day of [start, end) is blocked."""
        return self.first_conflict(start, end) is None

    def first_conflict(
        self,
        start: date,
        end: date,
        *,
        reservation_id: str | None = None,
    ) -> Conflict | None:
        """
        Return the earliest blocked day of [start, end), if any.

        Days already owned by ``reservation_id`` do not count as conflicts.
        """
        for day in iter_days(start, end):
            holder = self.owners.get(day)
            if holder is not None and holder != reservation_id:
                return Conflict(day=day, held_by=holder)
        return None

    def claim_range(self, start: date, end: date, reservation_id: str) -> Result["AvailabilityIndex"]:
        """Block every day of [start, end) for ``reservation_id`` or nothing at all."""
        conflict = self.first_conflict(start, end, reservation_id=reservation_id)
        if conflict is not None:
            logger.info(
                "availability: claim rejected for item %s, %s held by %s",
                self.item_id,
                conflict.day.isoformat(),
                conflict.held_by,
            )
            return Result.failure(conflict)
        owners = dict(self.owners)
        for day in iter_days(start, end):
            owners[day] = reservation_id
        return Result.success(AvailabilityIndex(item_id=self.item_id, owners=owners))

    def release_range(self, reservation_id: str) -> "AvailabilityIndex":
        """Unblock every day owned by ``reservation_id``; no-op when it owns none."""
        owners = {day: holder for day, holder in self.owners.items() if holder != reservation_id}
        if len(owners) == len(self.owners):
            return self
        return AvailabilityIndex(item_id=self.item_id, owners=owners)

    def days_owned_by(self, reservation_id: str) -> list[date]:
        return sorted(day for day, holder in self.owners.items() if holder == reservation_id)

    def owner_of(self, day: date) -> str | None:
        return self.owners.get(day)

    def blocked_days(self) -> list[date]:
        return sorted(self.owners)

    def __len__(self) -> int:
        return len(self.owners)
