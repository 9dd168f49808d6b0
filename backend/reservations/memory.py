"""In-process persistence for the reservation engine."""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import replace
from typing import Iterable, Iterator, Sequence

from .availability import AvailabilityIndex
from .domain import Intent, Reservation, ReservationStatus
from .ports import IntentDispatcher, ReservationStore, StaleReservationError

logger = logging.getLogger(__name__)

_MISSING = object()


class InMemoryReservationStore(ReservationStore):
    """
    Dict-backed store with one ``threading.Lock`` per item.

    Writes made inside ``item_lock`` are journaled and undone if the block
    raises, which gives the same all-or-nothing behaviour as the database
    adapter's ``transaction.atomic()``.
    """

    def __init__(self):
        self._reservations: dict[str, Reservation] = {}
        self._calendars: dict[str, AvailabilityIndex] = {}
        self._item_locks: dict[str, threading.Lock] = {}
        self._lock = threading.Lock()
        self._local = threading.local()

    # ---- journal ----

    def _journal(self) -> list | None:
        return getattr(self._local, "journal", None)

    def _remember(self, table: dict, key: str) -> None:
        journal = self._journal()
        if journal is not None:
            journal.append((table, key, table.get(key, _MISSING)))

    def _rollback(self, journal: list) -> None:
        with self._lock:
            for table, key, previous in reversed(journal):
                if previous is _MISSING:
                    table.pop(key, None)
                else:
                    table[key] = previous

    # ---- ReservationStore ----

    def load_reservation(self, reservation_id: str) -> Reservation | None:
        with self._lock:
            return self._reservations.get(reservation_id)

    def save_reservation(self, reservation: Reservation) -> Reservation:
        with self._lock:
            current = self._reservations.get(reservation.id)
            stored_version = current.version if current is not None else 0
            if stored_version != reservation.version:
                raise StaleReservationError(reservation.id, reservation.version)
            stored = replace(reservation, version=reservation.version + 1)
            self._remember(self._reservations, reservation.id)
            self._reservations[reservation.id] = stored
            return stored

    def delete_reservation(self, reservation: Reservation) -> None:
        with self._lock:
            current = self._reservations.get(reservation.id)
            if current is None or current.version != reservation.version:
                raise StaleReservationError(reservation.id, reservation.version)
            self._remember(self._reservations, reservation.id)
            del self._reservations[reservation.id]

    def load_availability(self, item_id: str) -> AvailabilityIndex:
        with self._lock:
            return self._calendars.get(item_id) or AvailabilityIndex(item_id=item_id)

    def save_availability(self, index: AvailabilityIndex) -> None:
        with self._lock:
            self._remember(self._calendars, index.item_id)
            self._calendars[index.item_id] = index

    @contextmanager
    def item_lock(self, item_id: str) -> Iterator[None]:
        with self._lock:
            lock = self._item_locks.setdefault(item_id, threading.Lock())
        with lock:
            self._local.journal = []
            try:
                yield
            except BaseException:
                self._rollback(self._local.journal)
                raise
            finally:
                self._local.journal = None

    def list_reservations(
        self,
        *,
        item_id: str | None = None,
        participant_uid: str | None = None,
        statuses: Iterable[ReservationStatus] | None = None,
    ) -> list[Reservation]:
        wanted = set(statuses) if statuses is not None else None
        with self._lock:
            values = list(self._reservations.values())
        matches = [
            reservation
            for reservation in values
            if (item_id is None or reservation.item_id == item_id)
            and (
                participant_uid is None
                or participant_uid in (reservation.renter_uid, reservation.item_owner_uid)
            )
            and (wanted is None or reservation.status in wanted)
        ]
        return sorted(matches, key=lambda reservation: (reservation.start_date, reservation.id))


class RecordingDispatcher(IntentDispatcher):
    """Keeps dispatched intents in order; handy for tests and dry runs."""

    def __init__(self):
        self.intents: list[Intent] = []
        self._lock = threading.Lock()

    def dispatch(self, intents: Sequence[Intent]) -> None:
        with self._lock:
            self.intents.extend(intents)

    def of_type(self, intent_type: type) -> list[Intent]:
        with self._lock:
            return [intent for intent in self.intents if isinstance(intent, intent_type)]
