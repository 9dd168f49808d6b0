"""
Atomic claim/release of an item's calendar together with the reservation.

Every transition that blocks or frees days runs here, inside the store's
per-item critical section, so two payments racing for overlapping ranges of
one item are serialized and at most one of them wins.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from core.clock import Clock

from .domain import (
    DEFAULT_REFUND_WINDOW,
    Accept,
    ClaimRange,
    Command,
    MarkPaid,
    ReleaseRange,
    Reservation,
    Transition,
    apply,
)
from .ports import ReservationStore, StaleReservationError
from .results import AlreadyApplied, NotFound, Result, StorageConflict

logger = logging.getLogger(__name__)


class BookingCoordinator:
    def __init__(
        self,
        store: ReservationStore,
        clock: Clock,
        *,
        refund_window: timedelta = DEFAULT_REFUND_WINDOW,
        max_retries: int = 3,
    ):
        self.store = store
        self.clock = clock
        self.refund_window = refund_window
        self.max_retries = max(1, max_retries)

    def confirm_payment(
        self,
        reservation_id: str,
        gateway_event_id: str,
        amount: int | None = None,
        payment_reference: str = "",
    ) -> Result[Reservation]:
        """Claim the range and move an accepted reservation to ``paid``, once per event id."""
        result = self.execute(
            reservation_id,
            MarkPaid(amount=amount, payment_reference=payment_reference),
            gateway_event_id=gateway_event_id,
        )
        if not result.ok:
            return Result.failure(result.error)
        return Result.success(result.value.reservation)

    def accept_free(self, reservation_id: str, actor_uid: str) -> Result[Reservation]:
        result = self.execute(reservation_id, Accept(actor_uid=actor_uid))
        if not result.ok:
            return Result.failure(result.error)
        return Result.success(result.value.reservation)

    def release(
        self,
        reservation_id: str,
        command: Command,
        *,
        gateway_event_id: str | None = None,
    ) -> Result[Transition]:
        return self.execute(reservation_id, command, gateway_event_id=gateway_event_id)

    def execute(
        self,
        reservation_id: str,
        command: Command,
        *,
        gateway_event_id: str | None = None,
    ) -> Result[Transition]:
        """
        Apply ``command`` under the item lock and persist calendar and reservation together.

        Optimistic write failures restart the whole attempt with fresh state, up
        to ``max_retries`` times.
        """
        reservation = self.store.load_reservation(reservation_id)
        if reservation is None:
            return Result.failure(NotFound(reservation_id=reservation_id))

        for attempt in range(1, self.max_retries + 1):
            try:
                with self.store.item_lock(reservation.item_id):
                    return self._execute_locked(reservation_id, command, gateway_event_id)
            except StaleReservationError:
                logger.info(
                    "reservations: stale write for %s, attempt %s/%s",
                    reservation_id,
                    attempt,
                    self.max_retries,
                )
        return Result.failure(
            StorageConflict(reservation_id=reservation_id, attempts=self.max_retries)
        )

    def _execute_locked(
        self,
        reservation_id: str,
        command: Command,
        gateway_event_id: str | None,
    ) -> Result[Transition]:
        reservation = self.store.load_reservation(reservation_id)
        if reservation is None:
            return Result.failure(NotFound(reservation_id=reservation_id))
        if gateway_event_id and reservation.has_applied(gateway_event_id):
            return Result.failure(AlreadyApplied(gateway_event_id=gateway_event_id))

        result = apply(reservation, command, self.clock.now(), refund_window=self.refund_window)
        if not result.ok:
            return result
        transition = result.value

        index = self.store.load_availability(reservation.item_id)
        original_index = index
        for intent in transition.intents:
            if isinstance(intent, ClaimRange):
                claimed = index.claim_range(
                    intent.start_date, intent.end_date, intent.reservation_id
                )
                if not claimed.ok:
                    logger.warning(
                        "reservations: %s lost the range to %s",
                        reservation_id,
                        claimed.error.held_by,
                        extra={
                            "reservation_id": reservation_id,
                            "item_id": reservation.item_id,
                            "day": claimed.error.day.isoformat(),
                        },
                    )
                    return Result.failure(claimed.error)
                index = claimed.value
            elif isinstance(intent, ReleaseRange):
                index = index.release_range(intent.reservation_id)

        if index is not original_index:
            self.store.save_availability(index)

        updated = transition.reservation
        if updated is None:
            self.store.delete_reservation(reservation)
            saved = None
        else:
            if gateway_event_id:
                updated = updated.with_event(gateway_event_id)
            saved = self.store.save_reservation(updated)

        logger.info(
            "reservations: %s applied to %s",
            type(command).__name__,
            reservation_id,
            extra={
                "reservation_id": reservation_id,
                "item_id": reservation.item_id,
                "status": saved.status.value if saved else None,
                "gateway_event_id": gateway_event_id,
            },
        )
        return Result.success(Transition(saved, transition.intents))
