"""
Command and query entry points for reservations.

``ReservationEngine`` loads a reservation, runs the pure transition
function, persists the outcome and hands side-effect intents to the
dispatcher. Transitions that block or free calendar days are delegated to
the ``BookingCoordinator`` so they run inside the item's critical section.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Iterable

from core.clock import Clock

from . import rules
from .coordinator import BookingCoordinator
from .domain import (
    DEFAULT_REFUND_WINDOW,
    Accept,
    CancelAccepted,
    CancelWithRefund,
    Command,
    ConfirmReturn,
    DeleteByOwner,
    DeleteByRenter,
    ItemTerms,
    MarkPickup,
    Reject,
    Reservation,
    ReservationStatus,
    ReviewTarget,
    SubmitReview,
    Transition,
    apply,
    new_reservation,
)
from .ports import (
    IntentDispatcher,
    NullDispatcher,
    PaymentGateway,
    ReservationStore,
    StaleReservationError,
)
from .reconciliation import GatewayEvent, PaymentReconciler
from .results import NotFound, Result, StorageConflict, ViolationCode, violation

logger = logging.getLogger(__name__)


class ReservationEngine:
    def __init__(
        self,
        store: ReservationStore,
        clock: Clock,
        *,
        gateway: PaymentGateway | None = None,
        dispatcher: IntentDispatcher | None = None,
        refund_window: timedelta = DEFAULT_REFUND_WINDOW,
        max_retries: int = 3,
    ):
        self.store = store
        self.clock = clock
        self.gateway = gateway
        self.dispatcher = dispatcher or NullDispatcher()
        self.refund_window = refund_window
        self.max_retries = max(1, max_retries)
        self.coordinator = BookingCoordinator(
            store, clock, refund_window=refund_window, max_retries=self.max_retries
        )
        self.reconciler = PaymentReconciler(self.coordinator)

    # ===== Commands =====

    def request_reservation(
        self,
        terms: ItemTerms,
        renter_uid: str,
        start: date | str,
        end: date | str,
        *,
        total: int | None = None,
    ) -> Result[Reservation]:
        result = new_reservation(terms, renter_uid, start, end, self.clock.now(), total=total)
        if not result.ok:
            return result
        saved = self.store.save_reservation(result.value)
        logger.info(
            "reservations: %s requested by %s",
            saved.id,
            renter_uid,
            extra={"reservation_id": saved.id, "item_id": saved.item_id},
        )
        return Result.success(saved)

    def accept(self, reservation_id: str, actor_uid: str) -> Result[Reservation]:
        return self._run(reservation_id, Accept(actor_uid=actor_uid))

    def reject(self, reservation_id: str, actor_uid: str, reason: str = "") -> Result[Reservation]:
        return self._run(reservation_id, Reject(actor_uid=actor_uid, reason=reason))

    def delete_by_owner(self, reservation_id: str, actor_uid: str) -> Result[None]:
        return self._run(reservation_id, DeleteByOwner(actor_uid=actor_uid))

    def delete_by_renter(self, reservation_id: str, actor_uid: str) -> Result[None]:
        return self._run(reservation_id, DeleteByRenter(actor_uid=actor_uid))

    def start_payment(self, reservation_id: str, actor_uid: str) -> Result[str]:
        """Return a checkout URL for an accepted, unpaid reservation whose range is still free."""
        reservation = self.store.load_reservation(reservation_id)
        if reservation is None:
            return Result.failure(NotFound(reservation_id=reservation_id))
        if actor_uid != reservation.renter_uid:
            return Result.failure(violation(ViolationCode.NOT_RENTER, "Only the renter can pay."))
        if reservation.paid_at is not None:
            return Result.failure(
                violation(ViolationCode.ALREADY_PAID, "Reservation is already paid.")
            )
        if not rules.can_pay(reservation, rules.role_for(reservation, actor_uid)):
            return Result.failure(
                violation(
                    ViolationCode.FROM_STATE_MISMATCH,
                    f"Cannot pay a '{reservation.status.value}' reservation.",
                )
            )
        index = self.store.load_availability(reservation.item_id)
        conflict = index.first_conflict(
            reservation.start_date, reservation.end_date, reservation_id=reservation.id
        )
        if conflict is not None:
            return Result.failure(
                violation(
                    ViolationCode.RANGE_NO_LONGER_FREE,
                    f"{conflict.day.isoformat()} was booked by someone else.",
                )
            )
        if self.gateway is None:
            raise RuntimeError("ReservationEngine has no payment gateway configured.")
        url = self.gateway.initiate_payment(reservation.id, reservation.total)
        logger.info("reservations: checkout started for %s", reservation.id)
        return Result.success(url)

    def mark_pickup(self, reservation_id: str, actor_uid: str) -> Result[Reservation]:
        return self._run(reservation_id, MarkPickup(actor_uid=actor_uid))

    def cancel_with_refund(self, reservation_id: str, actor_uid: str) -> Result[Reservation]:
        return self._run(reservation_id, CancelWithRefund(actor_uid=actor_uid))

    def cancel_accepted(self, reservation_id: str, actor_uid: str) -> Result[Reservation]:
        return self._run(reservation_id, CancelAccepted(actor_uid=actor_uid))

    def confirm_return(self, reservation_id: str, actor_uid: str) -> Result[Reservation]:
        return self._run(reservation_id, ConfirmReturn(actor_uid=actor_uid))

    def submit_review(
        self, reservation_id: str, actor_uid: str, target: ReviewTarget | str
    ) -> Result[Reservation]:
        return self._run(
            reservation_id, SubmitReview(actor_uid=actor_uid, target=ReviewTarget(target))
        )

    def handle_gateway_event(self, event: GatewayEvent) -> Result | None:
        result = self.reconciler.handle(event)
        if result is not None and result.ok and isinstance(result.value, Transition):
            self.dispatcher.dispatch(result.value.intents)
        return result

    # ===== Queries =====

    def get_reservation(self, reservation_id: str) -> Reservation | None:
        return self.store.load_reservation(reservation_id)

    def list_reservations(
        self,
        *,
        item_id: str | None = None,
        participant_uid: str | None = None,
        statuses: Iterable[ReservationStatus] | None = None,
    ) -> list[Reservation]:
        return self.store.list_reservations(
            item_id=item_id, participant_uid=participant_uid, statuses=statuses
        )

    def list_blocked_days(self, item_id: str) -> list[date]:
        return self.store.load_availability(item_id).blocked_days()

    def is_refundable(self, reservation_id: str) -> bool:
        reservation = self.store.load_reservation(reservation_id)
        if reservation is None:
            return False
        return rules.is_refundable(reservation, self.clock.now(), self.refund_window)

    def can_mark_pickup(self, reservation_id: str, actor_uid: str) -> bool:
        return self._check(rules.can_mark_pickup, reservation_id, actor_uid)

    def can_confirm_return(self, reservation_id: str, actor_uid: str) -> bool:
        return self._check(rules.can_confirm_return, reservation_id, actor_uid)

    def can_review(self, reservation_id: str, actor_uid: str) -> bool:
        return self._check(rules.can_review, reservation_id, actor_uid)

    def can_pay(self, reservation_id: str, actor_uid: str) -> bool:
        return self._check(rules.can_pay, reservation_id, actor_uid)

    def allowed_actions(self, reservation_id: str, actor_uid: str) -> list[str]:
        reservation = self.store.load_reservation(reservation_id)
        if reservation is None:
            return []
        return rules.allowed_actions(
            reservation,
            self.clock.now(),
            rules.role_for(reservation, actor_uid),
            self.refund_window,
        )

    # ===== Internals =====

    def _check(self, predicate, reservation_id: str, actor_uid: str) -> bool:
        reservation = self.store.load_reservation(reservation_id)
        if reservation is None:
            return False
        return predicate(reservation, rules.role_for(reservation, actor_uid))

    def _run(self, reservation_id: str, command: Command) -> Result:
        for attempt in range(1, self.max_retries + 1):
            reservation = self.store.load_reservation(reservation_id)
            if reservation is None:
                return Result.failure(NotFound(reservation_id=reservation_id))

            result = apply(reservation, command, self.clock.now(), refund_window=self.refund_window)
            if not result.ok:
                return result
            transition = result.value

            if transition.touches_calendar:
                locked = self.coordinator.execute(reservation_id, command)
                if not locked.ok:
                    return locked
                self.dispatcher.dispatch(locked.value.intents)
                return Result.success(locked.value.reservation)

            try:
                if transition.removed:
                    self.store.delete_reservation(reservation)
                    saved = None
                else:
                    saved = self.store.save_reservation(transition.reservation)
            except StaleReservationError:
                logger.info(
                    "reservations: stale write for %s, attempt %s/%s",
                    reservation_id,
                    attempt,
                    self.max_retries,
                )
                continue

            logger.info(
                "reservations: %s applied to %s",
                type(command).__name__,
                reservation_id,
                extra={
                    "reservation_id": reservation_id,
                    "status": saved.status.value if saved else None,
                },
            )
            self.dispatcher.dispatch(transition.intents)
            return Result.success(saved)

        return Result.failure(
            StorageConflict(reservation_id=reservation_id, attempts=self.max_retries)
        )
