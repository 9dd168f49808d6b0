"""Reservation aggregate and its transition function."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Callable, FrozenSet, Tuple, Union
from uuid import uuid4

from .results import Result, ViolationCode, violation
from .timewindow import days_between, is_valid_range, parse_day_key, within_window

logger = logging.getLogger(__name__)

DEFAULT_REFUND_WINDOW = timedelta(days=7)
GATEWAY_ACTOR = "gateway"
REJECT_REASON_MAX_LENGTH = 300


class ReservationStatus(str, Enum):
    REQUESTED = "requested"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    PAID = "paid"
    PICKED_UP = "picked_up"
    RETURNED = "returned"
    PAID_OUT = "paid_out"
    CANCELED = "canceled"


# Statuses whose day range is held in the item's calendar.
BLOCKING_STATUSES = frozenset(
    {
        ReservationStatus.PAID,
        ReservationStatus.PICKED_UP,
        ReservationStatus.RETURNED,
        ReservationStatus.PAID_OUT,
    }
)
# Statuses at which the record may be physically removed.
DELETABLE_STATUSES = frozenset(
    {
        ReservationStatus.REQUESTED,
        ReservationStatus.REJECTED,
        ReservationStatus.CANCELED,
    }
)


class ActorRole(str, Enum):
    OWNER = "owner"
    RENTER = "renter"


class ReviewTarget(str, Enum):
    """What a review is about; owner and item are reviewed by the renter."""

    OWNER = "owner"
    ITEM = "item"
    RENTER = "renter"


@dataclass(frozen=True)
class ReviewsOpen:
    renter_can_review_owner: bool = True
    renter_can_review_item: bool = True
    owner_can_review_renter: bool = True

    def is_open(self, target: ReviewTarget) -> bool:
        if target == ReviewTarget.OWNER:
            return self.renter_can_review_owner
        if target == ReviewTarget.ITEM:
            return self.renter_can_review_item
        return self.owner_can_review_renter

    def close(self, target: ReviewTarget) -> "ReviewsOpen":
        if target == ReviewTarget.OWNER:
            return replace(self, renter_can_review_owner=False)
        if target == ReviewTarget.ITEM:
            return replace(self, renter_can_review_item=False)
        return replace(self, owner_can_review_renter=False)

    def open_for(self, role: ActorRole) -> bool:
        if role == ActorRole.RENTER:
            return self.renter_can_review_owner or self.renter_can_review_item
        return self.owner_can_review_renter


@dataclass(frozen=True)
class ItemTerms:
    """Rental terms read from the item collaborator when a request is made."""

    item_id: str
    owner_uid: str
    daily_rate: int = 0
    min_rental_days: int = 1
    is_free: bool = False

    def __post_init__(self):
        if self.daily_rate < 0:
            raise ValueError("daily_rate cannot be negative")
        if self.min_rental_days < 1:
            raise ValueError("min_rental_days must be at least 1")


@dataclass(frozen=True)
class Reservation:
    """
    Aggregate root for one renter's claim on an item's date range.

    ``start_date`` is inclusive and ``end_date`` exclusive. ``total`` is in
    minor currency units. Values are never mutated in place; ``apply`` returns
    a new instance for every transition.
    """

    id: str
    item_id: str
    item_owner_uid: str
    renter_uid: str
    start_date: date
    end_date: date
    days: int
    total: int
    is_free: bool = False
    min_rental_days: int = 1
    status: ReservationStatus = ReservationStatus.REQUESTED
    created_at: datetime | None = None
    accepted_at: datetime | None = None
    rejected_at: datetime | None = None
    paid_at: datetime | None = None
    picked_up_at: datetime | None = None
    returned_at: datetime | None = None
    paid_out_at: datetime | None = None
    canceled_at: datetime | None = None
    refund_requested_at: datetime | None = None
    reject_reason: str = ""
    canceled_by: str = ""
    payment_reference: str = ""
    reviews_open: ReviewsOpen = field(default_factory=ReviewsOpen)
    gateway_event_ids_applied: FrozenSet[str] = frozenset()
    version: int = 0

    def blocks_days(self) -> bool:
        return self.status in BLOCKING_STATUSES

    def role_of(self, actor_uid: str) -> ActorRole | None:
        if actor_uid == self.item_owner_uid:
            return ActorRole.OWNER
        if actor_uid == self.renter_uid:
            return ActorRole.RENTER
        return None

    def has_applied(self, gateway_event_id: str) -> bool:
        return gateway_event_id in self.gateway_event_ids_applied

    def with_event(self, gateway_event_id: str) -> "Reservation":
        return replace(
            self,
            gateway_event_ids_applied=self.gateway_event_ids_applied | {gateway_event_id},
        )

    def __str__(self) -> str:
        return f"Reservation {self.id} for {self.item_id} ({self.status.value})"


# ===== Commands =====


@dataclass(frozen=True)
class Accept:
    actor_uid: str


@dataclass(frozen=True)
class Reject:
    actor_uid: str
    reason: str = ""


@dataclass(frozen=True)
class DeleteByOwner:
    actor_uid: str


@dataclass(frozen=True)
class DeleteByRenter:
    actor_uid: str


@dataclass(frozen=True)
class MarkPaid:
    """Payment confirmed by the gateway (``amount`` is checked when given)."""

    amount: int | None = None
    payment_reference: str = ""


@dataclass(frozen=True)
class MarkPickup:
    actor_uid: str


@dataclass(frozen=True)
class CancelWithRefund:
    actor_uid: str


@dataclass(frozen=True)
class CancelAccepted:
    actor_uid: str


@dataclass(frozen=True)
class ConfirmReturn:
    actor_uid: str


@dataclass(frozen=True)
class MarkPaidOut:
    pass


@dataclass(frozen=True)
class RecordRefund:
    """Refund reported by the gateway."""


@dataclass(frozen=True)
class SubmitReview:
    actor_uid: str
    target: ReviewTarget


Command = Union[
    Accept,
    Reject,
    DeleteByOwner,
    DeleteByRenter,
    MarkPaid,
    MarkPickup,
    CancelWithRefund,
    CancelAccepted,
    ConfirmReturn,
    MarkPaidOut,
    RecordRefund,
    SubmitReview,
]


# ===== Side-effect intents =====


@dataclass(frozen=True)
class ClaimRange:
    item_id: str
    start_date: date
    end_date: date
    reservation_id: str


@dataclass(frozen=True)
class ReleaseRange:
    item_id: str
    reservation_id: str


@dataclass(frozen=True)
class IssueRefund:
    reservation_id: str
    payment_reference: str
    amount: int


@dataclass(frozen=True)
class OpenReviews:
    reservation_id: str


@dataclass(frozen=True)
class CloseReview:
    reservation_id: str
    target: ReviewTarget


Intent = Union[ClaimRange, ReleaseRange, IssueRefund, OpenReviews, CloseReview]


@dataclass(frozen=True)
class Transition:
    """Outcome of a legal command; ``reservation`` is None when the record is removed."""

    reservation: Reservation | None
    intents: Tuple[Intent, ...] = ()

    @property
    def removed(self) -> bool:
        return self.reservation is None

    @property
    def touches_calendar(self) -> bool:
        return any(isinstance(intent, (ClaimRange, ReleaseRange)) for intent in self.intents)


# ===== Creation =====


def new_reservation(
    terms: ItemTerms,
    renter_uid: str,
    start: date | str,
    end: date | str,
    now: datetime,
    *,
    total: int | None = None,
    reservation_id: str | None = None,
) -> Result[Reservation]:
    """Validate a renter's request and build a ``requested`` reservation."""
    try:
        start_date = parse_day_key(start)
        end_date = parse_day_key(end)
    except (TypeError, ValueError):
        return Result.failure(
            violation(ViolationCode.INVALID_RANGE, "Start and end must be yyyy-mm-dd days.")
        )
    if not is_valid_range(start_date, end_date):
        return Result.failure(
            violation(ViolationCode.INVALID_RANGE, "End date must be after start date.")
        )
    if renter_uid == terms.owner_uid:
        return Result.failure(
            violation(ViolationCode.SELF_RENTAL, "Owners cannot rent their own item.")
        )

    days = days_between(start_date, end_date)
    if days < terms.min_rental_days:
        return Result.failure(
            violation(
                ViolationCode.BELOW_MIN_RENTAL_DAYS,
                f"Minimum rental is {terms.min_rental_days} days; requested {days}.",
            )
        )

    if terms.is_free:
        if total not in (None, 0):
            return Result.failure(
                violation(ViolationCode.FREE_TOTAL_MISMATCH, "Free items must total 0.")
            )
        amount = 0
    else:
        amount = terms.daily_rate * days if total is None else total
        if amount < 0:
            return Result.failure(
                violation(ViolationCode.AMOUNT_MISMATCH, "Total cannot be negative.")
            )

    return Result.success(
        Reservation(
            id=reservation_id or uuid4().hex,
            item_id=terms.item_id,
            item_owner_uid=terms.owner_uid,
            renter_uid=renter_uid,
            start_date=start_date,
            end_date=end_date,
            days=days,
            total=amount,
            # Nothing to charge means nothing to pay; acceptance books the days.
            is_free=terms.is_free or amount == 0,
            min_rental_days=terms.min_rental_days,
            created_at=now,
        )
    )


# ===== Transition function =====


def _stamp(now: datetime, *earlier: datetime | None) -> datetime:
    """Return ``now`` but never before a previously recorded lifecycle instant."""
    floor = max((value for value in earlier if value is not None), default=None)
    if floor is not None and now < floor:
        return floor
    return now


def _mismatch(reservation: Reservation, expected: str) -> Result[Transition]:
    return Result.failure(
        violation(
            ViolationCode.FROM_STATE_MISMATCH,
            f"Expected {expected}, current status is '{reservation.status.value}'.",
        )
    )


def _require_owner(reservation: Reservation, actor_uid: str):
    if actor_uid != reservation.item_owner_uid:
        return Result.failure(
            violation(ViolationCode.NOT_OWNER, "Only the item owner can do this.")
        )
    return None


def _require_renter(reservation: Reservation, actor_uid: str):
    if actor_uid != reservation.renter_uid:
        return Result.failure(violation(ViolationCode.NOT_RENTER, "Only the renter can do this."))
    return None


def _claim(reservation: Reservation) -> ClaimRange:
    return ClaimRange(
        item_id=reservation.item_id,
        start_date=reservation.start_date,
        end_date=reservation.end_date,
        reservation_id=reservation.id,
    )


def _release(reservation: Reservation) -> ReleaseRange:
    return ReleaseRange(item_id=reservation.item_id, reservation_id=reservation.id)


def _accept(reservation: Reservation, command: Accept, now: datetime, window: timedelta):
    denied = _require_owner(reservation, command.actor_uid)
    if denied:
        return denied
    if reservation.status != ReservationStatus.REQUESTED:
        return _mismatch(reservation, "'requested'")
    if reservation.is_free:
        # No payment happens for free items; acceptance claims the calendar directly.
        accepted = replace(
            reservation,
            status=ReservationStatus.PAID,
            accepted_at=now,
            paid_at=now,
        )
        return Result.success(Transition(accepted, (_claim(accepted),)))
    accepted = replace(reservation, status=ReservationStatus.ACCEPTED, accepted_at=now)
    return Result.success(Transition(accepted))


def _reject(reservation: Reservation, command: Reject, now: datetime, window: timedelta):
    denied = _require_owner(reservation, command.actor_uid)
    if denied:
        return denied
    if reservation.status != ReservationStatus.REQUESTED:
        return _mismatch(reservation, "'requested'")
    rejected = replace(
        reservation,
        status=ReservationStatus.REJECTED,
        rejected_at=now,
        reject_reason=(command.reason or "").strip()[:REJECT_REASON_MAX_LENGTH],
    )
    return Result.success(Transition(rejected, (_release(rejected),)))


def _delete_by_owner(reservation: Reservation, command: DeleteByOwner, now, window):
    denied = _require_owner(reservation, command.actor_uid)
    if denied:
        return denied
    if reservation.status != ReservationStatus.REQUESTED:
        return _mismatch(reservation, "'requested'")
    return Result.success(Transition(None))


def _delete_by_renter(reservation: Reservation, command: DeleteByRenter, now, window):
    denied = _require_renter(reservation, command.actor_uid)
    if denied:
        return denied
    if reservation.status not in DELETABLE_STATUSES:
        return _mismatch(reservation, "'requested', 'rejected' or 'canceled'")
    return Result.success(Transition(None))


def _mark_paid(reservation: Reservation, command: MarkPaid, now: datetime, window: timedelta):
    if reservation.paid_at is not None or reservation.status in BLOCKING_STATUSES:
        return Result.failure(
            violation(ViolationCode.ALREADY_PAID, f"Reservation {reservation.id} is already paid.")
        )
    if reservation.status != ReservationStatus.ACCEPTED:
        return _mismatch(reservation, "'accepted'")
    if reservation.days < reservation.min_rental_days:
        return Result.failure(
            violation(
                ViolationCode.BELOW_MIN_RENTAL_DAYS,
                f"Minimum rental is {reservation.min_rental_days} days.",
            )
        )
    if command.amount is not None and command.amount != reservation.total:
        return Result.failure(
            violation(
                ViolationCode.AMOUNT_MISMATCH,
                f"Paid {command.amount}, expected {reservation.total}.",
            )
        )
    paid = replace(
        reservation,
        status=ReservationStatus.PAID,
        paid_at=now,
        payment_reference=command.payment_reference or reservation.payment_reference,
    )
    return Result.success(Transition(paid, (_claim(paid),)))


def _mark_pickup(reservation: Reservation, command: MarkPickup, now: datetime, window):
    denied = _require_renter(reservation, command.actor_uid)
    if denied:
        return denied
    if reservation.picked_up_at is not None:
        return Result.failure(
            violation(ViolationCode.ALREADY_PICKED_UP, "Pickup was already recorded.")
        )
    if reservation.status != ReservationStatus.PAID:
        return _mismatch(reservation, "'paid'")
    picked = replace(
        reservation,
        status=ReservationStatus.PICKED_UP,
        picked_up_at=_stamp(now, reservation.paid_at),
    )
    return Result.success(Transition(picked))


def _refund_window_violation(reservation: Reservation, now: datetime, window: timedelta):
    if reservation.picked_up_at is not None:
        return violation(
            ViolationCode.ALREADY_PICKED_UP, "Refunds are not possible after pickup."
        )
    if not within_window(reservation.paid_at, now, window):
        return violation(
            ViolationCode.REFUND_WINDOW_EXPIRED,
            f"Refunds are only possible within {window.days} days of payment.",
        )
    return None


def _cancel_with_refund(reservation: Reservation, command: CancelWithRefund, now, window):
    denied = _require_renter(reservation, command.actor_uid)
    if denied:
        return denied
    if reservation.status != ReservationStatus.PAID:
        return _mismatch(reservation, "'paid'")
    blocked = _refund_window_violation(reservation, now, window)
    if blocked is not None:
        return Result.failure(blocked)
    stamped = _stamp(now, reservation.paid_at)
    canceled = replace(
        reservation,
        status=ReservationStatus.CANCELED,
        canceled_at=stamped,
        canceled_by=command.actor_uid,
        refund_requested_at=stamped,
    )
    intents: list = [_release(canceled)]
    if not canceled.is_free and canceled.total > 0:
        intents.append(
            IssueRefund(
                reservation_id=canceled.id,
                payment_reference=canceled.payment_reference,
                amount=canceled.total,
            )
        )
    return Result.success(Transition(canceled, tuple(intents)))


def _cancel_accepted(reservation: Reservation, command: CancelAccepted, now, window):
    if reservation.role_of(command.actor_uid) is None:
        return Result.failure(
            violation(ViolationCode.NOT_PARTICIPANT, "Only participants can cancel.")
        )
    if reservation.status != ReservationStatus.ACCEPTED:
        return _mismatch(reservation, "'accepted'")
    canceled = replace(
        reservation,
        status=ReservationStatus.CANCELED,
        canceled_at=now,
        canceled_by=command.actor_uid,
    )
    return Result.success(Transition(canceled))


def _confirm_return(reservation: Reservation, command: ConfirmReturn, now, window):
    denied = _require_owner(reservation, command.actor_uid)
    if denied:
        return denied
    if reservation.status not in (ReservationStatus.PICKED_UP, ReservationStatus.PAID_OUT):
        return _mismatch(reservation, "'picked_up' or 'paid_out'")
    if reservation.returned_at is not None:
        return Result.failure(
            violation(ViolationCode.ALREADY_RETURNED, "Return was already confirmed.")
        )
    returned = replace(
        reservation,
        status=ReservationStatus.RETURNED,
        returned_at=_stamp(now, reservation.paid_at, reservation.picked_up_at),
        reviews_open=ReviewsOpen(),
    )
    return Result.success(Transition(returned, (OpenReviews(reservation_id=returned.id),)))


def _mark_paid_out(reservation: Reservation, command: MarkPaidOut, now, window):
    if reservation.status != ReservationStatus.RETURNED:
        return _mismatch(reservation, "'returned'")
    paid_out = replace(
        reservation,
        status=ReservationStatus.PAID_OUT,
        paid_out_at=_stamp(
            now, reservation.paid_at, reservation.picked_up_at, reservation.returned_at
        ),
    )
    return Result.success(Transition(paid_out))


def _record_refund(reservation: Reservation, command: RecordRefund, now, window):
    if reservation.status == ReservationStatus.CANCELED:
        if reservation.refund_requested_at is None:
            return Result.failure(
                violation(
                    ViolationCode.REFUND_NOT_REQUESTED,
                    "Reservation was canceled without a refund request.",
                )
            )
        return Result.success(Transition(reservation))
    if reservation.status != ReservationStatus.PAID:
        return _mismatch(reservation, "'paid' or 'canceled'")
    blocked = _refund_window_violation(reservation, now, window)
    if blocked is not None:
        return Result.failure(
            violation(ViolationCode.NOT_REFUNDABLE, f"Gateway refund rejected: {blocked.message}")
        )
    stamped = _stamp(now, reservation.paid_at)
    canceled = replace(
        reservation,
        status=ReservationStatus.CANCELED,
        canceled_at=stamped,
        canceled_by=GATEWAY_ACTOR,
        refund_requested_at=stamped,
    )
    return Result.success(Transition(canceled, (_release(canceled),)))


def _submit_review(reservation: Reservation, command: SubmitReview, now, window):
    if command.target == ReviewTarget.RENTER:
        denied = _require_owner(reservation, command.actor_uid)
    else:
        denied = _require_renter(reservation, command.actor_uid)
    if denied:
        return denied
    if reservation.status != ReservationStatus.RETURNED:
        return _mismatch(reservation, "'returned'")
    if not reservation.reviews_open.is_open(command.target):
        return Result.failure(
            violation(
                ViolationCode.REVIEW_CLOSED,
                f"The {command.target.value} review was already submitted.",
            )
        )
    reviewed = replace(reservation, reviews_open=reservation.reviews_open.close(command.target))
    return Result.success(
        Transition(reviewed, (CloseReview(reservation_id=reviewed.id, target=command.target),))
    )


_HANDLERS: dict[type, Callable[..., Result[Transition]]] = {
    Accept: _accept,
    Reject: _reject,
    DeleteByOwner: _delete_by_owner,
    DeleteByRenter: _delete_by_renter,
    MarkPaid: _mark_paid,
    MarkPickup: _mark_pickup,
    CancelWithRefund: _cancel_with_refund,
    CancelAccepted: _cancel_accepted,
    ConfirmReturn: _confirm_return,
    MarkPaidOut: _mark_paid_out,
    RecordRefund: _record_refund,
    SubmitReview: _submit_review,
}


def apply(
    reservation: Reservation,
    command: Command,
    now: datetime,
    *,
    refund_window: timedelta = DEFAULT_REFUND_WINDOW,
) -> Result[Transition]:
    """
    Run ``command`` against ``reservation`` at instant ``now``.

    Returns the resulting transition (new reservation value plus side-effect
    intents) or a ``RuleViolation``; performs no I/O.
    """
    handler = _HANDLERS.get(type(command))
    if handler is None:
        raise TypeError(f"Unsupported reservation command: {type(command).__name__}")
    result = handler(reservation, command, now, refund_window)
    if not result.ok:
        logger.debug(
            "reservation %s: %s rejected (%s)",
            reservation.id,
            type(command).__name__,
            result.error.code.value,
        )
    return result
