"""
Eligibility predicates for reservation actions.

These mirror the guards in ``reservations.domain`` so that clients can ask
"may this actor do X now?" without attempting the command. They never
mutate anything and take the evaluation instant explicitly.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from .domain import (
    DEFAULT_REFUND_WINDOW,
    DELETABLE_STATUSES,
    ActorRole,
    Reservation,
    ReservationStatus,
)
from .timewindow import within_window


def role_for(reservation: Reservation, actor_uid: str) -> ActorRole | None:
    return reservation.role_of(actor_uid)


def is_refundable(
    reservation: Reservation,
    now: datetime,
    window: timedelta = DEFAULT_REFUND_WINDOW,
) -> bool:
    """Paid, not picked up and still inside the refund window (boundary inclusive)."""
    return (
        reservation.status == ReservationStatus.PAID
        and reservation.picked_up_at is None
        and within_window(reservation.paid_at, now, window)
    )


def can_accept(reservation: Reservation, role: ActorRole | None) -> bool:
    return role == ActorRole.OWNER and reservation.status == ReservationStatus.REQUESTED


def can_reject(reservation: Reservation, role: ActorRole | None) -> bool:
    return can_accept(reservation, role)


def can_delete_by_owner(reservation: Reservation, role: ActorRole | None) -> bool:
    return role == ActorRole.OWNER and reservation.status == ReservationStatus.REQUESTED


def can_delete_by_renter(reservation: Reservation, role: ActorRole | None) -> bool:
    return role == ActorRole.RENTER and reservation.status in DELETABLE_STATUSES


def can_pay(reservation: Reservation, role: ActorRole | None) -> bool:
    return (
        role == ActorRole.RENTER
        and reservation.status == ReservationStatus.ACCEPTED
        and reservation.paid_at is None
        and not reservation.is_free
    )


def can_cancel_accepted(reservation: Reservation, role: ActorRole | None) -> bool:
    return role is not None and reservation.status == ReservationStatus.ACCEPTED


def can_mark_pickup(reservation: Reservation, role: ActorRole | None) -> bool:
    return (
        role == ActorRole.RENTER
        and reservation.status == ReservationStatus.PAID
        and reservation.picked_up_at is None
    )


def can_confirm_return(reservation: Reservation, role: ActorRole | None) -> bool:
    return (
        role == ActorRole.OWNER
        and reservation.status in (ReservationStatus.PICKED_UP, ReservationStatus.PAID_OUT)
        and reservation.returned_at is None
    )


def can_review(reservation: Reservation, role: ActorRole | None) -> bool:
    if role is None or reservation.status != ReservationStatus.RETURNED:
        return False
    return reservation.reviews_open.open_for(role)


def is_expired(reservation: Reservation, now: datetime) -> bool:
    """A request nobody answered before its first day (compared in UTC)."""
    if reservation.status != ReservationStatus.REQUESTED:
        return False
    today = now.astimezone(timezone.utc).date()
    return reservation.start_date < today


def allowed_actions(
    reservation: Reservation,
    now: datetime,
    role: ActorRole | None,
    window: timedelta = DEFAULT_REFUND_WINDOW,
) -> list[str]:
    """Action names a participant UI should offer for ``reservation``."""
    if role is None:
        return []

    actions: list[str] = []
    if role == ActorRole.OWNER:
        if can_accept(reservation, role) and not is_expired(reservation, now):
            actions.append("accept")
        if can_reject(reservation, role):
            actions.append("reject")
        if can_delete_by_owner(reservation, role):
            actions.append("delete")
        if can_confirm_return(reservation, role):
            actions.append("confirm_return")
    else:
        if can_pay(reservation, role):
            actions.append("pay")
        if can_mark_pickup(reservation, role):
            actions.append("pickup")
        if is_refundable(reservation, now, window):
            actions.append("cancel_with_refund")
        if can_delete_by_renter(reservation, role):
            actions.append("delete")
    if can_cancel_accepted(reservation, role):
        actions.append("cancel_accepted")
    if can_review(reservation, role):
        actions.append("review")
    return actions
