"""Tests for the reservation command and query API."""

from __future__ import annotations

from datetime import date, timedelta

import pytest

from reservations.domain import IssueRefund, ItemTerms, ReservationStatus
from reservations.ports import StaleReservationError
from reservations.results import Conflict, NotFound, StorageConflict, ViolationCode
from reservations.service import ReservationEngine
from reservations.tests.factories import OWNER_UID, RENTER_UID, T0, paid_event


def test_request_reservation_persists_requested(engine, item_terms, store):
    result = engine.request_reservation(item_terms, RENTER_UID, "2025-06-10", "2025-06-12")

    assert result.ok
    stored = store.load_reservation(result.value.id)
    assert stored.status == ReservationStatus.REQUESTED
    assert stored.total == 10000
    assert stored.version == 1


def test_request_below_minimum_is_not_persisted(engine, store):
    terms = ItemTerms(item_id="item-1", owner_uid=OWNER_UID, daily_rate=5000, min_rental_days=2)

    result = engine.request_reservation(terms, RENTER_UID, "2025-03-01", "2025-03-02")

    assert result.violation().code == ViolationCode.BELOW_MIN_RENTAL_DAYS
    assert store.list_reservations() == []


def test_cancel_within_window_then_repeat_is_state_mismatch(
    engine, reservation_factory, clock, store, dispatcher
):
    reservation = reservation_factory(status="paid")
    clock.set(T0 + timedelta(days=6, hours=23))

    first = engine.cancel_with_refund(reservation.id, RENTER_UID)
    second = engine.cancel_with_refund(reservation.id, RENTER_UID)

    assert first.ok
    assert first.value.status == ReservationStatus.CANCELED
    assert store.load_availability("item-1").blocked_days() == []
    assert second.violation().code == ViolationCode.FROM_STATE_MISMATCH
    refunds = dispatcher.of_type(IssueRefund)
    assert refunds == [
        IssueRefund(reservation_id=reservation.id, payment_reference=f"pi_{reservation.id}", amount=25000)
    ]


def test_cancel_after_window_is_refused(engine, reservation_factory, clock):
    reservation = reservation_factory(status="paid")
    clock.advance(timedelta(days=7, seconds=1))

    result = engine.cancel_with_refund(reservation.id, RENTER_UID)

    assert result.violation().code == ViolationCode.REFUND_WINDOW_EXPIRED


def test_cancelled_range_can_be_paid_by_someone_else(engine, reservation_factory, store):
    first = reservation_factory(status="paid")
    second = reservation_factory(status="accepted", renter_uid="renter-2")
    assert engine.cancel_with_refund(first.id, RENTER_UID).ok

    result = engine.handle_gateway_event(paid_event(second))

    assert result.ok
    assert store.load_availability("item-1").owner_of(date(2025, 6, 14)) == second.id


def test_overlapping_payment_conflict_cites_first_shared_day(engine, reservation_factory):
    first = reservation_factory(start="2025-06-10", end="2025-06-15", status="paid")
    second = reservation_factory(
        start="2025-06-14", end="2025-06-18", status="accepted", renter_uid="renter-2"
    )

    result = engine.handle_gateway_event(paid_event(second))

    assert result.error == Conflict(day=date(2025, 6, 14), held_by=first.id)


def test_start_payment_returns_checkout_url(engine, reservation_factory, gateway):
    reservation = reservation_factory(status="accepted")

    result = engine.start_payment(reservation.id, RENTER_UID)

    assert result.value == f"https://pay.example.test/checkout/{reservation.id}"
    assert gateway.payments == [(reservation.id, 25000)]


def test_start_payment_refuses_when_range_was_taken(engine, reservation_factory, gateway):
    reservation_factory(status="paid")
    late = reservation_factory(status="accepted", renter_uid="renter-2")

    result = engine.start_payment(late.id, "renter-2")

    assert result.violation().code == ViolationCode.RANGE_NO_LONGER_FREE
    assert gateway.payments == []


def test_start_payment_guards(engine, reservation_factory):
    requested = reservation_factory()
    paid = reservation_factory(start="2025-07-01", end="2025-07-03", status="paid")

    assert engine.start_payment(requested.id, OWNER_UID).violation().code == ViolationCode.NOT_RENTER
    assert (
        engine.start_payment(requested.id, RENTER_UID).violation().code
        == ViolationCode.FROM_STATE_MISMATCH
    )
    assert engine.start_payment(paid.id, RENTER_UID).violation().code == ViolationCode.ALREADY_PAID
    assert engine.start_payment("missing", RENTER_UID).error == NotFound(reservation_id="missing")


def test_free_item_accept_blocks_days_without_payment(engine, free_terms, store, gateway):
    reservation = engine.request_reservation(free_terms, RENTER_UID, "2025-07-01", "2025-07-04").value

    result = engine.accept(reservation.id, OWNER_UID)

    assert result.value.status == ReservationStatus.PAID
    assert engine.list_blocked_days("item-free") == [date(2025, 7, d) for d in (1, 2, 3)]
    assert gateway.payments == []


def test_free_item_cancel_issues_no_refund(engine, free_terms, dispatcher):
    reservation = engine.request_reservation(free_terms, RENTER_UID, "2025-07-01", "2025-07-04").value
    engine.accept(reservation.id, OWNER_UID)

    assert engine.cancel_with_refund(reservation.id, RENTER_UID).ok
    assert dispatcher.of_type(IssueRefund) == []
    assert engine.list_blocked_days("item-free") == []


def test_full_lifecycle_to_payout(engine, reservation_factory, store):
    reservation = reservation_factory(status="paid_out")

    assert reservation.status == ReservationStatus.PAID_OUT
    assert reservation.paid_at <= reservation.picked_up_at <= reservation.returned_at
    assert reservation.returned_at <= reservation.paid_out_at
    # Payout leaves the calendar untouched.
    assert len(store.load_availability("item-1")) == 5


def test_reviews_after_return(engine, reservation_factory):
    reservation = reservation_factory(status="returned")

    assert engine.can_review(reservation.id, RENTER_UID)
    assert engine.submit_review(reservation.id, RENTER_UID, "owner").ok
    assert engine.submit_review(reservation.id, RENTER_UID, "item").ok
    assert not engine.can_review(reservation.id, RENTER_UID)
    assert engine.can_review(reservation.id, OWNER_UID)
    repeat = engine.submit_review(reservation.id, RENTER_UID, "item")
    assert repeat.violation().code == ViolationCode.REVIEW_CLOSED


def test_delete_paths(engine, reservation_factory, store):
    owned = reservation_factory()
    rejected = reservation_factory(start="2025-07-01", end="2025-07-03", status="rejected")

    assert engine.delete_by_owner(owned.id, OWNER_UID).ok
    assert store.load_reservation(owned.id) is None
    assert engine.delete_by_owner(rejected.id, OWNER_UID).violation().code == (
        ViolationCode.FROM_STATE_MISMATCH
    )
    assert engine.delete_by_renter(rejected.id, RENTER_UID).ok
    assert engine.get_reservation(rejected.id) is None
    assert engine.delete_by_renter(rejected.id, RENTER_UID).error == NotFound(
        reservation_id=rejected.id
    )


def test_cancel_accepted_keeps_calendar_empty(engine, reservation_factory, store):
    reservation = reservation_factory(status="accepted")

    result = engine.cancel_accepted(reservation.id, OWNER_UID)

    assert result.value.status == ReservationStatus.CANCELED
    assert result.value.canceled_by == OWNER_UID
    assert store.load_availability("item-1").blocked_days() == []


def test_queries_reflect_clock_and_role(engine, reservation_factory, clock):
    reservation = reservation_factory(status="paid")

    assert engine.is_refundable(reservation.id)
    assert engine.can_mark_pickup(reservation.id, RENTER_UID)
    assert not engine.can_mark_pickup(reservation.id, OWNER_UID)
    assert not engine.can_pay(reservation.id, RENTER_UID)
    assert not engine.can_confirm_return(reservation.id, OWNER_UID)
    assert engine.allowed_actions(reservation.id, RENTER_UID) == ["pickup", "cancel_with_refund"]

    clock.advance(timedelta(days=8))

    assert not engine.is_refundable(reservation.id)
    assert engine.allowed_actions(reservation.id, "stranger") == []
    assert not engine.is_refundable("missing")


def test_list_reservations_filters(engine, reservation_factory):
    mine = reservation_factory()
    reservation_factory(start="2025-07-01", end="2025-07-03", renter_uid="renter-2")

    assert [r.id for r in engine.list_reservations(participant_uid=RENTER_UID)] == [mine.id]
    assert len(engine.list_reservations(participant_uid=OWNER_UID)) == 2
    assert engine.list_reservations(statuses=[ReservationStatus.PAID]) == []


def test_stale_write_is_retried(engine, reservation_factory, store, monkeypatch):
    reservation = reservation_factory(status="paid")
    original = store.save_reservation
    calls = []

    def _flaky(value):
        calls.append(value.version)
        if len(calls) == 1:
            raise StaleReservationError(value.id, value.version)
        return original(value)

    monkeypatch.setattr(store, "save_reservation", _flaky)

    result = engine.mark_pickup(reservation.id, RENTER_UID)

    assert result.ok
    assert len(calls) == 2


def test_stale_writes_exhaust_retry_budget(store, clock, reservation_factory, monkeypatch):
    reservation = reservation_factory(status="paid")
    engine = ReservationEngine(store, clock, max_retries=3)

    def _stale(value):
        raise StaleReservationError(value.id, value.version)

    monkeypatch.setattr(store, "save_reservation", _stale)

    result = engine.mark_pickup(reservation.id, RENTER_UID)

    assert result.error == StorageConflict(reservation_id=reservation.id, attempts=3)


def test_start_payment_without_gateway_is_a_configuration_error(store, clock, reservation_factory):
    reservation = reservation_factory(status="accepted")
    engine = ReservationEngine(store, clock)

    with pytest.raises(RuntimeError):
        engine.start_payment(reservation.id, RENTER_UID)


def test_zero_rate_request_is_booked_on_accept(engine, store, gateway):
    terms = ItemTerms(item_id="item-zero", owner_uid=OWNER_UID)
    reservation = engine.request_reservation(terms, RENTER_UID, "2025-07-01", "2025-07-03").value
    assert reservation.total == 0
    assert reservation.is_free

    result = engine.accept(reservation.id, OWNER_UID)

    assert result.value.status == ReservationStatus.PAID
    assert store.load_availability("item-zero").blocked_days() == [
        date(2025, 7, 1),
        date(2025, 7, 2),
    ]
    assert engine.allowed_actions(reservation.id, RENTER_UID) == ["pickup", "cancel_with_refund"]
    assert engine.start_payment(reservation.id, RENTER_UID).violation().code == (
        ViolationCode.ALREADY_PAID
    )
    assert gateway.payments == []
