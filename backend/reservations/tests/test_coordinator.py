"""Tests for atomic calendar claims and releases."""

from __future__ import annotations

import random
from concurrent.futures import ThreadPoolExecutor
from datetime import date, timedelta

import pytest

from reservations.coordinator import BookingCoordinator
from reservations.domain import CancelWithRefund, ReservationStatus
from reservations.ports import StaleReservationError
from reservations.results import AlreadyApplied, Conflict, NotFound, StorageConflict
from reservations.tests.factories import RENTER_UID


@pytest.fixture
def coordinator(store, clock):
    return BookingCoordinator(store, clock)


def test_confirm_payment_claims_days_and_records_event(coordinator, store, reservation_factory):
    reservation = reservation_factory(status="accepted")

    result = coordinator.confirm_payment(reservation.id, "evt_1", amount=25000, payment_reference="pi_1")

    assert result.ok
    paid = result.value
    assert paid.status == ReservationStatus.PAID
    assert paid.payment_reference == "pi_1"
    assert paid.has_applied("evt_1")
    assert store.load_availability("item-1").days_owned_by(reservation.id) == [
        date(2025, 6, day) for day in range(10, 15)
    ]


def test_overlapping_payment_loses_with_first_conflicting_day(
    coordinator, store, reservation_factory
):
    first = reservation_factory(start="2025-06-10", end="2025-06-15", status="paid")
    second = reservation_factory(
        start="2025-06-14", end="2025-06-18", status="accepted", renter_uid="renter-2"
    )

    result = coordinator.confirm_payment(second.id, "evt_2")

    assert result.error == Conflict(day=date(2025, 6, 14), held_by=first.id)
    assert store.load_reservation(second.id).status == ReservationStatus.ACCEPTED
    assert store.load_reservation(second.id).gateway_event_ids_applied == frozenset()
    assert store.load_availability("item-1").days_owned_by(second.id) == []


def test_replayed_event_is_already_applied(coordinator, store, reservation_factory):
    reservation = reservation_factory(status="accepted")
    coordinator.confirm_payment(reservation.id, "evt_1")

    replay = coordinator.confirm_payment(reservation.id, "evt_1")

    assert replay.error == AlreadyApplied(gateway_event_id="evt_1")
    assert replay.succeeded
    assert store.load_reservation(reservation.id).version == 3


def test_missing_reservation_is_not_found(coordinator):
    assert coordinator.confirm_payment("nope", "evt_1").error == NotFound(reservation_id="nope")


def test_accept_free_claims_range(coordinator, store, engine, free_terms):
    reservation = engine.request_reservation(free_terms, RENTER_UID, "2025-07-01", "2025-07-03").value

    result = coordinator.accept_free(reservation.id, free_terms.owner_uid)

    assert result.value.status == ReservationStatus.PAID
    assert store.load_availability("item-free").blocked_days() == [
        date(2025, 7, 1),
        date(2025, 7, 2),
    ]


def test_cancel_frees_range_for_another_reservation(coordinator, store, reservation_factory, clock):
    first = reservation_factory(status="paid")
    second = reservation_factory(status="accepted", renter_uid="renter-2")
    clock.advance(timedelta(days=1))

    released = coordinator.release(first.id, CancelWithRefund(actor_uid=RENTER_UID))
    assert released.value.reservation.status == ReservationStatus.CANCELED
    assert store.load_availability("item-1").days_owned_by(first.id) == []

    result = coordinator.confirm_payment(second.id, "evt_second")
    assert result.ok
    assert store.load_availability("item-1").owner_of(date(2025, 6, 10)) == second.id


def test_failed_write_rolls_back_calendar(coordinator, store, reservation_factory, monkeypatch):
    reservation = reservation_factory(status="accepted")

    def _boom(value):
        raise RuntimeError("disk full")

    monkeypatch.setattr(store, "save_reservation", _boom)

    with pytest.raises(RuntimeError):
        coordinator.confirm_payment(reservation.id, "evt_1")

    assert store.load_availability("item-1").blocked_days() == []


def test_persistent_stale_writes_give_storage_conflict(store, clock, reservation_factory, monkeypatch):
    coordinator = BookingCoordinator(store, clock, max_retries=2)
    reservation = reservation_factory(status="accepted")
    attempts = []

    def _stale(value):
        attempts.append(value.id)
        raise StaleReservationError(value.id, value.version)

    monkeypatch.setattr(store, "save_reservation", _stale)

    result = coordinator.confirm_payment(reservation.id, "evt_1")

    assert result.error == StorageConflict(reservation_id=reservation.id, attempts=2)
    assert len(attempts) == 2
    assert store.load_availability("item-1").blocked_days() == []


def test_concurrent_overlapping_payments_never_double_book(coordinator, store, engine, item_terms):
    rng = random.Random(20250610)
    reservations = []
    for index in range(12):
        start = date(2025, 6, 1) + timedelta(days=rng.randint(0, 10))
        end = start + timedelta(days=rng.randint(1, 5))
        created = engine.request_reservation(item_terms, f"renter-{index}", start, end).value
        assert engine.accept(created.id, item_terms.owner_uid).ok
        reservations.append(created)

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(
            pool.map(
                lambda reservation: coordinator.confirm_payment(
                    reservation.id, f"evt_{reservation.id}"
                ),
                reservations,
            )
        )

    winners = [result.value for result in results if result.ok]
    assert winners
    assert all(isinstance(result.error, Conflict) for result in results if not result.ok)

    index = store.load_availability("item-1")
    seen = set()
    for winner in winners:
        days = index.days_owned_by(winner.id)
        assert len(days) == winner.days
        assert seen.isdisjoint(days)
        seen.update(days)
    assert len(index) == len(seen)


def test_same_range_race_has_exactly_one_winner(coordinator, engine, item_terms):
    reservations = []
    for index in range(6):
        created = engine.request_reservation(
            item_terms, f"renter-{index}", "2025-06-10", "2025-06-12"
        ).value
        engine.accept(created.id, item_terms.owner_uid)
        reservations.append(created)

    with ThreadPoolExecutor(max_workers=6) as pool:
        results = list(
            pool.map(lambda r: coordinator.confirm_payment(r.id, f"evt_{r.id}"), reservations)
        )

    assert sum(1 for result in results if result.ok) == 1
