"""Shared pytest configuration and fixtures."""

from __future__ import annotations

from typing import Callable

import pytest
from rest_framework.test import APIClient

from core.clock import FixedClock
from reservations.domain import ItemTerms, Reservation
from reservations.memory import InMemoryReservationStore, RecordingDispatcher
from reservations.service import ReservationEngine
from reservations.tests.factories import OWNER_UID, RENTER_UID, T0, FakeGateway, walk_to


@pytest.fixture
def api_client():
    """DRF API client for request/response helpers."""
    return APIClient()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(T0)


@pytest.fixture
def store() -> InMemoryReservationStore:
    return InMemoryReservationStore()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def engine(store, clock, gateway, dispatcher) -> ReservationEngine:
    return ReservationEngine(store, clock, gateway=gateway, dispatcher=dispatcher)


@pytest.fixture
def item_terms() -> ItemTerms:
    return ItemTerms(item_id="item-1", owner_uid=OWNER_UID, daily_rate=5000, min_rental_days=1)


@pytest.fixture
def free_terms() -> ItemTerms:
    return ItemTerms(item_id="item-free", owner_uid=OWNER_UID, is_free=True)


@pytest.fixture
def reservation_factory(engine, item_terms) -> Callable[..., Reservation]:
    def _create(
        *,
        start: str = "2025-06-10",
        end: str = "2025-06-15",
        status: str = "requested",
        renter_uid: str = RENTER_UID,
        terms: ItemTerms | None = None,
    ) -> Reservation:
        result = engine.request_reservation(terms or item_terms, renter_uid, start, end)
        assert result.ok, result.error
        return walk_to(engine, result.value, status)

    return _create
