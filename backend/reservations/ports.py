"""Interfaces the reservation engine depends on."""

from __future__ import annotations

import abc
import logging
from typing import ContextManager, Iterable, Sequence

from .availability import AvailabilityIndex
from .domain import Intent, IssueRefund, Reservation, ReservationStatus

logger = logging.getLogger(__name__)


class StaleReservationError(Exception):
    """The stored reservation version moved since it was loaded."""

    def __init__(self, reservation_id: str, expected_version: int):
        super().__init__(
            f"Reservation {reservation_id} is no longer at version {expected_version}."
        )
        self.reservation_id = reservation_id
        self.expected_version = expected_version


class ReservationStore(abc.ABC):
    """
    Persistence port.

    ``save_reservation`` and ``delete_reservation`` are optimistic: they
    compare the reservation's ``version`` with the stored one and raise
    ``StaleReservationError`` on mismatch. ``item_lock`` yields a critical
    section for one item that is also a transaction, so availability and
    reservation writes made inside it commit together or not at all.
    """

    @abc.abstractmethod
    def load_reservation(self, reservation_id: str) -> Reservation | None:
        ...

    @abc.abstractmethod
    def save_reservation(self, reservation: Reservation) -> Reservation:
        """Insert or update; returns the stored value with its new version."""

    @abc.abstractmethod
    def delete_reservation(self, reservation: Reservation) -> None:
        ...

    @abc.abstractmethod
    def load_availability(self, item_id: str) -> AvailabilityIndex:
        ...

    @abc.abstractmethod
    def save_availability(self, index: AvailabilityIndex) -> None:
        ...

    @abc.abstractmethod
    def item_lock(self, item_id: str) -> ContextManager[None]:
        ...

    @abc.abstractmethod
    def list_reservations(
        self,
        *,
        item_id: str | None = None,
        participant_uid: str | None = None,
        statuses: Iterable[ReservationStatus] | None = None,
    ) -> list[Reservation]:
        ...


class PaymentGateway(abc.ABC):
    """Outbound calls to the payment provider."""

    @abc.abstractmethod
    def initiate_payment(self, reservation_id: str, amount: int) -> str:
        """Start a checkout and return the URL the renter is redirected to."""

    @abc.abstractmethod
    def initiate_refund(self, reservation_id: str, payment_reference: str, amount: int) -> str:
        """Ask the provider to refund ``amount``; returns the provider refund id."""


class IntentDispatcher(abc.ABC):
    """Receives side-effect intents once the transition that produced them is stored."""

    @abc.abstractmethod
    def dispatch(self, intents: Sequence[Intent]) -> None:
        ...


class NullDispatcher(IntentDispatcher):
    def dispatch(self, intents: Sequence[Intent]) -> None:
        return None


class GatewayDispatcher(IntentDispatcher):
    """Runs refund intents synchronously against a gateway."""

    def __init__(self, gateway: PaymentGateway):
        self.gateway = gateway

    def dispatch(self, intents: Sequence[Intent]) -> None:
        for intent in intents:
            if isinstance(intent, IssueRefund):
                refund_id = self.gateway.initiate_refund(
                    intent.reservation_id, intent.payment_reference, intent.amount
                )
                logger.info(
                    "reservations: refund %s issued for %s", refund_id, intent.reservation_id
                )
