"""Django ORM implementation of the reservation persistence port."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import replace
from typing import Iterable, Iterator

from django.db import IntegrityError, transaction
from django.db.models import Q
from django.utils import timezone

from . import models
from .availability import AvailabilityIndex
from .domain import Reservation, ReservationStatus, ReviewsOpen
from .ports import ReservationStore, StaleReservationError

logger = logging.getLogger(__name__)

_COPIED_FIELDS = (
    "item_id",
    "item_owner_uid",
    "renter_uid",
    "start_date",
    "end_date",
    "days",
    "total",
    "is_free",
    "min_rental_days",
    "created_at",
    "accepted_at",
    "rejected_at",
    "paid_at",
    "picked_up_at",
    "returned_at",
    "paid_out_at",
    "canceled_at",
    "refund_requested_at",
    "reject_reason",
    "canceled_by",
    "payment_reference",
)


def to_domain(row: models.Reservation, event_ids: Iterable[str] = ()) -> Reservation:
    values = {name: getattr(row, name) for name in _COPIED_FIELDS}
    return Reservation(
        id=row.pk,
        status=ReservationStatus(row.status),
        reviews_open=ReviewsOpen(
            renter_can_review_owner=row.renter_can_review_owner,
            renter_can_review_item=row.renter_can_review_item,
            owner_can_review_renter=row.owner_can_review_renter,
        ),
        gateway_event_ids_applied=frozenset(event_ids),
        version=row.version,
        **values,
    )


def _row_values(reservation: Reservation) -> dict:
    values = {name: getattr(reservation, name) for name in _COPIED_FIELDS}
    values.update(
        status=reservation.status.value,
        renter_can_review_owner=reservation.reviews_open.renter_can_review_owner,
        renter_can_review_item=reservation.reviews_open.renter_can_review_item,
        owner_can_review_renter=reservation.reviews_open.owner_can_review_renter,
    )
    return values


class DjangoReservationStore(ReservationStore):
    """
    Stores reservations in ``reservations_reservation`` and blocked days in
    ``reservations_bookedday``.

    ``item_lock`` opens ``transaction.atomic()`` and takes a row lock on the
    item's ``ItemCalendar`` row. The unique ``(item_id, day)`` constraint on
    booked days backs up the lock.
    """

    def load_reservation(self, reservation_id: str) -> Reservation | None:
        row = models.Reservation.objects.filter(pk=reservation_id).first()
        if row is None:
            return None
        event_ids = row.applied_events.values_list("gateway_event_id", flat=True)
        return to_domain(row, event_ids)

    def save_reservation(self, reservation: Reservation) -> Reservation:
        values = _row_values(reservation)
        next_version = reservation.version + 1
        with transaction.atomic():
            if reservation.version == 0:
                try:
                    with transaction.atomic():
                        models.Reservation.objects.create(
                            id=reservation.id, version=next_version, **values
                        )
                except IntegrityError as exc:
                    raise StaleReservationError(reservation.id, reservation.version) from exc
            else:
                updated = models.Reservation.objects.filter(
                    pk=reservation.id, version=reservation.version
                ).update(version=next_version, updated_at=timezone.now(), **values)
                if not updated:
                    raise StaleReservationError(reservation.id, reservation.version)

            known = set(
                models.AppliedGatewayEvent.objects.filter(
                    reservation_id=reservation.id
                ).values_list("gateway_event_id", flat=True)
            )
            missing = sorted(set(reservation.gateway_event_ids_applied) - known)
            if missing:
                models.AppliedGatewayEvent.objects.bulk_create(
                    [
                        models.AppliedGatewayEvent(
                            reservation_id=reservation.id, gateway_event_id=event_id
                        )
                        for event_id in missing
                    ]
                )
        return replace(reservation, version=next_version)

    def delete_reservation(self, reservation: Reservation) -> None:
        with transaction.atomic():
            deleted, _ = models.Reservation.objects.filter(
                pk=reservation.id, version=reservation.version
            ).delete()
            if not deleted:
                raise StaleReservationError(reservation.id, reservation.version)

    def load_availability(self, item_id: str) -> AvailabilityIndex:
        rows = models.BookedDay.objects.filter(item_id=item_id).values_list("day", "reservation_id")
        return AvailabilityIndex(item_id=item_id, owners=dict(rows))

    def save_availability(self, index: AvailabilityIndex) -> None:
        with transaction.atomic():
            current = dict(
                models.BookedDay.objects.filter(item_id=index.item_id).values_list(
                    "day", "reservation_id"
                )
            )
            stale_days = [
                day for day, holder in current.items() if index.owners.get(day) != holder
            ]
            if stale_days:
                models.BookedDay.objects.filter(item_id=index.item_id, day__in=stale_days).delete()
            new_rows = [
                models.BookedDay(item_id=index.item_id, day=day, reservation_id=holder)
                for day, holder in index.owners.items()
                if current.get(day) != holder
            ]
            if new_rows:
                models.BookedDay.objects.bulk_create(new_rows)
        logger.debug(
            "reservations: calendar %s saved (%s released, %s claimed)",
            index.item_id,
            len(stale_days),
            len(new_rows),
        )

    @contextmanager
    def item_lock(self, item_id: str) -> Iterator[None]:
        with transaction.atomic():
            models.ItemCalendar.objects.get_or_create(item_id=item_id)
            models.ItemCalendar.objects.select_for_update().get(pk=item_id)
            yield

    def list_reservations(
        self,
        *,
        item_id: str | None = None,
        participant_uid: str | None = None,
        statuses: Iterable[ReservationStatus] | None = None,
    ) -> list[Reservation]:
        queryset = models.Reservation.objects.prefetch_related("applied_events")
        if item_id is not None:
            queryset = queryset.filter(item_id=item_id)
        if participant_uid is not None:
            queryset = queryset.filter(
                Q(renter_uid=participant_uid) | Q(item_owner_uid=participant_uid)
            )
        if statuses is not None:
            queryset = queryset.filter(status__in=[ReservationStatus(s).value for s in statuses])
        return [
            to_domain(row, (event.gateway_event_id for event in row.applied_events.all()))
            for row in queryset
        ]
