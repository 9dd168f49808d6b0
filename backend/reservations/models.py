"""Database models backing the Django reservation store."""

from __future__ import annotations

from django.db import models

from .domain import ReservationStatus


class Reservation(models.Model):
    """Stored form of ``reservations.domain.Reservation``."""

    class Status(models.TextChoices):
        REQUESTED = ReservationStatus.REQUESTED.value, "requested"
        ACCEPTED = ReservationStatus.ACCEPTED.value, "accepted"
        REJECTED = ReservationStatus.REJECTED.value, "rejected"
        PAID = ReservationStatus.PAID.value, "paid"
        PICKED_UP = ReservationStatus.PICKED_UP.value, "picked up"
        RETURNED = ReservationStatus.RETURNED.value, "returned"
        PAID_OUT = ReservationStatus.PAID_OUT.value, "paid out"
        CANCELED = ReservationStatus.CANCELED.value, "canceled"

    id = models.CharField(primary_key=True, max_length=64)
    item_id = models.CharField(max_length=64)
    item_owner_uid = models.CharField(max_length=64)
    renter_uid = models.CharField(max_length=64)
    start_date = models.DateField()
    end_date = models.DateField(help_text="Exclusive checkout day, after start_date.")
    days = models.PositiveIntegerField()
    total = models.PositiveIntegerField(help_text="Amount in minor currency units.")
    is_free = models.BooleanField(default=False)
    min_rental_days = models.PositiveIntegerField(default=1)
    status = models.CharField(
        max_length=16,
        choices=Status.choices,
        default=Status.REQUESTED,
    )
    created_at = models.DateTimeField(null=True, blank=True)
    accepted_at = models.DateTimeField(null=True, blank=True)
    rejected_at = models.DateTimeField(null=True, blank=True)
    paid_at = models.DateTimeField(null=True, blank=True)
    picked_up_at = models.DateTimeField(null=True, blank=True)
    returned_at = models.DateTimeField(null=True, blank=True)
    paid_out_at = models.DateTimeField(null=True, blank=True)
    canceled_at = models.DateTimeField(null=True, blank=True)
    refund_requested_at = models.DateTimeField(null=True, blank=True)
    reject_reason = models.CharField(max_length=300, blank=True, default="")
    canceled_by = models.CharField(max_length=64, blank=True, default="")
    payment_reference = models.CharField(max_length=120, blank=True, default="")
    renter_can_review_owner = models.BooleanField(default=True)
    renter_can_review_item = models.BooleanField(default=True)
    owner_can_review_renter = models.BooleanField(default=True)
    version = models.PositiveIntegerField(default=0)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["start_date", "id"]
        indexes = [
            models.Index(fields=["item_id", "status"], name="reservation_item_status_idx"),
            models.Index(fields=["renter_uid", "status"], name="reservation_renter_status_idx"),
            models.Index(fields=["item_owner_uid", "status"], name="reservation_owner_status_idx"),
        ]

    def __str__(self) -> str:
        return f"Reservation {self.pk} for {self.item_id} ({self.status})"


class AppliedGatewayEvent(models.Model):
    """Ledger row proving a payment-provider event was consumed."""

    reservation = models.ForeignKey(
        Reservation,
        related_name="applied_events",
        on_delete=models.CASCADE,
    )
    gateway_event_id = models.CharField(max_length=255)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["reservation", "gateway_event_id"],
                name="reservation_gateway_event_unique",
            )
        ]


class ItemCalendar(models.Model):
    """One row per item; locked with ``select_for_update`` around claims."""

    item_id = models.CharField(primary_key=True, max_length=64)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return f"Calendar for {self.item_id}"


class BookedDay(models.Model):
    item_id = models.CharField(max_length=64)
    day = models.DateField()
    reservation_id = models.CharField(max_length=64, db_index=True)

    class Meta:
        ordering = ["item_id", "day"]
        constraints = [
            models.UniqueConstraint(fields=["item_id", "day"], name="booked_day_unique"),
        ]

    def __str__(self) -> str:
        return f"{self.item_id} {self.day.isoformat()} -> {self.reservation_id}"
