"""Serializers for reservation API endpoints."""

from __future__ import annotations

from rest_framework import serializers

from .domain import ReviewTarget


class ReviewsOpenSerializer(serializers.Serializer):
    renter_can_review_owner = serializers.BooleanField(read_only=True)
    renter_can_review_item = serializers.BooleanField(read_only=True)
    owner_can_review_renter = serializers.BooleanField(read_only=True)


class ReservationSerializer(serializers.Serializer):
    """Read-only view of a ``reservations.domain.Reservation`` value."""

    id = serializers.CharField(read_only=True)
    item_id = serializers.CharField(read_only=True)
    item_owner_uid = serializers.CharField(read_only=True)
    renter_uid = serializers.CharField(read_only=True)
    start_date = serializers.DateField(read_only=True)
    end_date = serializers.DateField(read_only=True)
    days = serializers.IntegerField(read_only=True)
    total = serializers.IntegerField(read_only=True)
    is_free = serializers.BooleanField(read_only=True)
    min_rental_days = serializers.IntegerField(read_only=True)
    status = serializers.SerializerMethodField()
    created_at = serializers.DateTimeField(read_only=True)
    accepted_at = serializers.DateTimeField(read_only=True)
    rejected_at = serializers.DateTimeField(read_only=True)
    paid_at = serializers.DateTimeField(read_only=True)
    picked_up_at = serializers.DateTimeField(read_only=True)
    returned_at = serializers.DateTimeField(read_only=True)
    paid_out_at = serializers.DateTimeField(read_only=True)
    canceled_at = serializers.DateTimeField(read_only=True)
    reject_reason = serializers.CharField(read_only=True)
    canceled_by = serializers.CharField(read_only=True)
    reviews_open = ReviewsOpenSerializer(read_only=True)

    def get_status(self, obj) -> str:
        return obj.status.value


class RejectSerializer(serializers.Serializer):
    # Longer reasons are truncated by the state machine.
    reason = serializers.CharField(required=False, allow_blank=True, default="", trim_whitespace=True)


class ReviewSerializer(serializers.Serializer):
    target = serializers.ChoiceField(choices=[target.value for target in ReviewTarget])
