"""API viewset exposing reservation commands and queries."""

from __future__ import annotations

from rest_framework import permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from . import wiring
from .domain import Reservation
from .results import Result, RuleViolation, ViolationCode
from .serializers import RejectSerializer, ReservationSerializer, ReviewSerializer

_ERROR_STATUS = {
    "rule_violation": status.HTTP_400_BAD_REQUEST,
    "conflict": status.HTTP_409_CONFLICT,
    "storage_conflict": status.HTTP_409_CONFLICT,
    "not_found": status.HTTP_404_NOT_FOUND,
    "already_applied": status.HTTP_200_OK,
}

_FORBIDDEN_CODES = frozenset(
    {ViolationCode.NOT_PARTICIPANT, ViolationCode.NOT_OWNER, ViolationCode.NOT_RENTER}
)


def _actor_uid(request) -> str:
    return str(request.user.pk)


def _error_response(error) -> Response:
    if isinstance(error, RuleViolation) and error.code in _FORBIDDEN_CODES:
        http_status = status.HTTP_403_FORBIDDEN
    else:
        http_status = _ERROR_STATUS.get(error.kind, status.HTTP_400_BAD_REQUEST)
    payload = {"detail": error.message, "error": error.kind}
    if isinstance(error, RuleViolation):
        payload["code"] = error.code.value
    return Response(payload, status=http_status)


class ReservationViewSet(viewsets.ViewSet):
    """State transitions for reservations, driven by the authenticated participant."""

    permission_classes = (permissions.IsAuthenticated,)

    @property
    def engine(self):
        return wiring.get_engine()

    def _serialize(self, reservation: Reservation, actor_uid: str) -> dict:
        data = dict(ReservationSerializer(reservation).data)
        data["allowed_actions"] = self.engine.allowed_actions(reservation.id, actor_uid)
        return data

    def _load_for_participant(self, request, pk: str):
        """Return (reservation, None) or (None, error response)."""
        reservation = self.engine.get_reservation(pk)
        if reservation is None:
            return None, Response(
                {"detail": "Reservation not found."}, status=status.HTTP_404_NOT_FOUND
            )
        if reservation.role_of(_actor_uid(request)) is None:
            return None, Response(
                {"detail": "Only the item owner or renter can access this reservation."},
                status=status.HTTP_403_FORBIDDEN,
            )
        return reservation, None

    def _respond(self, request, result: Result) -> Response:
        if not result.ok:
            return _error_response(result.error)
        if result.value is None:
            return Response(status=status.HTTP_204_NO_CONTENT)
        return Response(self._serialize(result.value, _actor_uid(request)))

    def list(self, request):
        """Return reservations where the user is owner or renter."""
        reservations = self.engine.list_reservations(participant_uid=_actor_uid(request))
        return Response([ReservationSerializer(item).data for item in reservations])

    def retrieve(self, request, pk=None):
        reservation, denied = self._load_for_participant(request, pk)
        if denied:
            return denied
        return Response(self._serialize(reservation, _actor_uid(request)))

    @action(detail=True, methods=["post"], url_path="accept")
    def accept(self, request, pk=None):
        """Accept a pending request (owner-only)."""
        _, denied = self._load_for_participant(request, pk)
        if denied:
            return denied
        return self._respond(request, self.engine.accept(pk, _actor_uid(request)))

    @action(detail=True, methods=["post"], url_path="reject")
    def reject(self, request, pk=None):
        """Reject a pending request with an optional reason (owner-only)."""
        _, denied = self._load_for_participant(request, pk)
        if denied:
            return denied
        serializer = RejectSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = self.engine.reject(pk, _actor_uid(request), serializer.validated_data["reason"])
        return self._respond(request, result)

    @action(detail=True, methods=["post"], url_path="delete")
    def remove(self, request, pk=None):
        """Remove the reservation record; owners and renters follow different rules."""
        reservation, denied = self._load_for_participant(request, pk)
        if denied:
            return denied
        actor_uid = _actor_uid(request)
        if actor_uid == reservation.item_owner_uid:
            result = self.engine.delete_by_owner(pk, actor_uid)
        else:
            result = self.engine.delete_by_renter(pk, actor_uid)
        return self._respond(request, result)

    @action(detail=True, methods=["post"], url_path="pay")
    def pay(self, request, pk=None):
        """Start a checkout and return the redirect URL (renter-only)."""
        _, denied = self._load_for_participant(request, pk)
        if denied:
            return denied
        result = self.engine.start_payment(pk, _actor_uid(request))
        if not result.ok:
            return _error_response(result.error)
        return Response({"checkout_url": result.value}, status=status.HTTP_200_OK)

    @action(detail=True, methods=["post"], url_path="pickup")
    def pickup(self, request, pk=None):
        _, denied = self._load_for_participant(request, pk)
        if denied:
            return denied
        return self._respond(request, self.engine.mark_pickup(pk, _actor_uid(request)))

    @action(detail=True, methods=["post"], url_path="cancel-refund")
    def cancel_with_refund(self, request, pk=None):
        """Cancel a paid reservation inside the refund window (renter-only)."""
        _, denied = self._load_for_participant(request, pk)
        if denied:
            return denied
        return self._respond(request, self.engine.cancel_with_refund(pk, _actor_uid(request)))

    @action(detail=True, methods=["post"], url_path="cancel")
    def cancel_accepted(self, request, pk=None):
        """Cancel an accepted, unpaid reservation (owner or renter)."""
        _, denied = self._load_for_participant(request, pk)
        if denied:
            return denied
        return self._respond(request, self.engine.cancel_accepted(pk, _actor_uid(request)))

    @action(detail=True, methods=["post"], url_path="confirm-return")
    def confirm_return(self, request, pk=None):
        _, denied = self._load_for_participant(request, pk)
        if denied:
            return denied
        return self._respond(request, self.engine.confirm_return(pk, _actor_uid(request)))

    @action(detail=True, methods=["post"], url_path="review")
    def review(self, request, pk=None):
        """Close one review slot once the participant has submitted it elsewhere."""
        _, denied = self._load_for_participant(request, pk)
        if denied:
            return denied
        serializer = ReviewSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = self.engine.submit_review(
            pk, _actor_uid(request), serializer.validated_data["target"]
        )
        return self._respond(request, result)

    @action(
        detail=False,
        methods=["get"],
        url_path=r"items/(?P<item_id>[^/.]+)/blocked-days",
    )
    def blocked_days(self, request, item_id=None):
        """Return the item's blocked calendar days as ``yyyy-mm-dd`` keys."""
        days = self.engine.list_blocked_days(item_id)
        return Response(
            {"item_id": item_id, "blocked_days": [day.isoformat() for day in days]},
            status=status.HTTP_200_OK,
        )
