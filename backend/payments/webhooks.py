"""Stripe webhook endpoint feeding reservation reconciliation."""

from __future__ import annotations

import logging
from typing import Any

import stripe
from django.conf import settings
from rest_framework import status
from rest_framework.decorators import api_view, authentication_classes, permission_classes
from rest_framework.response import Response

from reservations import wiring
from reservations.reconciliation import GatewayEvent, GatewayEventType

from .gateway import RESERVATION_METADATA_KIND

logger = logging.getLogger(__name__)

# Stripe event type -> reservation gateway event type.
STRIPE_EVENT_TYPES = {
    "checkout.session.completed": GatewayEventType.PAID,
    "charge.refunded": GatewayEventType.REFUNDED,
    "transfer.created": GatewayEventType.PAID_OUT,
}


def _object_value(data_object: Any, field: str, default: Any = None) -> Any:
    if isinstance(data_object, dict):
        return data_object.get(field, default)
    return getattr(data_object, field, default)


def translate_event(event: Any) -> GatewayEvent | None:
    """
    Build a ``GatewayEvent`` from a verified Stripe event.

    Returns None for events that do not concern a reservation.
    """
    event_type = STRIPE_EVENT_TYPES.get(event.get("type"))
    if event_type is None:
        return None
    data_object = event.get("data", {}).get("object", {}) or {}
    metadata = _object_value(data_object, "metadata") or {}
    if metadata.get("kind") != RESERVATION_METADATA_KIND:
        return None
    reservation_id = metadata.get("reservation_id")
    if not reservation_id:
        return None

    amount = None
    payment_reference = _object_value(data_object, "payment_intent") or ""
    if event_type == GatewayEventType.PAID:
        if _object_value(data_object, "payment_status") not in (None, "paid"):
            return None
        amount = _object_value(data_object, "amount_total")
    elif event_type == GatewayEventType.REFUNDED:
        if not _object_value(data_object, "refunded", False):
            # Partial refunds are not part of the reservation lifecycle.
            return None
        amount = _object_value(data_object, "amount_refunded")
    else:
        amount = _object_value(data_object, "amount")

    return GatewayEvent(
        type=event_type.value,
        reservation_id=str(reservation_id),
        gateway_event_id=event.get("id", ""),
        amount=amount,
        payment_reference=payment_reference,
    )


@api_view(["POST"])
@authentication_classes([])
@permission_classes([])
def stripe_webhook(request):
    """Verify a Stripe callback and hand reservation events to the engine."""
    payload = request.body
    sig_header = request.META.get("HTTP_STRIPE_SIGNATURE", "")
    endpoint_secret = getattr(settings, "STRIPE_WEBHOOK_SECRET", "")

    try:
        event = stripe.Webhook.construct_event(
            payload=payload,
            sig_header=sig_header,
            secret=endpoint_secret,
        )
    except ValueError:
        return Response(status=status.HTTP_400_BAD_REQUEST)
    except stripe.error.SignatureVerificationError:
        return Response(status=status.HTTP_400_BAD_REQUEST)

    gateway_event = translate_event(event)
    if gateway_event is None or not gateway_event.gateway_event_id:
        logger.info("stripe_webhook: ignoring %s event %s", event.get("type"), event.get("id"))
        return Response(status=status.HTTP_200_OK)

    try:
        result = wiring.get_engine().handle_gateway_event(gateway_event)
    except Exception:
        logger.exception(
            "stripe_webhook: failed to apply %s for reservation %s",
            gateway_event.gateway_event_id,
            gateway_event.reservation_id,
        )
        raise
    outcome = "ignored"
    if result is not None:
        outcome = "applied" if result.ok else result.error.kind
    return Response({"status": outcome}, status=status.HTTP_200_OK)
