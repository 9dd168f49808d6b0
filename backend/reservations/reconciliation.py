"""Apply asynchronous payment-provider events to reservations exactly once."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from .coordinator import BookingCoordinator
from .domain import MarkPaidOut, RecordRefund
from .results import AlreadyApplied, Conflict, Result, RuleViolation

logger = logging.getLogger(__name__)


class GatewayEventType(str, Enum):
    PAID = "paid"
    REFUNDED = "refunded"
    PAID_OUT = "paid_out"


@dataclass(frozen=True)
class GatewayEvent:
    type: str
    reservation_id: str
    gateway_event_id: str
    amount: int | None = None
    payment_reference: str = ""


class PaymentReconciler:
    """
    Routes gateway events to the coordinator.

    Delivery is at-least-once: the gateway event id ledger stored on each
    reservation turns replays into ``AlreadyApplied``, which callers treat
    as success.
    """

    def __init__(self, coordinator: BookingCoordinator):
        self.coordinator = coordinator

    def handle(self, event: GatewayEvent) -> Result | None:
        try:
            event_type = GatewayEventType(event.type)
        except ValueError:
            logger.info(
                "reconciliation: ignoring %s event %s", event.type, event.gateway_event_id
            )
            return None

        if event_type == GatewayEventType.PAID:
            result = self.coordinator.confirm_payment(
                event.reservation_id,
                event.gateway_event_id,
                amount=event.amount,
                payment_reference=event.payment_reference,
            )
        elif event_type == GatewayEventType.REFUNDED:
            result = self.coordinator.release(
                event.reservation_id, RecordRefund(), gateway_event_id=event.gateway_event_id
            )
        else:
            result = self.coordinator.execute(
                event.reservation_id, MarkPaidOut(), gateway_event_id=event.gateway_event_id
            )

        self._log_outcome(event, result)
        return result

    def _log_outcome(self, event: GatewayEvent, result: Result) -> None:
        extra = {
            "reservation_id": event.reservation_id,
            "gateway_event_id": event.gateway_event_id,
            "event_type": event.type,
        }
        if result.ok:
            logger.info(
                "reconciliation: %s event %s applied", event.type, event.gateway_event_id, extra=extra
            )
        elif isinstance(result.error, AlreadyApplied):
            logger.info(
                "reconciliation: duplicate %s event %s", event.type, event.gateway_event_id, extra=extra
            )
        elif isinstance(result.error, (Conflict, RuleViolation)):
            logger.warning(
                "reconciliation: %s event %s not applied: %s",
                event.type,
                event.gateway_event_id,
                result.error.message,
                extra=extra,
            )
        else:
            logger.warning(
                "reconciliation: %s event %s failed: %s",
                event.type,
                event.gateway_event_id,
                result.error.message,
                extra=extra,
            )
