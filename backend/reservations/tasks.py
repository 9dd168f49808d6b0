"""Celery tasks for reservations."""

from __future__ import annotations

import logging

from celery import shared_task

from payments.gateway import PaymentGatewayError, PaymentTransientError, StripePaymentGateway

logger = logging.getLogger(__name__)


@shared_task(
    bind=True,
    autoretry_for=(PaymentTransientError,),
    retry_backoff=True,
    max_retries=5,
    name="reservations.issue_refund",
)
def issue_refund(self, reservation_id: str, payment_reference: str, amount: int) -> str:
    """
    Refund a canceled reservation through Stripe.

    Stripe idempotency keys make redelivery of this task safe.
    """
    try:
        refund_id = StripePaymentGateway().initiate_refund(reservation_id, payment_reference, amount)
    except PaymentTransientError:
        raise
    except PaymentGatewayError:
        logger.error(
            "reservations: refund for %s failed permanently",
            reservation_id,
            exc_info=True,
            extra={"reservation_id": reservation_id, "amount": amount},
        )
        raise
    logger.info(
        "reservations: refund %s issued",
        refund_id or "(already refunded)",
        extra={"reservation_id": reservation_id, "amount": amount},
    )
    return refund_id
