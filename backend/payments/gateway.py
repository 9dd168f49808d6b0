"""Stripe-backed payment port for reservations."""

from __future__ import annotations

import logging

import stripe
from django.conf import settings

from reservations.ports import PaymentGateway

logger = logging.getLogger(__name__)
IDEMPOTENCY_VERSION = "v1"
RESERVATION_METADATA_KIND = "reservation"


class PaymentConfigurationError(Exception):
    """Stripe is not configured correctly in the environment."""


class PaymentGatewayError(Exception):
    """Permanent failure reported by the payment provider."""


class PaymentTransientError(PaymentGatewayError):
    """Temporary Stripe/API issue that should be retried."""


def _get_stripe_api_key() -> str:
    """Return the configured Stripe API key or raise if missing."""
    api_key = getattr(settings, "STRIPE_SECRET_KEY", "")
    if not api_key:
        raise PaymentConfigurationError("Stripe secret key not configured.")
    return api_key


def _handle_stripe_error(exc: stripe.error.StripeError) -> None:
    """Map Stripe SDK errors onto internal exception types."""
    if isinstance(
        exc,
        (
            stripe.error.RateLimitError,
            stripe.error.APIConnectionError,
            stripe.error.APIError,
        ),
    ):
        raise PaymentTransientError("Temporary Stripe error, please retry.") from exc
    if isinstance(exc, (stripe.error.AuthenticationError, stripe.error.PermissionError)):
        raise PaymentConfigurationError("Stripe credentials are invalid or unauthorized.") from exc
    if isinstance(exc, stripe.error.CardError):
        raise PaymentGatewayError(exc.user_message or "Your card was declined.") from exc
    raise PaymentGatewayError(exc.user_message or "Stripe payment failure.") from exc


def _checkout_urls(reservation_id: str) -> tuple[str, str]:
    success_base = getattr(settings, "PAYMENT_SUCCESS_URL", "") or ""
    cancel_base = getattr(settings, "PAYMENT_CANCEL_URL", "") or ""
    if not success_base or not cancel_base:
        raise PaymentConfigurationError("Payment success/cancel URLs are not configured.")
    separator = "&" if "?" in success_base else "?"
    success_url = f"{success_base}{separator}reservation={reservation_id}"
    separator = "&" if "?" in cancel_base else "?"
    cancel_url = f"{cancel_base}{separator}reservation={reservation_id}"
    return success_url, cancel_url


def _session_field(session, field: str) -> str | None:
    value = getattr(session, field, None)
    if not value and hasattr(session, "get"):
        value = session.get(field)
    return value


class StripePaymentGateway(PaymentGateway):
    """Checkout Sessions for payments and Refunds against the session's PaymentIntent."""

    def initiate_payment(self, reservation_id: str, amount: int) -> str:
        if amount <= 0:
            raise PaymentGatewayError("Reservation total must be greater than zero.")
        stripe.api_key = _get_stripe_api_key()
        success_url, cancel_url = _checkout_urls(reservation_id)
        metadata = {"kind": RESERVATION_METADATA_KIND, "reservation_id": reservation_id}

        try:
            session = stripe.checkout.Session.create(
                mode="payment",
                success_url=success_url,
                cancel_url=cancel_url,
                client_reference_id=f"reservation:{reservation_id}",
                metadata=metadata,
                payment_intent_data={"metadata": metadata},
                line_items=[
                    {
                        "price_data": {
                            "currency": getattr(settings, "STRIPE_CURRENCY", "brl"),
                            "unit_amount": amount,
                            "product_data": {"name": f"Reservation {reservation_id}"},
                        },
                        "quantity": 1,
                    }
                ],
                idempotency_key=f"reservation:{reservation_id}:{IDEMPOTENCY_VERSION}:checkout:{amount}",
            )
        except stripe.error.StripeError as exc:
            _handle_stripe_error(exc)

        url = _session_field(session, "url")
        if not url:
            raise PaymentConfigurationError("Stripe did not return a checkout session URL.")
        logger.info(
            "payments: checkout session %s created for reservation %s",
            _session_field(session, "id"),
            reservation_id,
        )
        return url

    def initiate_refund(self, reservation_id: str, payment_reference: str, amount: int) -> str:
        if not payment_reference:
            raise PaymentGatewayError(
                f"Reservation {reservation_id} has no payment reference to refund."
            )
        stripe.api_key = _get_stripe_api_key()
        try:
            refund = stripe.Refund.create(
                payment_intent=payment_reference,
                amount=amount,
                metadata={"kind": RESERVATION_METADATA_KIND, "reservation_id": reservation_id},
                idempotency_key=f"reservation:{reservation_id}:{IDEMPOTENCY_VERSION}:refund:{amount}",
            )
        except stripe.error.InvalidRequestError as exc:
            if getattr(exc, "code", "") == "resource_missing":
                logger.info(
                    "Stripe PaymentIntent %s missing for reservation %s; assuming refunded.",
                    payment_reference,
                    reservation_id,
                )
                return ""
            _handle_stripe_error(exc)
        except stripe.error.StripeError as exc:
            _handle_stripe_error(exc)
        return refund.id
