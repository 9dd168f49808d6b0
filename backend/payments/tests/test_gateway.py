"""Tests for the Stripe-backed payment gateway."""

from __future__ import annotations

from types import SimpleNamespace

import pytest
import stripe

from payments.gateway import (
    PaymentConfigurationError,
    PaymentGatewayError,
    PaymentTransientError,
    StripePaymentGateway,
)


@pytest.fixture(autouse=True)
def configure_stripe(settings):
    settings.STRIPE_SECRET_KEY = "sk_test_123"
    settings.STRIPE_CURRENCY = "brl"
    settings.PAYMENT_SUCCESS_URL = "https://app.example.test/reservations/paid"
    settings.PAYMENT_CANCEL_URL = "https://app.example.test/reservations/canceled?source=checkout"


def test_initiate_payment_creates_checkout_session(monkeypatch):
    captured = {}

    def fake_create(**kwargs):
        captured.update(kwargs)
        return SimpleNamespace(id="cs_test_1", url="https://checkout.stripe.test/cs_test_1")

    monkeypatch.setattr(stripe.checkout.Session, "create", staticmethod(fake_create))

    url = StripePaymentGateway().initiate_payment("r1", 25000)

    assert url == "https://checkout.stripe.test/cs_test_1"
    assert captured["metadata"] == {"kind": "reservation", "reservation_id": "r1"}
    assert captured["payment_intent_data"] == {"metadata": captured["metadata"]}
    assert captured["line_items"][0]["price_data"]["unit_amount"] == 25000
    assert captured["line_items"][0]["price_data"]["currency"] == "brl"
    assert captured["success_url"] == "https://app.example.test/reservations/paid?reservation=r1"
    assert captured["cancel_url"].endswith("?source=checkout&reservation=r1")
    assert captured["idempotency_key"] == "reservation:r1:v1:checkout:25000"


def test_initiate_payment_rejects_zero_amount():
    with pytest.raises(PaymentGatewayError):
        StripePaymentGateway().initiate_payment("r1", 0)


def test_missing_secret_key_is_configuration_error(settings):
    settings.STRIPE_SECRET_KEY = ""

    with pytest.raises(PaymentConfigurationError):
        StripePaymentGateway().initiate_payment("r1", 1000)


def test_connection_errors_are_transient(monkeypatch):
    def fake_create(**kwargs):
        raise stripe.error.APIConnectionError("network down")

    monkeypatch.setattr(stripe.checkout.Session, "create", staticmethod(fake_create))

    with pytest.raises(PaymentTransientError):
        StripePaymentGateway().initiate_payment("r1", 1000)


def test_session_without_url_is_configuration_error(monkeypatch):
    monkeypatch.setattr(
        stripe.checkout.Session,
        "create",
        staticmethod(lambda **kwargs: SimpleNamespace(id="cs_test_2", url=None)),
    )

    with pytest.raises(PaymentConfigurationError):
        StripePaymentGateway().initiate_payment("r1", 1000)


def test_initiate_refund_uses_payment_intent(monkeypatch):
    captured = {}

    def fake_create(**kwargs):
        captured.update(kwargs)
        return SimpleNamespace(id="re_test_1")

    monkeypatch.setattr(stripe.Refund, "create", staticmethod(fake_create))

    refund_id = StripePaymentGateway().initiate_refund("r1", "pi_123", 25000)

    assert refund_id == "re_test_1"
    assert captured["payment_intent"] == "pi_123"
    assert captured["amount"] == 25000
    assert captured["idempotency_key"] == "reservation:r1:v1:refund:25000"


def test_refund_without_reference_is_refused():
    with pytest.raises(PaymentGatewayError):
        StripePaymentGateway().initiate_refund("r1", "", 25000)


def test_refund_of_missing_intent_is_treated_as_done(monkeypatch):
    def fake_create(**kwargs):
        raise stripe.error.InvalidRequestError(
            "No such payment_intent", "payment_intent", code="resource_missing"
        )

    monkeypatch.setattr(stripe.Refund, "create", staticmethod(fake_create))

    assert StripePaymentGateway().initiate_refund("r1", "pi_gone", 25000) == ""


def test_other_invalid_requests_are_permanent(monkeypatch):
    def fake_create(**kwargs):
        raise stripe.error.InvalidRequestError(
            "Charge already refunded", "payment_intent", code="charge_already_refunded"
        )

    monkeypatch.setattr(stripe.Refund, "create", staticmethod(fake_create))

    with pytest.raises(PaymentGatewayError) as excinfo:
        StripePaymentGateway().initiate_refund("r1", "pi_123", 25000)

    assert not isinstance(excinfo.value, PaymentTransientError)
