"""Default engine assembly for the Django project."""

from __future__ import annotations

from datetime import timedelta
from functools import lru_cache

from django.conf import settings

from core.clock import SystemClock
from payments.gateway import StripePaymentGateway

from .dispatch import CeleryIntentDispatcher
from .service import ReservationEngine
from .store import DjangoReservationStore


@lru_cache(maxsize=1)
def get_engine() -> ReservationEngine:
    """Return the process-wide engine built from settings."""
    return ReservationEngine(
        DjangoReservationStore(),
        SystemClock(),
        gateway=StripePaymentGateway(),
        dispatcher=CeleryIntentDispatcher(),
        refund_window=timedelta(days=getattr(settings, "RESERVATION_REFUND_WINDOW_DAYS", 7)),
        max_retries=getattr(settings, "RESERVATION_COMMAND_MAX_RETRIES", 3),
    )


def reset_engine() -> None:
    get_engine.cache_clear()
