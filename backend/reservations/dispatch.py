"""Hand post-commit side effects to Celery."""

from __future__ import annotations

import logging
from typing import Sequence

from django.db import transaction

from .domain import Intent, IssueRefund
from .ports import IntentDispatcher
from .tasks import issue_refund

logger = logging.getLogger(__name__)


class CeleryIntentDispatcher(IntentDispatcher):
    """
    Queue refund intents once the surrounding transaction commits.

    Calendar intents are already applied by the coordinator and review
    intents are carried on the reservation itself, so only refunds leave the
    process.
    """

    def dispatch(self, intents: Sequence[Intent]) -> None:
        for intent in intents:
            if not isinstance(intent, IssueRefund):
                continue
            transaction.on_commit(
                lambda intent=intent: issue_refund.delay(
                    intent.reservation_id, intent.payment_reference, intent.amount
                )
            )
            logger.info(
                "reservations: refund queued for %s",
                intent.reservation_id,
                extra={"reservation_id": intent.reservation_id, "amount": intent.amount},
            )
