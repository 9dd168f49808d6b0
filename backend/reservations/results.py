"""Explicit outcomes returned by the reservation engine."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Generic, TypeVar, Union

T = TypeVar("T")


class ViolationCode(str, Enum):
    FROM_STATE_MISMATCH = "from_state_mismatch"
    NOT_OWNER = "not_owner"
    NOT_RENTER = "not_renter"
    NOT_PARTICIPANT = "not_participant"
    ALREADY_PAID = "already_paid"
    ALREADY_PICKED_UP = "already_picked_up"
    ALREADY_RETURNED = "already_returned"
    REFUND_WINDOW_EXPIRED = "refund_window_expired"
    BELOW_MIN_RENTAL_DAYS = "below_min_rental_days"
    INVALID_RANGE = "invalid_range"
    SELF_RENTAL = "self_rental"
    FREE_TOTAL_MISMATCH = "free_total_mismatch"
    AMOUNT_MISMATCH = "amount_mismatch"
    REVIEW_CLOSED = "review_closed"
    RANGE_NO_LONGER_FREE = "range_no_longer_free"
    REFUND_NOT_REQUESTED = "refund_not_requested"
    NOT_REFUNDABLE = "not_refundable"


@dataclass(frozen=True)
class RuleViolation:
    """A guard failed; the caller may pick a different action."""

    code: ViolationCode
    message: str

    kind = "rule_violation"


@dataclass(frozen=True)
class Conflict:
    """A range claim lost the race for ``day``."""

    day: date
    held_by: str

    kind = "conflict"

    @property
    def message(self) -> str:
        return f"{self.day.isoformat()} is already booked."


@dataclass(frozen=True)
class AlreadyApplied:
    """The gateway event was consumed before; replay is a no-op."""

    gateway_event_id: str

    kind = "already_applied"

    @property
    def message(self) -> str:
        return f"Gateway event {self.gateway_event_id} was already applied."


@dataclass(frozen=True)
class NotFound:
    reservation_id: str

    kind = "not_found"

    @property
    def message(self) -> str:
        return f"Reservation {self.reservation_id} not found."


@dataclass(frozen=True)
class StorageConflict:
    """Optimistic writes kept failing; reload and retry the whole command."""

    reservation_id: str
    attempts: int

    kind = "storage_conflict"

    @property
    def message(self) -> str:
        return (
            f"Reservation {self.reservation_id} changed concurrently "
            f"({self.attempts} attempts)."
        )


EngineError = Union[RuleViolation, Conflict, AlreadyApplied, NotFound, StorageConflict]


@dataclass(frozen=True)
class Result(Generic[T]):
    """
    Either a value or an error, never both.

    ``AlreadyApplied`` is carried as an error but reports ``succeeded`` so
    webhook callers can acknowledge duplicates without special-casing.
    """

    value: T | None = None
    error: EngineError | None = None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: EngineError) -> "Result[T]":
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def succeeded(self) -> bool:
        return self.error is None or isinstance(self.error, AlreadyApplied)

    def violation(self) -> RuleViolation | None:
        return self.error if isinstance(self.error, RuleViolation) else None


def violation(code: ViolationCode, message: str) -> RuleViolation:
    return RuleViolation(code=code, message=message)
