"""Error kinds raised by the scheduling core.

Every error carries a ``kind`` so callers (request handlers, tests) can
tell validation failures, conflicts, missing records and store failures
apart without parsing messages.
"""
from __future__ import annotations

from enum import Enum
from typing import Optional


class ValidationReason(str, Enum):
    INVALID_ORDER = "invalid-order"
    MISALIGNED_DURATION = "misaligned-duration"
    OUT_OF_BOUNDS = "out-of-bounds"
    CROSS_DAY = "cross-day"
    OUT_OF_HORIZON = "out-of-horizon"
    INVALID_HEADCOUNT = "invalid-headcount"


class ReservationError(Exception):
    kind = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class BookingValidationError(ReservationError):
    kind = "validation"

    def __init__(self, reason: ValidationReason, message: Optional[str] = None) -> None:
        super().__init__(message or reason.value.replace("-", " "))
        self.reason = reason


class ConflictError(ReservationError):
    kind = "conflict"

    def __init__(self, message: str = "Room already booked for that slot", conflicting_id: Optional[int] = None) -> None:
        super().__init__(message)
        self.conflicting_id = conflicting_id


class NotFoundError(ReservationError):
    kind = "not_found"


class StoreError(ReservationError):
    kind = "store"
