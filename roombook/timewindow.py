"""Booking policy and validation of proposed reservation windows.

Instants enter the core either timezone-aware (converted to UTC) or naive
(already UTC) and are stored naive UTC. Business rules such as the
operating hours and the "same day" check are evaluated on the wall clock
of the policy's timezone.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo
from typing import List, Optional, Tuple

from dateutil import tz
from dateutil.relativedelta import relativedelta

from .config import Settings, get_settings
from .errors import BookingValidationError, ValidationReason


@dataclass(frozen=True)
class BookingPolicy:
    day_start: time = time(8, 30)
    day_end: time = time(17, 30)
    slot_minutes: int = 30
    horizon_months: int = 2
    timezone: str = "Asia/Taipei"

    def __post_init__(self) -> None:
        if self.slot_minutes <= 0:
            raise ValueError("slot_minutes must be positive")
        if self.day_end <= self.day_start:
            raise ValueError("day_end must be after day_start")
        if _minutes(self.day_end) - _minutes(self.day_start) < self.slot_minutes:
            raise ValueError("operating day is shorter than one slot")
        if (_minutes(self.day_end) - _minutes(self.day_start)) % self.slot_minutes:
            raise ValueError("operating day must divide into whole slots")
        if tz.gettz(self.timezone) is None:
            raise ValueError(f"unknown timezone {self.timezone!r}")

    @property
    def slot(self) -> timedelta:
        return timedelta(minutes=self.slot_minutes)

    @property
    def zone(self) -> tzinfo:
        return tz.gettz(self.timezone)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "BookingPolicy":
        settings = settings or get_settings()
        return cls(
            day_start=time.fromisoformat(settings.booking_day_start),
            day_end=time.fromisoformat(settings.booking_day_end),
            slot_minutes=settings.booking_slot_minutes,
            horizon_months=settings.booking_horizon_months,
            timezone=settings.booking_timezone,
        )


@dataclass(frozen=True)
class TimeWindow:
    """Half-open interval [start, end) in naive UTC."""

    start: datetime
    end: datetime

    @property
    def duration(self) -> timedelta:
        return self.end - self.start


def _minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def to_utc_naive(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(tz.UTC).replace(tzinfo=None)


def to_local(value: datetime, policy: BookingPolicy) -> datetime:
    return to_utc_naive(value).replace(tzinfo=tz.UTC).astimezone(policy.zone)


def local_instant(day: date, at: time, policy: BookingPolicy) -> datetime:
    """UTC instant of a wall-clock time on a local date."""

    return to_utc_naive(datetime.combine(day, at, tzinfo=policy.zone))


def local_today(policy: BookingPolicy) -> date:
    return datetime.now(policy.zone).date()


def local_day_bounds(day: date, policy: BookingPolicy) -> TimeWindow:
    """Operating hours of ``day`` as a UTC window."""

    return TimeWindow(local_instant(day, policy.day_start, policy), local_instant(day, policy.day_end, policy))


def calendar_day_bounds(day: date, policy: BookingPolicy) -> TimeWindow:
    """Local midnight to the following midnight as a UTC window."""

    return TimeWindow(
        local_instant(day, time.min, policy),
        local_instant(day + timedelta(days=1), time.min, policy),
    )


def slot_boundaries(policy: BookingPolicy) -> Tuple[List[time], List[time]]:
    """Selectable start times and end times of the operating day.

    With the default policy starts run 08:30..17:00 and ends 09:00..17:30.
    """

    first, last = _minutes(policy.day_start), _minutes(policy.day_end)
    steps = range(first, last, policy.slot_minutes)
    starts = [time(m // 60, m % 60) for m in steps]
    ends = [time((m + policy.slot_minutes) // 60, (m + policy.slot_minutes) % 60) for m in steps]
    return starts, ends


def slot_windows(day: date, policy: BookingPolicy) -> List[TimeWindow]:
    starts, ends = slot_boundaries(policy)
    return [
        TimeWindow(local_instant(day, start, policy), local_instant(day, end, policy))
        for start, end in zip(starts, ends)
    ]


def booking_horizon(policy: BookingPolicy, today: Optional[date] = None) -> Tuple[date, date]:
    """First and last local date on which a booking may start."""

    today = today or local_today(policy)
    return today, today + relativedelta(months=policy.horizon_months)


def validate_window(
    start: datetime,
    end: datetime,
    policy: Optional[BookingPolicy] = None,
    today: Optional[date] = None,
) -> TimeWindow:
    """Validate a proposed window and return it normalized to naive UTC.

    Raises BookingValidationError carrying the first rule that failed. The
    window is never clamped or shifted.
    """

    policy = policy or BookingPolicy.from_settings()
    window = TimeWindow(to_utc_naive(start), to_utc_naive(end))
    if window.end <= window.start:
        raise BookingValidationError(ValidationReason.INVALID_ORDER, "End time must be after start time")

    local_start, local_end = to_local(window.start, policy), to_local(window.end, policy)
    if local_start.date() != local_end.date():
        raise BookingValidationError(ValidationReason.CROSS_DAY, "Reservation must start and end on the same day")

    start_t, end_t = local_start.time(), local_end.time()
    # day_end is a valid end but never a valid start
    if not (policy.day_start <= start_t < policy.day_end and policy.day_start < end_t <= policy.day_end):
        raise BookingValidationError(
            ValidationReason.OUT_OF_BOUNDS,
            f"Reservation must lie within {policy.day_start:%H:%M}-{policy.day_end:%H:%M}",
        )

    offset = datetime.combine(local_start.date(), start_t) - datetime.combine(local_start.date(), policy.day_start)
    if window.duration % policy.slot or offset % policy.slot:
        raise BookingValidationError(
            ValidationReason.MISALIGNED_DURATION,
            f"Reservation must cover whole {policy.slot_minutes}-minute slots",
        )

    first_day, last_day = booking_horizon(policy, today)
    if not first_day <= local_start.date() <= last_day:
        raise BookingValidationError(
            ValidationReason.OUT_OF_HORIZON,
            f"Reservation date must be between {first_day.isoformat()} and {last_day.isoformat()}",
        )
    return window
