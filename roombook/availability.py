"""Room availability classification and per-day occupancy grids."""
from __future__ import annotations

import logging
import re
import unicodedata
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session, joinedload

from .errors import BookingValidationError, ValidationReason
from .models import ACTIVE_STATUSES, Reservation, ReservationStatus, Room
from .overlap import windows_overlap
from .timewindow import BookingPolicy, TimeWindow, calendar_day_bounds, slot_windows, to_local

logger = logging.getLogger(__name__)

_BASEMENT_FLOOR = re.compile(r"^B(\d+)F?$")
_GROUND_FLOOR = re.compile(r"^(\d+)F?$")


class Availability(str, Enum):
    AVAILABLE = "AVAILABLE"
    PARTIAL = "PARTIAL"
    UNAVAILABLE = "UNAVAILABLE"


@dataclass
class RoomAvailability:
    room: Room
    availability: Availability
    booked_by: Optional[str] = None
    booked_by_department: Optional[str] = None
    conflicting_reservation_id: Optional[int] = None


@dataclass
class Slot:
    start: datetime
    end: datetime
    busy: bool = False
    reservation_id: Optional[int] = None
    status: Optional[ReservationStatus] = None
    label: Optional[str] = None


@dataclass
class RoomTimeline:
    room: Room
    slots: List[Slot] = field(default_factory=list)

    @property
    def free_count(self) -> int:
        return sum(1 for slot in self.slots if not slot.busy)


def floor_sort_key(floor: Optional[str]) -> Tuple[int, int]:
    """Basement floors (B1, B2F...) first, then 1F, 2F..., unknown labels last."""

    if not floor:
        return (2, 0)
    label = floor.strip().upper()
    match = _BASEMENT_FLOOR.match(label)
    if match:
        return (0, int(match.group(1)))
    match = _GROUND_FLOOR.match(label)
    if match:
        return (1, int(match.group(1)))
    return (2, 0)


def room_sort_key(room: Room) -> Tuple[Tuple[int, int], str, str]:
    name = room.name or ""
    return floor_sort_key(room.floor), unicodedata.normalize("NFKC", name).casefold(), name


def sort_rooms(rooms: Iterable[Room]) -> List[Room]:
    return sorted(rooms, key=room_sort_key)


def active_rooms(db: Session, headcount: Optional[int] = None) -> List[Room]:
    query = db.query(Room).filter(Room.is_active.is_(True))
    if headcount:
        query = query.filter(Room.capacity >= headcount)
    return sort_rooms(query.all())


def day_reservations(
    db: Session, room_ids: Sequence[int], day: date, policy: BookingPolicy
) -> Dict[int, List[Reservation]]:
    """Active reservations touching the local calendar ``day``, grouped by room."""

    grouped: Dict[int, List[Reservation]] = {room_id: [] for room_id in room_ids}
    if not grouped:
        return grouped
    bounds = calendar_day_bounds(day, policy)
    rows = (
        db.query(Reservation)
        .options(joinedload(Reservation.organizer))
        .filter(
            Reservation.room_id.in_(list(grouped)),
            Reservation.status.in_(ACTIVE_STATUSES),
            Reservation.start_at < bounds.end,
            Reservation.end_at > bounds.start,
        )
        .order_by(Reservation.start_at)
        .all()
    )
    for reservation in rows:
        grouped[reservation.room_id].append(reservation)
    return grouped


def first_overlapping(window: TimeWindow, reservations: Iterable[Reservation]) -> Optional[Reservation]:
    for reservation in reservations:
        if reservation.status in ACTIVE_STATUSES and windows_overlap(
            window.start, window.end, reservation.start_at, reservation.end_at
        ):
            return reservation
    return None


def classify(window: TimeWindow, reservations: Sequence[Reservation]) -> Availability:
    """Classify a room from its reservations on the day of ``window``."""

    if first_overlapping(window, reservations) is not None:
        return Availability.UNAVAILABLE
    if any(reservation.status in ACTIVE_STATUSES for reservation in reservations):
        return Availability.PARTIAL
    return Availability.AVAILABLE


def slot_label(reservation: Reservation) -> str:
    organizer = reservation.organizer
    if organizer is not None:
        if organizer.department:
            return f"{organizer.name} ({organizer.department})"
        return organizer.name
    return reservation.title or reservation.status.value


def search_rooms(
    db: Session,
    window: TimeWindow,
    policy: Optional[BookingPolicy] = None,
    headcount: Optional[int] = None,
    only_available: bool = False,
    rooms: Optional[Sequence[Room]] = None,
) -> List[RoomAvailability]:
    """Classify candidate rooms for ``window`` on its local day.

    Candidates default to every active room; with ``headcount`` rooms that
    are too small are left out. ``only_available`` drops UNAVAILABLE rooms.
    """

    policy = policy or BookingPolicy.from_settings()
    if window.end <= window.start:
        raise BookingValidationError(ValidationReason.INVALID_ORDER, "End time must be after start time")
    if rooms is None:
        candidates = active_rooms(db, headcount)
    else:
        candidates = sort_rooms(room for room in rooms if not headcount or room.capacity >= headcount)

    day = to_local(window.start, policy).date()
    by_room = day_reservations(db, [room.id for room in candidates], day, policy)

    results: List[RoomAvailability] = []
    for room in candidates:
        reservations = by_room.get(room.id, [])
        availability = classify(window, reservations)
        if only_available and availability is Availability.UNAVAILABLE:
            continue
        entry = RoomAvailability(room=room, availability=availability)
        blocker = first_overlapping(window, reservations)
        if blocker is not None:
            entry.conflicting_reservation_id = blocker.id
            if blocker.organizer is not None:
                entry.booked_by = blocker.organizer.name
                entry.booked_by_department = blocker.organizer.department
        results.append(entry)
    logger.debug("Classified %d rooms for %s", len(results), day.isoformat())
    return results


def build_slot_grid(day: date, reservations: Sequence[Reservation], policy: BookingPolicy) -> List[Slot]:
    """Fixed-size cells over the operating hours of ``day``.

    Cells come from the same policy used to validate windows, so a window
    accepted by the validator always covers whole cells.
    """

    slots: List[Slot] = []
    for cell in slot_windows(day, policy):
        slot = Slot(start=cell.start, end=cell.end)
        blocker = first_overlapping(cell, reservations)
        if blocker is not None:
            slot.busy = True
            slot.reservation_id = blocker.id
            slot.status = blocker.status
            slot.label = slot_label(blocker)
        slots.append(slot)
    return slots


def day_timeline(
    db: Session,
    day: date,
    policy: Optional[BookingPolicy] = None,
    rooms: Optional[Sequence[Room]] = None,
) -> List[RoomTimeline]:
    policy = policy or BookingPolicy.from_settings()
    ordered = active_rooms(db) if rooms is None else sort_rooms(rooms)
    by_room = day_reservations(db, [room.id for room in ordered], day, policy)
    return [
        RoomTimeline(room=room, slots=build_slot_grid(day, by_room.get(room.id, []), policy))
        for room in ordered
    ]
