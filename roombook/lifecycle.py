"""Creation and cancellation of reservations.

``create_reservation`` re-checks overlap and inserts inside one
transaction. The room row is locked first (``SELECT ... FOR UPDATE`` on
PostgreSQL; SQLite transactions start with ``BEGIN IMMEDIATE``) so two
concurrent requests for the same room are serialized, and the database
overlap guard rejects anything that still slips through.
"""
from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Iterable, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import (
    BookingValidationError,
    ConflictError,
    NotFoundError,
    ReservationError,
    StoreError,
    ValidationReason,
)
from .models import (
    ACTIVE_STATUSES,
    OVERLAP_VIOLATION_MESSAGE,
    Reservation,
    ReservationAttendee,
    ReservationStatus,
    Room,
    User,
    utcnow,
)
from .overlap import find_conflict
from .timewindow import BookingPolicy, to_utc_naive, validate_window

logger = logging.getLogger(__name__)

_EXCLUSION_VIOLATION = "23P01"


def _is_overlap_violation(exc: IntegrityError) -> bool:
    orig = exc.orig
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    return code == _EXCLUSION_VIOLATION or OVERLAP_VIOLATION_MESSAGE in str(orig)


def _unknown_user_ids(db: Session, user_ids: Iterable[int]) -> List[int]:
    wanted = set(user_ids)
    if not wanted:
        return []
    found = {row[0] for row in db.query(User.id).filter(User.id.in_(wanted))}
    return sorted(wanted - found)


def _insert_active(
    db: Session,
    reservation: Reservation,
    attendee_ids: Iterable[int] = (),
    require_active_room: bool = True,
) -> Reservation:
    attendee_ids = list(attendee_ids)
    try:
        room = db.query(Room).filter(Room.id == reservation.room_id).with_for_update().one_or_none()
        if room is None or (require_active_room and not room.is_active):
            raise NotFoundError("Room not found or inactive")
        if reservation.organizer_id is not None and _unknown_user_ids(db, [reservation.organizer_id]):
            raise NotFoundError("Organizer not found")
        unknown = _unknown_user_ids(db, attendee_ids)
        if unknown:
            raise NotFoundError(f"Attendee not found: {', '.join(map(str, unknown))}")
        conflict = find_conflict(db, reservation.room_id, reservation.start_at, reservation.end_at)
        if conflict is not None:
            raise ConflictError(conflicting_id=conflict.id)
        db.add(reservation)
        db.flush()
        db.add_all(ReservationAttendee(reservation_id=reservation.id, user_id=user_id) for user_id in attendee_ids)
        db.commit()
    except ReservationError:
        db.rollback()
        raise
    except IntegrityError as exc:
        db.rollback()
        if _is_overlap_violation(exc):
            raise ConflictError() from exc
        logger.error("Integrity failure storing reservation for room %s: %s", reservation.room_id, exc.orig)
        raise StoreError("Could not store reservation") from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Store failure creating reservation for room %s: %s", reservation.room_id, exc)
        raise StoreError("Could not store reservation") from exc
    db.refresh(reservation)
    return reservation


def create_reservation(
    db: Session,
    room_id: int,
    organizer_id: int,
    start: datetime,
    end: datetime,
    title: Optional[str] = None,
    headcount: Optional[int] = None,
    attendee_ids: Iterable[int] = (),
    policy: Optional[BookingPolicy] = None,
    today: Optional[date] = None,
) -> Reservation:
    """Validate and book a window, returning the new CONFIRMED reservation.

    Headcount defaults to the number of distinct attendees (at least 1).
    Raises BookingValidationError, NotFoundError (unknown or inactive room,
    unknown organizer or attendee), ConflictError or StoreError; on any
    error nothing is persisted.
    """

    window = validate_window(start, end, policy, today)
    attendees = list(dict.fromkeys(attendee_ids))
    if headcount is None:
        headcount = max(1, len(attendees))
    elif headcount < 1:
        raise BookingValidationError(ValidationReason.INVALID_HEADCOUNT, "Headcount must be a positive integer")

    reservation = Reservation(
        room_id=room_id,
        organizer_id=organizer_id,
        title=(title or "").strip() or None,
        headcount=headcount,
        start_at=window.start,
        end_at=window.end,
        status=ReservationStatus.CONFIRMED,
    )
    try:
        _insert_active(db, reservation, attendees)
    except ConflictError as exc:
        logger.info("Rejected booking of room %s for %s - %s: conflicts with %s",
                    room_id, window.start, window.end, exc.conflicting_id)
        raise
    logger.info("Reservation %s confirmed for room %s (%s - %s) by user %s",
                reservation.id, room_id, window.start, window.end, organizer_id)
    return reservation


def create_block(
    db: Session,
    room_id: int,
    start: datetime,
    end: datetime,
    title: Optional[str] = None,
    acting_user_id: Optional[int] = None,
) -> Reservation:
    """Administrative hold. Same overlap rules as a booking, no business-hour rules."""

    start_at, end_at = to_utc_naive(start), to_utc_naive(end)
    if end_at <= start_at:
        raise BookingValidationError(ValidationReason.INVALID_ORDER, "End time must be after start time")
    reservation = Reservation(
        room_id=room_id,
        organizer_id=acting_user_id,
        title=(title or "").strip() or None,
        start_at=start_at,
        end_at=end_at,
        status=ReservationStatus.BLOCKED,
    )
    _insert_active(db, reservation, require_active_room=False)
    logger.info("Room %s blocked %s - %s by user %s", room_id, start_at, end_at, acting_user_id)
    return reservation


def get_reservation(db: Session, reservation_id: int) -> Reservation:
    reservation = db.get(Reservation, reservation_id)
    if reservation is None:
        raise NotFoundError("Reservation not found")
    return reservation


def cancel_reservation(db: Session, reservation_id: int, acting_user_id: int) -> Reservation:
    """Move an active reservation to CANCELLED.

    Any acting user may cancel. A missing or already cancelled reservation
    raises NotFoundError so callers can tell a no-op from a cancellation.
    """

    now = utcnow()
    try:
        updated = (
            db.query(Reservation)
            .filter(Reservation.id == reservation_id, Reservation.status.in_(ACTIVE_STATUSES))
            .update(
                {
                    Reservation.status: ReservationStatus.CANCELLED,
                    Reservation.cancelled_by_id: acting_user_id,
                    Reservation.cancelled_at: now,
                    Reservation.updated_at: now,
                },
                synchronize_session=False,
            )
        )
        if not updated:
            raise NotFoundError("Reservation not found or already cancelled")
        db.commit()
    except NotFoundError:
        db.rollback()
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Store failure cancelling reservation %s: %s", reservation_id, exc)
        raise StoreError("Could not cancel reservation") from exc
    logger.info("Reservation %s cancelled by user %s", reservation_id, acting_user_id)
    return get_reservation(db, reservation_id)


def list_upcoming(
    db: Session,
    organizer_id: int,
    now: Optional[datetime] = None,
    include_cancelled: bool = False,
) -> List[Reservation]:
    """Reservations of ``organizer_id`` that have not ended, soonest first.

    Cancelled rows are left out unless ``include_cancelled`` is set.
    """

    now = to_utc_naive(now) if now else utcnow()
    query = db.query(Reservation).filter(Reservation.organizer_id == organizer_id, Reservation.end_at >= now)
    if not include_cancelled:
        query = query.filter(Reservation.status.in_(ACTIVE_STATUSES))
    return query.order_by(Reservation.start_at).all()


def list_history(
    db: Session, organizer_id: int, now: Optional[datetime] = None, limit: int = 200
) -> List[Reservation]:
    """Ended reservations, cancelled ones included, newest first."""

    now = to_utc_naive(now) if now else utcnow()
    return (
        db.query(Reservation)
        .filter(Reservation.organizer_id == organizer_id, Reservation.end_at < now)
        .order_by(Reservation.start_at.desc())
        .limit(limit)
        .all()
    )
