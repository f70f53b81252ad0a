"""Overlap detection between reservation windows."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Query, Session

from .models import ACTIVE_STATUSES, Reservation


def windows_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open overlap test; windows that only touch do not overlap."""

    return a_start < b_end and b_start < a_end


def active_overlap_query(
    db: Session,
    room_id: int,
    start: datetime,
    end: datetime,
    exclude_reservation_id: Optional[int] = None,
) -> Query:
    query = db.query(Reservation).filter(
        Reservation.room_id == room_id,
        Reservation.status.in_(ACTIVE_STATUSES),
        Reservation.start_at < end,
        Reservation.end_at > start,
    )
    if exclude_reservation_id is not None:
        query = query.filter(Reservation.id != exclude_reservation_id)
    return query


def has_conflict(
    db: Session,
    room_id: int,
    start: datetime,
    end: datetime,
    exclude_reservation_id: Optional[int] = None,
) -> bool:
    query = active_overlap_query(db, room_id, start, end, exclude_reservation_id)
    return bool(db.query(query.exists()).scalar())


def find_conflict(
    db: Session,
    room_id: int,
    start: datetime,
    end: datetime,
    exclude_reservation_id: Optional[int] = None,
) -> Optional[Reservation]:
    return (
        active_overlap_query(db, room_id, start, end, exclude_reservation_id)
        .order_by(Reservation.start_at)
        .first()
    )
