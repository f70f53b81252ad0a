"""Presence scans against rooms."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from .errors import NotFoundError, StoreError
from .models import AccessLog, Reservation, ReservationStatus, RoleEnum, Room, ScanAction, User, utcnow
from .timewindow import to_utc_naive

logger = logging.getLogger(__name__)


@dataclass
class ScanOutcome:
    log: AccessLog
    can_log: bool


def current_reservation(db: Session, room_id: int, now: Optional[datetime] = None) -> Optional[Reservation]:
    """CONFIRMED reservation of ``room_id`` in progress at ``now``, if any."""

    now = to_utc_naive(now) if now else utcnow()
    return (
        db.query(Reservation)
        .filter(
            Reservation.room_id == room_id,
            Reservation.status == ReservationStatus.CONFIRMED,
            Reservation.start_at <= now,
            Reservation.end_at > now,
        )
        .order_by(Reservation.start_at.desc())
        .first()
    )


def record_scan(
    db: Session,
    room_id: int,
    user_id: int,
    action: ScanAction = ScanAction.SCAN,
    now: Optional[datetime] = None,
) -> AccessLog:
    """Append an access log entry, linked to the reservation in progress when there is one."""

    now = to_utc_naive(now) if now else utcnow()
    if db.get(Room, room_id) is None:
        raise NotFoundError("Room not found")
    if db.get(User, user_id) is None:
        raise NotFoundError("User not found")
    reservation = current_reservation(db, room_id, now)
    log = AccessLog(
        room_id=room_id,
        user_id=user_id,
        reservation_id=reservation.id if reservation else None,
        action=action,
        scanned_at=now,
    )
    try:
        db.add(log)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Store failure recording scan of room %s: %s", room_id, exc)
        raise StoreError("Could not record scan") from exc
    db.refresh(log)
    logger.info("Scan %s of room %s by user %s (reservation=%s)", action.value, room_id, user_id, log.reservation_id)
    return log


def can_log_attendance(reservation: Optional[Reservation], user_id: int, role: RoleEnum) -> bool:
    """Admins always may; otherwise only the organizer of the linked reservation."""

    if role == RoleEnum.ADMIN:
        return True
    return reservation is not None and reservation.organizer_id == user_id


def perform_scan(
    db: Session,
    room_id: int,
    user_id: int,
    role: RoleEnum = RoleEnum.USER,
    action: ScanAction = ScanAction.SCAN,
    now: Optional[datetime] = None,
) -> ScanOutcome:
    log = record_scan(db, room_id, user_id, action=action, now=now)
    return ScanOutcome(log=log, can_log=can_log_attendance(log.reservation, user_id, role))


def recent_scans(db: Session, room_id: int, user_id: int, limit: int = 10) -> List[AccessLog]:
    """Latest scans of ``room_id`` by ``user_id``, newest first, with their reservations loaded."""

    if db.get(Room, room_id) is None:
        raise NotFoundError("Room not found")
    return (
        db.query(AccessLog)
        .options(joinedload(AccessLog.reservation).joinedload(Reservation.organizer))
        .filter(AccessLog.room_id == room_id, AccessLog.user_id == user_id)
        .order_by(AccessLog.scanned_at.desc(), AccessLog.id.desc())
        .limit(limit)
        .all()
    )
