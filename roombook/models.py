"""SQLAlchemy models for rooms, reservations and access logs."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from sqlalchemy import (
    DDL,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base

OVERLAP_VIOLATION_MESSAGE = "reservation overlaps an active reservation"
OVERLAP_CONSTRAINT_NAME = "reservations_no_overlap"


def utcnow() -> datetime:
    """Current instant as a naive UTC datetime, the storage representation."""

    return datetime.now(timezone.utc).replace(tzinfo=None)


class RoleEnum(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"


class ReservationStatus(str, Enum):
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    BLOCKED = "BLOCKED"


class ScanAction(str, Enum):
    SCAN = "SCAN"
    IN = "IN"
    OUT = "OUT"


ACTIVE_STATUSES = (ReservationStatus.CONFIRMED, ReservationStatus.BLOCKED)


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(100))
    email: Mapped[str] = mapped_column(String(255), unique=True)
    department: Mapped[Optional[str]] = mapped_column(String(100), default=None)
    role: Mapped[RoleEnum] = mapped_column(SqlEnum(RoleEnum), default=RoleEnum.USER)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    reservations: Mapped[List["Reservation"]] = relationship(
        back_populates="organizer", foreign_keys="Reservation.organizer_id"
    )


class Room(Base):
    __tablename__ = "rooms"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(100))
    floor: Mapped[Optional[str]] = mapped_column(String(20), default=None)
    capacity: Mapped[int] = mapped_column(Integer, index=True)
    features: Mapped[list[str]] = mapped_column(JSON, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    reservations: Mapped[List["Reservation"]] = relationship(back_populates="room")


class Reservation(Base):
    __tablename__ = "reservations"
    __table_args__ = (
        CheckConstraint("end_at > start_at", name="reservations_end_after_start"),
        Index("ix_reservations_room_window", "room_id", "start_at", "end_at"),
        Index("ix_reservations_organizer_start", "organizer_id", "start_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    room_id: Mapped[int] = mapped_column(ForeignKey("rooms.id", ondelete="RESTRICT"))
    organizer_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), default=None)
    title: Mapped[Optional[str]] = mapped_column(String(200), default=None)
    headcount: Mapped[Optional[int]] = mapped_column(Integer, default=None)
    start_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    end_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    status: Mapped[ReservationStatus] = mapped_column(
        SqlEnum(ReservationStatus), default=ReservationStatus.CONFIRMED, index=True
    )
    cancelled_by_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), default=None, index=True
    )
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    room: Mapped[Room] = relationship(back_populates="reservations")
    organizer: Mapped[Optional[User]] = relationship(back_populates="reservations", foreign_keys=[organizer_id])
    cancelled_by: Mapped[Optional[User]] = relationship(foreign_keys=[cancelled_by_id])
    attendees: Mapped[List["ReservationAttendee"]] = relationship(
        back_populates="reservation", cascade="all, delete-orphan"
    )

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def department(self) -> Optional[str]:
        return self.organizer.department if self.organizer else None


class ReservationAttendee(Base):
    __tablename__ = "reservation_attendees"
    __table_args__ = (UniqueConstraint("reservation_id", "user_id", name="uq_reservation_attendee"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    reservation_id: Mapped[int] = mapped_column(ForeignKey("reservations.id", ondelete="CASCADE"), index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    reservation: Mapped[Reservation] = relationship(back_populates="attendees")
    user: Mapped[User] = relationship()


class AccessLog(Base):
    __tablename__ = "access_logs"
    __table_args__ = (
        Index("ix_access_logs_room_scanned", "room_id", "scanned_at"),
        Index("ix_access_logs_user_scanned", "user_id", "scanned_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    room_id: Mapped[int] = mapped_column(ForeignKey("rooms.id", ondelete="RESTRICT"))
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"))
    reservation_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("reservations.id", ondelete="SET NULL"), default=None
    )
    action: Mapped[ScanAction] = mapped_column(SqlEnum(ScanAction), default=ScanAction.SCAN)
    scanned_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    room: Mapped[Room] = relationship()
    user: Mapped[User] = relationship()
    reservation: Mapped[Optional[Reservation]] = relationship()


# Database-level overlap guard. The application re-checks inside its
# transaction; these make the invariant hold even for writes that bypass it.
_ACTIVE_SQL = "('CONFIRMED', 'BLOCKED')"

_SQLITE_INSERT_GUARD = DDL(
    f"""
    CREATE TRIGGER IF NOT EXISTS {OVERLAP_CONSTRAINT_NAME}_insert
    BEFORE INSERT ON reservations
    FOR EACH ROW WHEN NEW.status IN {_ACTIVE_SQL}
    BEGIN
        SELECT RAISE(ABORT, '{OVERLAP_VIOLATION_MESSAGE}')
        WHERE EXISTS (
            SELECT 1 FROM reservations
            WHERE room_id = NEW.room_id
              AND status IN {_ACTIVE_SQL}
              AND start_at < NEW.end_at
              AND NEW.start_at < end_at
        );
    END
    """
)

_SQLITE_UPDATE_GUARD = DDL(
    f"""
    CREATE TRIGGER IF NOT EXISTS {OVERLAP_CONSTRAINT_NAME}_update
    BEFORE UPDATE OF room_id, start_at, end_at, status ON reservations
    FOR EACH ROW WHEN NEW.status IN {_ACTIVE_SQL}
    BEGIN
        SELECT RAISE(ABORT, '{OVERLAP_VIOLATION_MESSAGE}')
        WHERE EXISTS (
            SELECT 1 FROM reservations
            WHERE room_id = NEW.room_id
              AND id != NEW.id
              AND status IN {_ACTIVE_SQL}
              AND start_at < NEW.end_at
              AND NEW.start_at < end_at
        );
    END
    """
)

_POSTGRES_EXTENSION = DDL("CREATE EXTENSION IF NOT EXISTS btree_gist")

_POSTGRES_EXCLUSION = DDL(
    f"""
    ALTER TABLE reservations ADD CONSTRAINT {OVERLAP_CONSTRAINT_NAME}
    EXCLUDE USING gist (room_id WITH =, tsrange(start_at, end_at, '[)') WITH &&)
    WHERE (status IN {_ACTIVE_SQL})
    """
)

event.listen(Base.metadata, "before_create", _POSTGRES_EXTENSION.execute_if(dialect="postgresql"))
event.listen(Reservation.__table__, "after_create", _SQLITE_INSERT_GUARD.execute_if(dialect="sqlite"))
event.listen(Reservation.__table__, "after_create", _SQLITE_UPDATE_GUARD.execute_if(dialect="sqlite"))
event.listen(Reservation.__table__, "after_create", _POSTGRES_EXCLUSION.execute_if(dialect="postgresql"))
