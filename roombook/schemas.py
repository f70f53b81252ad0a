"""Pydantic request/response schemas for the reservations service."""
from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from .availability import Availability
from .models import ReservationStatus, RoleEnum, ScanAction


class Identity(BaseModel):
    """Acting user as asserted by the identity provider's token."""

    id: int
    name: str = ""
    department: Optional[str] = None
    role: RoleEnum = RoleEnum.USER


class RoomRead(BaseModel):
    id: int
    name: str
    floor: Optional[str] = None
    capacity: int
    features: List[str] = Field(default_factory=list)
    is_active: bool = True

    model_config = {"from_attributes": True}


class ReservationCreate(BaseModel):
    room_id: int
    start_at: datetime
    end_at: datetime
    title: Optional[str] = Field(None, max_length=200)
    headcount: Optional[int] = Field(None, ge=1)
    attendee_ids: List[int] = Field(default_factory=list)


class BlockCreate(BaseModel):
    room_id: int
    start_at: datetime
    end_at: datetime
    title: Optional[str] = Field(None, max_length=200)


class ReservationRead(BaseModel):
    id: int
    room_id: int
    organizer_id: Optional[int] = None
    title: Optional[str] = None
    headcount: Optional[int] = None
    start_at: datetime
    end_at: datetime
    status: ReservationStatus
    cancelled_by_id: Optional[int] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class RoomAvailabilityRead(BaseModel):
    room: RoomRead
    availability: Availability
    booked_by: Optional[str] = None
    booked_by_department: Optional[str] = None
    conflicting_reservation_id: Optional[int] = None

    model_config = {"from_attributes": True}


class SlotRead(BaseModel):
    start: datetime
    end: datetime
    busy: bool
    reservation_id: Optional[int] = None
    status: Optional[ReservationStatus] = None
    label: Optional[str] = None

    model_config = {"from_attributes": True}


class RoomTimelineRead(BaseModel):
    room: RoomRead
    slots: List[SlotRead]
    free_count: int

    model_config = {"from_attributes": True}


class ScheduleOptions(BaseModel):
    timezone: str
    slot_minutes: int
    start_times: List[str]
    end_times: List[str]
    min_date: date
    max_date: date


class ScanRequest(BaseModel):
    action: ScanAction = ScanAction.SCAN


class ReservationSummaryRead(BaseModel):
    id: int
    title: Optional[str] = None
    department: Optional[str] = None
    start_at: datetime
    end_at: datetime

    model_config = {"from_attributes": True}


class AccessLogRead(BaseModel):
    id: int
    room_id: int
    user_id: int
    reservation_id: Optional[int] = None
    reservation: Optional[ReservationSummaryRead] = None
    action: ScanAction
    scanned_at: datetime

    model_config = {"from_attributes": True}


class ScanResultRead(BaseModel):
    """A recorded scan and whether the scanning user may take attendance."""

    log: AccessLogRead
    can_log: bool

    model_config = {"from_attributes": True}


class UserRead(BaseModel):
    id: int
    name: str
    email: str
    department: Optional[str] = None
    role: RoleEnum

    model_config = {"from_attributes": True}


class ErrorRead(BaseModel):
    detail: str
    kind: str
    reason: Optional[str] = None
    conflicting_reservation_id: Optional[int] = None
