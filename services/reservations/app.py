from contextlib import asynccontextmanager
from datetime import date, time
from typing import List, Optional

from circuitbreaker import CircuitBreakerError, circuit
from fastapi import Depends, FastAPI, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from roombook.availability import active_rooms, day_timeline, search_rooms
from roombook.cache import SimpleTTLCache
from roombook.config import get_settings
from roombook.database import create_tables, get_db
from roombook.dependencies import allow_roles, get_current_identity, get_policy, get_today
from roombook.directory import list_users
from roombook.errors import BookingValidationError, ConflictError, NotFoundError, ReservationError, StoreError
from roombook.lifecycle import (
    cancel_reservation,
    create_block,
    create_reservation,
    get_reservation,
    list_history,
    list_upcoming,
)
from roombook.logging_middleware import add_audit_middleware
from roombook.models import AccessLog, Reservation, RoleEnum, Room, User
from roombook.rate_limit import apply_rate_limiter, limiter
from roombook.scan import perform_scan, recent_scans
from roombook.schemas import (
    AccessLogRead,
    BlockCreate,
    ErrorRead,
    Identity,
    ReservationCreate,
    ReservationRead,
    RoomAvailabilityRead,
    RoomRead,
    RoomTimelineRead,
    ScanRequest,
    ScanResultRead,
    ScheduleOptions,
    UserRead,
)
from roombook.timewindow import BookingPolicy, booking_horizon, local_instant, slot_boundaries, validate_window

settings = get_settings()
room_directory_cache: SimpleTTLCache[List[RoomRead]] = SimpleTTLCache(ttl=settings.room_cache_ttl)
ROOM_DIRECTORY_KEY = "room-directory"

_ERROR_STATUS = (
    (BookingValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ConflictError, status.HTTP_409_CONFLICT),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (StoreError, status.HTTP_503_SERVICE_UNAVAILABLE),
)

_ERROR_RESPONSES = {
    status.HTTP_404_NOT_FOUND: {"model": ErrorRead},
    status.HTTP_409_CONFLICT: {"model": ErrorRead},
    status.HTTP_422_UNPROCESSABLE_ENTITY: {"model": ErrorRead},
}


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.run_db_migrations:
        create_tables()
    yield


def reservation_error_handler(_: Request, exc: ReservationError) -> JSONResponse:
    content: dict[str, object] = {"detail": exc.message, "kind": exc.kind}
    if isinstance(exc, BookingValidationError):
        content["reason"] = exc.reason.value
    if isinstance(exc, ConflictError) and exc.conflicting_id is not None:
        content["conflicting_reservation_id"] = exc.conflicting_id
    status_code = next(
        (code for error_type, code in _ERROR_STATUS if isinstance(exc, error_type)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    return JSONResponse(status_code=status_code, content=content)


def store_unavailable_handler(_: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Reservation store unavailable", "kind": StoreError.kind},
    )


def create_app() -> FastAPI:
    fastapi_app = FastAPI(title="Reservations Service", version="0.1.0", lifespan=lifespan)
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    apply_rate_limiter(fastapi_app)
    add_audit_middleware(fastapi_app, "reservations")
    fastapi_app.add_exception_handler(ReservationError, reservation_error_handler)
    fastapi_app.add_exception_handler(SQLAlchemyError, store_unavailable_handler)
    fastapi_app.add_exception_handler(CircuitBreakerError, store_unavailable_handler)
    Instrumentator().instrument(fastapi_app).expose(fastapi_app, include_in_schema=False)
    return fastapi_app


app = create_app()


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok", "service": "reservations"}


@app.get("/rooms", response_model=List[RoomRead])
@limiter.limit("60/minute")
def list_rooms(request: Request, db: Session = Depends(get_db)) -> List[RoomRead]:
    return room_directory_cache.get_or_load(
        ROOM_DIRECTORY_KEY,
        lambda: [RoomRead.model_validate(room) for room in active_rooms(db)],
    )


@app.get("/schedule/options", response_model=ScheduleOptions)
def schedule_options(
    policy: BookingPolicy = Depends(get_policy),
    today: date = Depends(get_today),
) -> ScheduleOptions:
    starts, ends = slot_boundaries(policy)
    min_date, max_date = booking_horizon(policy, today)
    return ScheduleOptions(
        timezone=policy.timezone,
        slot_minutes=policy.slot_minutes,
        start_times=[value.strftime("%H:%M") for value in starts],
        end_times=[value.strftime("%H:%M") for value in ends],
        min_date=min_date,
        max_date=max_date,
    )


@app.get("/rooms/availability", response_model=List[RoomAvailabilityRead])
@limiter.limit("40/minute")
@circuit(failure_threshold=5, recovery_timeout=30, expected_exception=SQLAlchemyError)
def room_availability(
    request: Request,
    day: date = Query(..., alias="date"),
    start: time = Query(...),
    end: time = Query(...),
    headcount: Optional[int] = Query(None, ge=1),
    only_available: bool = False,
    policy: BookingPolicy = Depends(get_policy),
    today: date = Depends(get_today),
    db: Session = Depends(get_db),
) -> List[RoomAvailabilityRead]:
    window = validate_window(local_instant(day, start, policy), local_instant(day, end, policy), policy, today)
    results = search_rooms(db, window, policy, headcount=headcount, only_available=only_available)
    return [RoomAvailabilityRead.model_validate(entry) for entry in results]


@app.get("/rooms/timeline", response_model=List[RoomTimelineRead])
@limiter.limit("40/minute")
def rooms_timeline(
    request: Request,
    day: date = Query(..., alias="date"),
    policy: BookingPolicy = Depends(get_policy),
    db: Session = Depends(get_db),
) -> List[RoomTimelineRead]:
    return [RoomTimelineRead.model_validate(row) for row in day_timeline(db, day, policy)]


@app.get("/rooms/{room_id}/timeline", response_model=RoomTimelineRead)
@limiter.limit("60/minute")
def room_timeline(
    request: Request,
    room_id: int,
    day: date = Query(..., alias="date"),
    policy: BookingPolicy = Depends(get_policy),
    db: Session = Depends(get_db),
) -> RoomTimelineRead:
    room = db.get(Room, room_id)
    if room is None:
        raise NotFoundError("Room not found")
    return RoomTimelineRead.model_validate(day_timeline(db, day, policy, rooms=[room])[0])


@app.post(
    "/reservations",
    response_model=ReservationRead,
    status_code=status.HTTP_201_CREATED,
    responses=_ERROR_RESPONSES,
)
@limiter.limit("20/minute")
def book_room(
    request: Request,
    reservation_in: ReservationCreate,
    identity: Identity = Depends(get_current_identity),
    policy: BookingPolicy = Depends(get_policy),
    today: date = Depends(get_today),
    db: Session = Depends(get_db),
) -> Reservation:
    return create_reservation(
        db,
        room_id=reservation_in.room_id,
        organizer_id=identity.id,
        start=reservation_in.start_at,
        end=reservation_in.end_at,
        title=reservation_in.title,
        headcount=reservation_in.headcount,
        attendee_ids=reservation_in.attendee_ids,
        policy=policy,
        today=today,
    )


@app.get("/reservations/me", response_model=List[ReservationRead])
@limiter.limit("30/minute")
def my_reservations(
    request: Request,
    include_cancelled: bool = False,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
) -> List[Reservation]:
    return list_upcoming(db, identity.id, include_cancelled=include_cancelled)


@app.get("/reservations/me/history", response_model=List[ReservationRead])
@limiter.limit("30/minute")
def my_reservation_history(
    request: Request,
    limit: int = Query(200, ge=1, le=500),
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
) -> List[Reservation]:
    return list_history(db, identity.id, limit=limit)


@app.get("/reservations/{reservation_id}", response_model=ReservationRead)
@limiter.limit("60/minute")
def read_reservation(
    request: Request,
    reservation_id: int,
    _: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
) -> Reservation:
    return get_reservation(db, reservation_id)


@app.post(
    "/reservations/{reservation_id}/cancel",
    response_model=ReservationRead,
    responses={status.HTTP_404_NOT_FOUND: {"model": ErrorRead}},
)
@limiter.limit("20/minute")
def cancel_booking(
    request: Request,
    reservation_id: int,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
) -> Reservation:
    return cancel_reservation(db, reservation_id, acting_user_id=identity.id)


@app.post(
    "/admin/blocks",
    response_model=ReservationRead,
    status_code=status.HTTP_201_CREATED,
    responses=_ERROR_RESPONSES,
)
@limiter.limit("20/minute")
def block_room(
    request: Request,
    block_in: BlockCreate,
    identity: Identity = Depends(allow_roles(RoleEnum.ADMIN)),
    db: Session = Depends(get_db),
) -> Reservation:
    return create_block(
        db,
        room_id=block_in.room_id,
        start=block_in.start_at,
        end=block_in.end_at,
        title=block_in.title,
        acting_user_id=identity.id,
    )


@app.post("/rooms/{room_id}/scan", response_model=ScanResultRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def scan_room(
    request: Request,
    room_id: int,
    scan_in: Optional[ScanRequest] = None,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
) -> ScanResultRead:
    action = scan_in.action if scan_in else ScanRequest().action
    outcome = perform_scan(db, room_id, identity.id, role=identity.role, action=action)
    return ScanResultRead.model_validate(outcome)


@app.get("/rooms/{room_id}/scans", response_model=List[AccessLogRead])
@limiter.limit("30/minute")
def my_room_scans(
    request: Request,
    room_id: int,
    limit: int = Query(10, ge=1, le=100),
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
) -> List[AccessLog]:
    return recent_scans(db, room_id, identity.id, limit=limit)


@app.get("/users", response_model=List[UserRead])
@limiter.limit("30/minute")
def employee_directory(
    request: Request,
    department: Optional[str] = None,
    _: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
) -> List[User]:
    return list_users(db, department=department)
