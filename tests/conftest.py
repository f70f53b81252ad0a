import os
from datetime import date
from typing import Callable, Generator, Optional

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("RATE_LIMITING_ENABLED", "false")
os.environ.setdefault("BOOKING_TIMEZONE", "UTC")
os.environ.setdefault("LOG_DIR", "./test-logs")

from roombook.config import reset_settings_cache  # noqa: E402

reset_settings_cache()

from roombook.auth import create_access_token  # noqa: E402
from roombook.database import Base, SessionLocal, create_tables, engine  # noqa: E402
from roombook.dependencies import get_today  # noqa: E402
from roombook.models import RoleEnum, Room, User  # noqa: E402
from roombook.schemas import Identity  # noqa: E402
from roombook.timewindow import BookingPolicy  # noqa: E402
from services.reservations.app import app as reservations_app  # noqa: E402
from services.reservations.app import room_directory_cache  # noqa: E402

# Fixed "today" so horizon checks do not depend on the wall clock.
TODAY = date(2030, 1, 7)
BOOKING_DAY = date(2030, 1, 8)


@pytest.fixture(autouse=True, scope="function")
def _create_test_database() -> Generator[None, None, None]:
    Base.metadata.drop_all(bind=engine)
    create_tables(engine)
    room_directory_cache.clear()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db_session() -> Generator:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def policy() -> BookingPolicy:
    return BookingPolicy(timezone="UTC")


@pytest.fixture()
def make_user() -> Callable[..., int]:
    """Insert a user in its own committed session and return its id."""

    def factory(
        name: str = "Alice",
        email: Optional[str] = None,
        department: Optional[str] = "Engineering",
        role: RoleEnum = RoleEnum.USER,
    ) -> int:
        session = SessionLocal()
        try:
            user = User(
                name=name,
                email=email or f"{name.lower()}@example.com",
                department=department,
                role=role,
            )
            session.add(user)
            session.flush()
            user_id = user.id
            session.commit()
            return user_id
        finally:
            session.close()

    return factory


@pytest.fixture()
def make_room() -> Callable[..., int]:
    """Insert a room in its own committed session and return its id."""

    def factory(
        name: str = "Focus Room",
        floor: Optional[str] = "2F",
        capacity: int = 6,
        is_active: bool = True,
    ) -> int:
        session = SessionLocal()
        try:
            room = Room(name=name, floor=floor, capacity=capacity, features=["tv"], is_active=is_active)
            session.add(room)
            session.flush()
            room_id = room.id
            session.commit()
            return room_id
        finally:
            session.close()

    return factory


@pytest.fixture()
def auth_header() -> Callable[..., dict[str, str]]:
    def build(
        user_id: int,
        name: str = "Alice",
        department: Optional[str] = "Engineering",
        role: RoleEnum = RoleEnum.USER,
    ) -> dict[str, str]:
        token = create_access_token(Identity(id=user_id, name=name, department=department, role=role))
        return {"Authorization": f"Bearer {token}"}

    return build


@pytest.fixture()
def reservations_client() -> Generator[TestClient, None, None]:
    reservations_app.dependency_overrides[get_today] = lambda: TODAY
    try:
        with TestClient(reservations_app) as client:
            yield client
    finally:
        reservations_app.dependency_overrides.clear()
