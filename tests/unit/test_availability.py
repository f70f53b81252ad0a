"""Unit tests for availability classification, room ordering and the slot grid."""
from datetime import date, datetime, time

import pytest

from roombook.availability import (
    Availability,
    build_slot_grid,
    classify,
    day_timeline,
    floor_sort_key,
    search_rooms,
    slot_label,
    sort_rooms,
)
from roombook.lifecycle import cancel_reservation, create_block, create_reservation
from roombook.models import Reservation, ReservationStatus, Room, User
from roombook.timewindow import TimeWindow

TODAY = date(2030, 1, 7)
DAY = date(2030, 1, 8)


def at(hour: int, minute: int = 0) -> datetime:
    return datetime.combine(DAY, time(hour, minute))


def reservation(start: datetime, end: datetime, status=ReservationStatus.CONFIRMED, **kwargs) -> Reservation:
    return Reservation(id=kwargs.pop("id", 1), room_id=1, start_at=start, end_at=end, status=status, **kwargs)


class TestFloorOrdering:
    """Basements first, then numbered floors, unknown labels last."""

    @pytest.mark.parametrize(
        "label, expected",
        [
            ("B2", (0, 2)),
            ("B1F", (0, 1)),
            (" b1 ", (0, 1)),
            ("3F", (1, 3)),
            ("12", (1, 12)),
            ("Roof", (2, 0)),
            ("", (2, 0)),
            (None, (2, 0)),
        ],
    )
    def test_floor_sort_key(self, label, expected):
        assert floor_sort_key(label) == expected

    def test_sort_rooms_by_floor_then_name(self):
        rooms = [
            Room(id=1, name="Zeta", floor="2F", capacity=4),
            Room(id=2, name="alpha", floor="2F", capacity=4),
            Room(id=3, name="Lobby", floor=None, capacity=4),
            Room(id=4, name="Vault", floor="B1", capacity=4),
            Room(id=5, name="Beta", floor="1F", capacity=4),
            Room(id=6, name="Archive", floor="B2", capacity=4),
        ]

        assert [room.id for room in sort_rooms(rooms)] == [4, 6, 5, 2, 1, 3]

    def test_name_comparison_is_normalized(self):
        fullwidth = Room(id=1, name="Ａlpha", floor="1F", capacity=4)
        plain = Room(id=2, name="beta", floor="1F", capacity=4)

        assert [room.id for room in sort_rooms([plain, fullwidth])] == [1, 2]


class TestClassify:
    """Test classification against a room's reservations of the day."""

    def test_no_reservations_is_available(self):
        assert classify(TimeWindow(at(10), at(11)), []) is Availability.AVAILABLE

    def test_overlap_is_unavailable(self):
        booked = [reservation(at(10), at(11))]

        assert classify(TimeWindow(at(10, 30), at(11, 30)), booked) is Availability.UNAVAILABLE

    def test_touching_is_partial(self):
        booked = [reservation(at(10), at(11))]

        assert classify(TimeWindow(at(11), at(12)), booked) is Availability.PARTIAL

    def test_blocked_counts_as_occupied(self):
        blocked = [reservation(at(9), at(12), status=ReservationStatus.BLOCKED)]

        assert classify(TimeWindow(at(10), at(11)), blocked) is Availability.UNAVAILABLE

    def test_cancelled_is_ignored(self):
        cancelled = [reservation(at(10), at(11), status=ReservationStatus.CANCELLED)]

        assert classify(TimeWindow(at(10), at(11)), cancelled) is Availability.AVAILABLE


class TestSlotGrid:
    """Test the per-day occupancy cells."""

    def test_empty_day(self, policy):
        slots = build_slot_grid(DAY, [], policy)

        assert len(slots) == 18
        assert not any(slot.busy for slot in slots)
        assert slots[0].start == at(8, 30)
        assert slots[-1].end == at(17, 30)

    def test_busy_cells_follow_reservation(self, policy):
        organizer = User(id=7, name="Alice", email="alice@example.com", department="Engineering")
        booked = reservation(at(10), at(11), id=42, organizer=organizer)

        slots = build_slot_grid(DAY, [booked], policy)
        busy = [slot for slot in slots if slot.busy]

        assert [slot.start for slot in busy] == [at(10), at(10, 30)]
        assert all(slot.reservation_id == 42 for slot in busy)
        assert all(slot.label == "Alice (Engineering)" for slot in busy)
        assert all(slot.status is ReservationStatus.CONFIRMED for slot in busy)

    def test_cell_touching_reservation_stays_free(self, policy):
        slots = build_slot_grid(DAY, [reservation(at(10), at(11))], policy)

        assert not slots[2].busy
        assert slots[2].end == at(10)
        assert not slots[5].busy
        assert slots[5].start == at(11)

    def test_labels_fall_back(self):
        without_department = User(id=1, name="Bob", email="bob@example.com", department=None)

        assert slot_label(reservation(at(10), at(11), organizer=without_department)) == "Bob"
        assert slot_label(reservation(at(10), at(11), title="Maintenance")) == "Maintenance"
        assert slot_label(reservation(at(10), at(11), status=ReservationStatus.BLOCKED)) == "BLOCKED"


class TestSearchRooms:
    """Search against the database."""

    @pytest.fixture()
    def seeded(self, db_session, make_user, make_room, policy):
        alice = make_user("Alice", department="Engineering")
        rooms = {
            "small": make_room("Huddle", floor="1F", capacity=4),
            "large": make_room("Board", floor="B1", capacity=10),
            "medium": make_room("Studio", floor="2F", capacity=8),
            "closed": make_room("Closed", floor="1F", capacity=20, is_active=False),
        }
        booked = create_reservation(db_session, rooms["small"], alice, at(10), at(11), policy=policy, today=TODAY)
        create_reservation(db_session, rooms["medium"], alice, at(14), at(15), policy=policy, today=TODAY)
        return rooms, booked.id, alice

    def test_classification_and_order(self, db_session, seeded, policy):
        rooms, booked_id, _ = seeded

        results = search_rooms(db_session, TimeWindow(at(10, 30), at(11, 30)), policy)

        assert [entry.room.id for entry in results] == [rooms["large"], rooms["small"], rooms["medium"]]
        by_room = {entry.room.id: entry for entry in results}
        assert by_room[rooms["large"]].availability is Availability.AVAILABLE
        assert by_room[rooms["medium"]].availability is Availability.PARTIAL
        blocked = by_room[rooms["small"]]
        assert blocked.availability is Availability.UNAVAILABLE
        assert blocked.booked_by == "Alice"
        assert blocked.booked_by_department == "Engineering"
        assert blocked.conflicting_reservation_id == booked_id

    def test_headcount_filters_small_rooms(self, db_session, seeded, policy):
        rooms, _, _ = seeded

        results = search_rooms(db_session, TimeWindow(at(10, 30), at(11, 30)), policy, headcount=6)

        assert [entry.room.id for entry in results] == [rooms["large"], rooms["medium"]]

    def test_only_available(self, db_session, seeded, policy):
        rooms, _, _ = seeded

        results = search_rooms(db_session, TimeWindow(at(10, 30), at(11, 30)), policy, only_available=True)

        assert rooms["small"] not in [entry.room.id for entry in results]

    def test_touching_window_is_partial(self, db_session, seeded, policy):
        rooms, _, _ = seeded

        results = search_rooms(db_session, TimeWindow(at(11), at(12)), policy)

        by_room = {entry.room.id: entry.availability for entry in results}
        assert by_room[rooms["small"]] is Availability.PARTIAL

    def test_cancelled_reservation_frees_room(self, db_session, seeded, policy):
        rooms, booked_id, alice = seeded
        cancel_reservation(db_session, booked_id, acting_user_id=alice)

        results = search_rooms(db_session, TimeWindow(at(10, 30), at(11, 30)), policy)

        by_room = {entry.room.id: entry.availability for entry in results}
        assert by_room[rooms["small"]] is Availability.AVAILABLE


class TestDayTimeline:
    def test_timeline_marks_bookings_and_blocks(self, db_session, make_user, make_room, policy):
        alice = make_user("Alice", department="Engineering")
        room_id = make_room("Huddle", floor="1F")
        create_reservation(db_session, room_id, alice, at(10), at(11), policy=policy, today=TODAY)
        create_block(db_session, room_id, at(7), at(9), title="Cleaning")

        (timeline,) = day_timeline(db_session, DAY, policy)

        assert timeline.room.id == room_id
        assert timeline.free_count == 18 - 3
        assert timeline.slots[0].label == "Cleaning"
        assert timeline.slots[0].status is ReservationStatus.BLOCKED
        assert timeline.slots[3].label == "Alice (Engineering)"
        assert not timeline.slots[1].busy
