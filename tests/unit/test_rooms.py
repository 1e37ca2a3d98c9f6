# pylint: disable=missing-module-docstring,missing-function-docstring

from session.rooms import RoomRegistry


def test_rooms_are_a_set_in_join_order():
    rooms = RoomRegistry()

    assert rooms.add("order:1") is True
    assert rooms.add("user:u1") is True
    assert rooms.add("order:1") is False

    assert list(rooms) == ["order:1", "user:u1"]
    assert len(rooms) == 2
    assert "order:1" in rooms


def test_discard_reports_membership():
    rooms = RoomRegistry()
    rooms.add("order:1")

    assert rooms.discard("order:1") is True
    assert rooms.discard("order:1") is False
    assert rooms.snapshot() == ()


def test_iteration_tolerates_mutation():
    rooms = RoomRegistry()
    rooms.add("a")
    rooms.add("b")

    for room in rooms:
        rooms.discard(room)

    assert len(rooms) == 0
