"""Tests for room membership and expiry bookkeeping."""
import pytest

from connection import Connection
from registry import InvalidRoomIdError, RoomRegistry, is_valid_room_id
from tests.conftest import FakeTransport


@pytest.fixture
def registry(clock):
    return RoomRegistry(room_ttl_seconds=60, clock=clock)


def make_connection(room_id="doc1"):
    return Connection(FakeTransport(), room_id)


@pytest.mark.parametrize("room_id", ["doc1", "A-b_C", "0", "x" * 200])
def test_valid_room_ids(room_id):
    assert is_valid_room_id(room_id)


@pytest.mark.parametrize("room_id", ["", None, "../etc", "a b", "room/1", "doc1\n", "café", "a.b"])
def test_invalid_room_ids(room_id):
    assert not is_valid_room_id(room_id)


def test_first_join_creates_room_with_deadline(registry, clock):
    conn = make_connection()
    assert registry.join_or_create("doc1", conn) == 1

    room = registry.get("doc1")
    assert room.created_at == clock.now
    assert room.expires_at == clock.now + 60
    assert registry.members_of("doc1") == [conn]


def test_subsequent_joins_do_not_touch_expiry(registry, clock):
    first = make_connection()
    registry.join_or_create("doc1", first)
    deadline = registry.get("doc1").expires_at

    for expected_count in range(2, 6):
        clock.advance(10)
        assert registry.join_or_create("doc1", make_connection()) == expected_count
        assert registry.get("doc1").expires_at == deadline

    registry.leave("doc1", first)
    assert registry.get("doc1").expires_at == deadline


def test_expiry_deadline_is_immutable(registry):
    registry.join_or_create("doc1", make_connection())
    with pytest.raises(AttributeError):
        registry.get("doc1").expires_at = 0


def test_join_is_unique_per_connection(registry):
    conn = make_connection()
    registry.join_or_create("doc1", conn)
    assert registry.join_or_create("doc1", conn) == 1


def test_leave_reports_remaining_members(registry):
    a, b = make_connection(), make_connection()
    registry.join_or_create("doc1", a)
    registry.join_or_create("doc1", b)

    result = registry.leave("doc1", a)
    assert result.member_count == 1
    assert result.room_deleted is False
    assert "doc1" in registry


def test_last_leave_deletes_room(registry):
    conn = make_connection()
    registry.join_or_create("doc1", conn)

    result = registry.leave("doc1", conn)
    assert result.member_count == 0
    assert result.room_deleted is True
    assert "doc1" not in registry
    assert registry.get("doc1") is None
    assert registry.expired_rooms(float("inf")) == []


def test_leave_unknown_room(registry):
    result = registry.leave("nowhere", make_connection("nowhere"))
    assert result == (0, False)


def test_rejoin_after_deletion_gets_new_deadline(registry, clock):
    conn = make_connection()
    registry.join_or_create("doc1", conn)
    registry.leave("doc1", conn)

    clock.advance(30)
    registry.join_or_create("doc1", make_connection())
    assert registry.get("doc1").expires_at == clock.now + 60


def test_invalid_room_id_never_enters_registry(registry):
    with pytest.raises(InvalidRoomIdError):
        registry.join_or_create("../etc", make_connection("../etc"))
    assert "../etc" not in registry
    assert registry.room_count == 0


def test_members_of_returns_snapshot(registry):
    a, b = make_connection(), make_connection()
    registry.join_or_create("doc1", a)
    snapshot = registry.members_of("doc1")
    registry.join_or_create("doc1", b)

    assert snapshot == [a]
    assert registry.members_of("missing") == []


def test_expired_rooms(registry, clock):
    registry.join_or_create("old", make_connection("old"))
    clock.advance(30)
    registry.join_or_create("new", make_connection("new"))

    assert registry.expired_rooms(clock.now + 30) == []
    assert registry.expired_rooms(clock.now + 31) == ["old"]
    clock.advance(61)
    assert sorted(registry.expired_rooms()) == ["new", "old"]


def test_counts(registry):
    registry.join_or_create("r1", make_connection("r1"))
    registry.join_or_create("r1", make_connection("r1"))
    registry.join_or_create("r2", make_connection("r2"))

    assert registry.room_count == 2
    assert registry.connection_count == 3
    assert len(registry.connections()) == 3
