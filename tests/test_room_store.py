"""Tests for the SQLAlchemy room store against in-memory SQLite."""
from conftest import ALICE, BOB, CAROL, run

from krackenchat.services.room_store import direct_key, normalize_database_url


def test_general_room_is_seeded(store):
    rooms = run(store.list_user_rooms(ALICE))
    assert rooms == []

    run(store.join_room_membership(1, ALICE))
    run(store.join_room_membership(1, ALICE))

    rooms = run(store.list_user_rooms(ALICE))
    assert [(r.id, r.name, r.room_type) for r in rooms] == [(1, "General Chat", "general")]


def test_find_user_by_username(store):
    assert run(store.find_user_by_username("bob")) == BOB
    assert run(store.find_user_by_username("nobody")) is None
    assert run(store.get_user(CAROL)).username == "carol"
    assert run(store.get_user(999)) is None


def test_insert_and_fetch_messages(store):
    async def scenario():
        first = await store.insert_message(ALICE, 1, "one")
        second = await store.insert_message(BOB, 1, "two")
        history = await store.fetch_recent_messages(1, 50)
        return first, second, history

    first, second, history = run(scenario())

    assert second.id > first.id
    assert [(m.id, m.username, m.content) for m in history] == [
        (first.id, "alice", "one"),
        (second.id, "bob", "two"),
    ]


def test_fetch_is_scoped_to_room(store):
    async def scenario():
        room = await store.create_direct_room(ALICE, BOB)
        await store.insert_message(ALICE, room.id, "direct")
        await store.insert_message(ALICE, 1, "general")
        return await store.fetch_recent_messages(room.id, 50)

    assert [m.content for m in run(scenario())] == ["direct"]


def test_direct_room_lookup_is_order_independent(store):
    async def scenario():
        assert await store.find_direct_room(BOB, ALICE) is None
        created = await store.create_direct_room(BOB, ALICE)
        found = await store.find_direct_room(ALICE, BOB)
        return created, found

    created, found = run(scenario())

    assert found == created
    assert created.name == "Direct 1-2"
    assert created.room_type == "direct"
    assert run(store.is_room_member(created.id, ALICE))
    assert run(store.is_room_member(created.id, BOB))
    assert not run(store.is_room_member(created.id, CAROL))


def test_duplicate_direct_room_create_returns_existing(store):
    first = run(store.create_direct_room(ALICE, BOB))
    second = run(store.create_direct_room(BOB, ALICE))

    assert second.id == first.id


def test_friend_rows_are_canonical(store):
    async def scenario():
        created = await store.add_friend_request(BOB, ALICE)
        duplicate = await store.add_friend_request(ALICE, BOB)
        updated = await store.set_friend_status(BOB, ALICE, "accepted")
        return created, duplicate, updated

    created, duplicate, updated = run(scenario())

    assert created is True
    assert duplicate is False
    assert updated is True
    assert [(f.username, f.status) for f in run(store.list_friends(ALICE))] == [("bob", "accepted")]
    assert [(f.username, f.status) for f in run(store.list_friends(BOB))] == [("alice", "accepted")]
    assert run(store.list_friends(CAROL)) == []
    assert run(store.set_friend_status(CAROL, ALICE, "accepted")) is False


def test_helpers():
    assert direct_key(7, 3) == "3:7"
    assert normalize_database_url("postgres://u:p@h/db") == "postgresql+psycopg://u:p@h/db"
    assert normalize_database_url("sqlite://") == "sqlite://"
