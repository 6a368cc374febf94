import random

from conftest import FakeWebSocket, run

from krackenchat.services.connection_manager import Connection, ConnectionRegistry
from krackenchat.services.presence import PresenceBroadcaster


def _open(registry):
    connection = Connection(FakeWebSocket())
    registry.add(connection)
    return connection


def test_register_binds_identity_to_connection():
    registry = ConnectionRegistry()
    conn = _open(registry)

    identity = registry.register(conn.id, 1, "alice")

    assert identity.id == 1
    assert conn.authenticated
    assert conn.username == "alice"
    assert registry.connection_for_user(1) is conn


def test_newest_connection_is_canonical():
    registry = ConnectionRegistry()
    first, second = _open(registry), _open(registry)

    registry.register(first.id, 1, "alice")
    registry.register(second.id, 1, "alice")

    assert registry.connection_for_user(1) is second


def test_out_of_order_disconnect_keeps_newer_pointer():
    registry = ConnectionRegistry()
    first, second = _open(registry), _open(registry)
    registry.register(first.id, 1, "alice")
    registry.register(second.id, 1, "alice")

    registry.remove(first.id)

    assert registry.connection_for_user(1) is second
    assert registry.is_online(1)


def test_unregister_clears_pointer_it_owns():
    registry = ConnectionRegistry()
    first, second = _open(registry), _open(registry)
    registry.register(first.id, 1, "alice")
    registry.register(second.id, 1, "alice")

    registry.unregister(second.id)

    # first is still bound, but nothing points at it any more
    assert registry.connection_for_user(1) is None
    assert registry.is_online(1)
    assert registry.lookup_by_username("alice") is first


def test_lookup_by_username_returns_first_bound_connection():
    registry = ConnectionRegistry()
    first, second = _open(registry), _open(registry)
    registry.register(first.id, 1, "alice")
    registry.register(second.id, 1, "alice")

    assert registry.lookup_by_username("alice") is first
    assert registry.lookup_by_username("bob") is None


def test_snapshot_deduplicates_users():
    registry = ConnectionRegistry()
    a1, a2, b, anon = (_open(registry) for _ in range(4))
    registry.register(a1.id, 1, "alice")
    registry.register(a2.id, 1, "alice")
    registry.register(b.id, 2, "bob")

    snapshot = registry.snapshot()

    assert [(u.id, u.username) for u in snapshot] == [(1, "alice"), (2, "bob")]
    assert len(registry.all()) == 4


def test_snapshot_matches_bound_identities_for_random_sequences():
    rng = random.Random(1234)
    registry = ConnectionRegistry()
    presence = PresenceBroadcaster(registry)
    bound = {}

    for _ in range(300):
        if bound and rng.random() < 0.4:
            connection_id = rng.choice(sorted(bound))
            registry.remove(connection_id)
            del bound[connection_id]
        else:
            conn = _open(registry)
            user_id = rng.randint(1, 6)
            registry.register(conn.id, user_id, f"user{user_id}")
            bound[conn.id] = user_id

        expected = set(bound.values())
        assert {u.id for u in registry.snapshot()} == expected
        assert len(registry.snapshot()) == len(expected)

    users = run(presence.broadcast_online_users())
    assert len(users) == len(set(bound.values()))


def test_send_failure_is_swallowed_and_marks_connection_closed():
    ws = FakeWebSocket()
    ws.fail = True
    conn = Connection(ws)

    assert run(conn.send("online_users", users=[])) is False
    assert conn.closed
    # once closed, later sends are no-ops
    ws.fail = False
    assert run(conn.send("online_users", users=[])) is False
    assert ws.sent == []
