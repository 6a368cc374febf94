from conftest import ALICE, BOB, FakeWebSocket, connect_as, run


def test_authenticate_broadcasts_to_every_connection(service):
    async def scenario():
        anon_ws = FakeWebSocket()
        await service.connect(anon_ws)
        _, alice_ws = await connect_as(service, ALICE)
        return anon_ws, alice_ws

    anon_ws, alice_ws = run(scenario())

    expected = [{"id": ALICE, "username": "alice"}]
    assert anon_ws.last("online_users")["users"] == expected
    assert alice_ws.last("online_users")["users"] == expected
    assert alice_ws.last("token_auth_success")["user"] == {"id": ALICE, "username": "alice"}


def test_user_with_two_connections_counts_once(service):
    async def scenario():
        await connect_as(service, ALICE)
        _, second_ws = await connect_as(service, ALICE)
        return second_ws

    second_ws = run(scenario())

    assert second_ws.last("online_users")["users"] == [{"id": ALICE, "username": "alice"}]


def test_disconnect_removes_user_from_presence(service):
    async def scenario():
        alice, _ = await connect_as(service, ALICE)
        _, bob_ws = await connect_as(service, BOB)
        assert {u["username"] for u in bob_ws.last("online_users")["users"]} == {"alice", "bob"}
        await service.disconnect(alice)
        return bob_ws

    bob_ws = run(scenario())

    assert bob_ws.last("online_users")["users"] == [{"id": BOB, "username": "bob"}]


def test_user_stays_online_while_another_connection_remains(service):
    async def scenario():
        first, _ = await connect_as(service, ALICE)
        await connect_as(service, ALICE)
        _, bob_ws = await connect_as(service, BOB)
        await service.disconnect(first)
        return bob_ws

    bob_ws = run(scenario())

    assert {u["username"] for u in bob_ws.last("online_users")["users"]} == {"alice", "bob"}


def test_authenticate_sends_user_rooms_including_general(service):
    _, ws = run(connect_as(service, ALICE))

    rooms = ws.last("user_rooms")["rooms"]
    assert rooms == [{"id": 1, "name": "General Chat", "room_type": "general"}]
