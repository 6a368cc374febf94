import pytest

from conftest import ALICE, BOB, CAROL, FakeWebSocket, connect_as, run

from krackenchat.core.errors import InvalidPayload, NotAuthenticated, SelfFriendRequest, UserNotFound


def test_request_and_accept_friendship(service):
    async def scenario():
        alice, alice_ws = await connect_as(service, ALICE)
        bob, bob_ws = await connect_as(service, BOB)

        created = await service.friends.request(alice, "bob")
        updated = await service.friends.respond(bob, "alice", True)
        friends = await service.friends.list_friends(alice)
        return created, updated, friends, alice_ws, bob_ws

    created, updated, friends, alice_ws, bob_ws = run(scenario())

    assert created and updated
    assert bob_ws.last("friends:request")["from"] == "alice"
    assert alice_ws.last("friends:request:ok")["to"] == "bob"
    assert bob_ws.last("friends:respond:ok") == {"type": "friends:respond:ok", "user": "alice", "accepted": True}
    assert alice_ws.last("friends:update") == {"type": "friends:update", "user": "bob", "accepted": True}
    assert [(f.id, f.username, f.status) for f in friends] == [(BOB, "bob", "accepted")]
    assert alice_ws.last("friends:list")["friends"] == [{"id": BOB, "username": "bob", "status": "accepted"}]


def test_offline_target_still_gets_the_request_stored(service, store):
    async def scenario():
        alice, _ = await connect_as(service, ALICE)
        await service.friends.request(alice, "carol")
        return await store.list_friends(CAROL)

    friends = run(scenario())

    assert [(f.username, f.status) for f in friends] == [("alice", "pending")]


def test_friend_request_errors(service):
    async def scenario():
        anon = await service.connect(FakeWebSocket())
        with pytest.raises(NotAuthenticated):
            await service.friends.request(anon, "bob")

        alice, _ = await connect_as(service, ALICE)
        with pytest.raises(SelfFriendRequest):
            await service.friends.request(alice, "alice")
        with pytest.raises(UserNotFound):
            await service.friends.request(alice, "nobody")
        with pytest.raises(InvalidPayload):
            await service.friends.request(alice, "  ")
        with pytest.raises(UserNotFound):
            await service.friends.respond(alice, "nobody", True)

    run(scenario())
