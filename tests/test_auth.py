import pytest
from jose import jwt

from conftest import ALGORITHM, ALICE, BOB, SECRET, FakeWebSocket, connect_as, run, token_for

from krackenchat.core.errors import InvalidCredential, ServerError, StoreError
from krackenchat.services.auth_service import JwtIdentityResolver
from krackenchat.services.chat_service import ChatService
from krackenchat.services.room_store import SqlRoomStore


@pytest.fixture
def resolver(store):
    return JwtIdentityResolver(SECRET, ALGORITHM, store)


def test_resolves_user_id_claim(resolver):
    user = run(resolver.resolve(token_for(BOB)))
    assert (user.id, user.username) == (BOB, "bob")


def test_accepts_sub_claim(resolver):
    token = jwt.encode({"sub": str(BOB)}, SECRET, algorithm=ALGORITHM)
    assert run(resolver.resolve(token)).username == "bob"


@pytest.mark.parametrize(
    "token",
    [
        "",
        "not-a-jwt",
        jwt.encode({"userId": BOB}, "wrong-secret", algorithm=ALGORITHM),
        jwt.encode({"name": "bob"}, SECRET, algorithm=ALGORITHM),
        jwt.encode({"userId": 999}, SECRET, algorithm=ALGORITHM),
    ],
)
def test_rejects_bad_tokens(resolver, token):
    with pytest.raises(InvalidCredential):
        run(resolver.resolve(token))


def test_failed_authentication_leaves_connection_anonymous(service):
    async def scenario():
        ws = FakeWebSocket()
        conn = await service.connect(ws)
        with pytest.raises(InvalidCredential):
            await service.authenticate(conn, "garbage")
        return conn, ws

    conn, ws = run(scenario())

    assert not conn.authenticated
    assert service.registry.snapshot() == []
    assert ws.of_type("online_users") == []


def test_store_failure_during_authentication_leaves_connection_anonymous(store):
    class BrokenStore(SqlRoomStore):
        async def list_user_rooms(self, user_id):
            if user_id == ALICE:
                raise StoreError("database is gone")
            return await super().list_user_rooms(user_id)

    broken = BrokenStore(store.engine)
    service = ChatService(store=broken, resolver=JwtIdentityResolver(SECRET, ALGORITHM, broken))

    async def scenario():
        _, bob_ws = await connect_as(service, BOB)
        bob_ws.clear()
        ws = FakeWebSocket()
        conn = await service.connect(ws)
        with pytest.raises(ServerError):
            await service.authenticate(conn, token_for(ALICE))
        return conn, ws, bob_ws

    conn, ws, bob_ws = run(scenario())

    assert not conn.authenticated
    assert not service.registry.is_online(ALICE)
    assert [user.username for user in service.registry.snapshot()] == ["bob"]
    assert ws.sent == []
    assert bob_ws.of_type("online_users") == []
