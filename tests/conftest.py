"""
Shared fixtures for the chat tests.

Managers are driven with in-memory fake websockets against a real
SqlRoomStore on an in-memory SQLite database. Users alice (1), bob (2) and
carol (3) exist in every store.
"""

import asyncio

import pytest
from jose import jwt

from krackenchat.services.auth_service import JwtIdentityResolver
from krackenchat.services.chat_service import ChatService
from krackenchat.services.room_store import SqlRoomStore

SECRET = "test-secret"
ALGORITHM = "HS256"

ALICE, BOB, CAROL = 1, 2, 3


class FakeWebSocket:
    """Records everything the server sends; can be told to fail sends."""

    def __init__(self):
        self.sent = []
        self.accepted = False
        self.fail = False

    async def accept(self):
        self.accepted = True

    async def send_json(self, data):
        if self.fail:
            raise RuntimeError("socket is closed")
        self.sent.append(data)

    def of_type(self, event_type):
        return [m for m in self.sent if m["type"] == event_type]

    def last(self, event_type):
        matches = self.of_type(event_type)
        assert matches, f"no {event_type!r} event in {self.sent!r}"
        return matches[-1]

    def clear(self):
        self.sent.clear()


def token_for(user_id):
    return jwt.encode({"userId": user_id}, SECRET, algorithm=ALGORITHM)


def run(coro):
    return asyncio.run(coro)


def make_store():
    store = SqlRoomStore.from_url("sqlite://")

    async def setup():
        await store.init_schema()
        for name in ("alice", "bob", "carol"):
            await store.create_user(name)

    run(setup())
    return store


@pytest.fixture
def store():
    store = make_store()
    yield store
    store.close()


@pytest.fixture
def service(store):
    return ChatService(store=store, resolver=JwtIdentityResolver(SECRET, ALGORITHM, store))


async def connect_as(service, user_id):
    ws = FakeWebSocket()
    connection = await service.connect(ws)
    await service.authenticate(connection, token_for(user_id))
    return connection, ws
