# krackenchat/models/rooms.py
"""
Room references.

A room id arriving over the socket is either a persistent room (numeric,
backed by the room store, has history) or an ephemeral room (any other
string, lives only as an in-memory channel). The two are distinct types so
callers branch on ``isinstance`` rather than re-testing the raw value.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union

from krackenchat.core.errors import InvalidPayload


@dataclass(frozen=True)
class PersistentRoom:
    id: int

    @property
    def channel(self) -> str:
        return str(self.id)

    @property
    def wire_id(self) -> int:
        return self.id


@dataclass(frozen=True)
class EphemeralRoom:
    key: str

    @property
    def channel(self) -> str:
        return self.key

    @property
    def wire_id(self) -> str:
        return self.key


RoomRef = Union[PersistentRoom, EphemeralRoom]


def parse_room_ref(raw: Any, default: int) -> RoomRef:
    """
    Turn a client supplied room id into a RoomRef.

    Missing or empty ids fall back to ``default`` (the general room).
    """
    if raw is None or raw == "":
        return PersistentRoom(default)
    # bool is an int subclass; true/false are not room ids
    if isinstance(raw, bool):
        raise InvalidPayload("Invalid room id")
    if isinstance(raw, int):
        if raw < 0:
            raise InvalidPayload("Invalid room id")
        return PersistentRoom(raw)
    if isinstance(raw, str):
        value = raw.strip()
        if not value:
            return PersistentRoom(default)
        if value.isascii() and value.isdigit():
            return PersistentRoom(int(value))
        return EphemeralRoom(value)
    raise InvalidPayload("Invalid room id")
