# krackenchat/services/friends.py

from __future__ import annotations

from typing import List, Optional
import logging

from krackenchat.core.errors import (
    InvalidPayload,
    NotAuthenticated,
    SelfFriendRequest,
    ServerError,
    StoreError,
    UserNotFound,
)
from krackenchat.models.models import FriendEntry
from krackenchat.services.connection_manager import Connection, ConnectionRegistry
from krackenchat.services.room_store import RoomStore

logger = logging.getLogger(__name__)


class FriendsManager:
    """Friend requests over the socket. One stored row per pair, lower id first."""

    def __init__(self, registry: ConnectionRegistry, store: RoomStore) -> None:
        self.registry = registry
        self.store = store

    async def list_friends(self, connection: Connection) -> List[FriendEntry]:
        if not connection.authenticated:
            raise NotAuthenticated()
        try:
            friends = await self.store.list_friends(connection.user_id)
        except StoreError as e:
            raise ServerError("Failed to load friends") from e
        await connection.send("friends:list", friends=[friend.model_dump() for friend in friends])
        return friends

    async def _resolve(self, username: Optional[str]) -> int:
        username = (username or "").strip()
        if not username:
            raise InvalidPayload("Username is required")
        try:
            user_id = await self.store.find_user_by_username(username)
        except StoreError as e:
            raise ServerError() from e
        if user_id is None:
            raise UserNotFound()
        return user_id

    async def request(self, connection: Connection, username: Optional[str]) -> bool:
        if not connection.authenticated:
            raise NotAuthenticated()

        target_id = await self._resolve(username)
        if target_id == connection.user_id:
            raise SelfFriendRequest()

        try:
            created = await self.store.add_friend_request(connection.user_id, target_id)
        except StoreError as e:
            raise ServerError("Failed to send friend request") from e
        logger.info("Friend request %s -> %s (new=%s)", connection.username, username, created)

        target = self.registry.connection_for_user(target_id)
        if target is not None:
            await target.send("friends:request", **{"from": connection.username})
        await connection.send("friends:request:ok", to=username.strip())
        return created

    async def respond(self, connection: Connection, from_username: Optional[str], accept: bool) -> bool:
        if not connection.authenticated:
            raise NotAuthenticated()

        initiator_id = await self._resolve(from_username)
        status = "accepted" if accept else "declined"
        try:
            updated = await self.store.set_friend_status(initiator_id, connection.user_id, status)
        except StoreError as e:
            raise ServerError("Failed to respond to friend request") from e

        await connection.send("friends:respond:ok", user=from_username.strip(), accepted=bool(accept))
        initiator = self.registry.connection_for_user(initiator_id)
        if initiator is not None:
            await initiator.send("friends:update", user=connection.username, accepted=bool(accept))
        return updated
