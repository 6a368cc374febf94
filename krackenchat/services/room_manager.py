# krackenchat/services/room_manager.py

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Set
import logging
import time

from krackenchat.core.errors import EmptyMessage, NotAuthenticated, ServerError, StoreError
from krackenchat.models.models import ChatMessage
from krackenchat.models.rooms import EphemeralRoom, PersistentRoom, RoomRef, parse_room_ref
from krackenchat.services.connection_manager import Connection, ConnectionRegistry
from krackenchat.services.room_store import RoomStore

logger = logging.getLogger(__name__)

# ============================================================================
# ROOM MEMBERSHIP MANAGER
# ============================================================================

class RoomMembershipManager:
    """
    Tracks which connections are subscribed to which room channel and routes
    room-scoped events.

    Data Structures:
        channels: channel key -> Set of subscribed connections
                  Example: {"1": {conn_a, conn_b}, "study-group": {conn_a}}

    Persistent rooms (numeric ids) are backed by the room store: messages are
    written before they are broadcast and joining replays recent history.
    Ephemeral rooms (any other id) exist only as a channel here; nothing is
    stored and there is no history.

    The general room is special: every connection is implicitly a member, so
    its messages go to every open connection rather than channel members.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        store: RoomStore,
        general_room_id: int = 1,
        history_limit: int = 50,
    ) -> None:
        self.registry = registry
        self.store = store
        self.general_room_id = general_room_id
        self.history_limit = history_limit
        self.channels: Dict[str, Set[Connection]] = {}

    def parse(self, raw_room_id: Any) -> RoomRef:
        return parse_room_ref(raw_room_id, default=self.general_room_id)

    def subscribe(self, connection: Connection, ref: RoomRef) -> int:
        """Add a connection to a room channel. Returns the channel size."""
        members = self.channels.setdefault(ref.channel, set())
        members.add(connection)
        connection.rooms.add(ref.channel)
        return len(members)

    def unsubscribe(self, connection: Connection, ref: RoomRef) -> bool:
        if ref.channel not in connection.rooms:
            return False
        connection.rooms.discard(ref.channel)
        members = self.channels.get(ref.channel)
        if members is not None:
            members.discard(connection)
            if not members:
                del self.channels[ref.channel]
        return True

    def drop_connection(self, connection: Connection) -> None:
        """Remove a closing connection from every channel it joined."""
        for channel in list(connection.rooms):
            members = self.channels.get(channel)
            if members is None:
                continue
            members.discard(connection)
            if not members:
                del self.channels[channel]
        connection.rooms.clear()

    def members(self, ref: RoomRef) -> Set[Connection]:
        return set(self.channels.get(ref.channel, ()))

    async def join_room(self, connection: Connection, raw_room_id: Any) -> List[dict]:
        """
        Subscribe to a room and replay its history to the joiner only.

        Any authenticated connection may join any room id. Participant
        checks apply only to the REST history route
        (``GET /api/rooms/{id}/messages``).

        Returns:
            The history sent, oldest message first (empty for ephemeral rooms)
        """
        if not connection.authenticated:
            raise NotAuthenticated()

        ref = self.parse(raw_room_id)
        member_count = self.subscribe(connection, ref)
        logger.info("→ %s joined room %s (%s members)", connection.label, ref.channel, member_count)

        history: List[dict] = []
        if isinstance(ref, PersistentRoom):
            try:
                messages = await self.store.fetch_recent_messages(ref.id, self.history_limit)
            except StoreError as e:
                raise ServerError("Failed to join room") from e
            history = [message.to_wire() for message in messages]

        await connection.send("room_joined", success=True, roomId=ref.wire_id, messages=history)
        return history

    async def leave_room(self, connection: Connection, raw_room_id: Any) -> bool:
        if not connection.authenticated:
            raise NotAuthenticated()

        ref = self.parse(raw_room_id)
        left = self.unsubscribe(connection, ref)
        if left:
            logger.info("← %s left room %s", connection.label, ref.channel)
        await connection.send("room_left", roomId=ref.wire_id, left=left)
        return left

    async def send_message(self, connection: Connection, raw_room_id: Any, content: Any) -> ChatMessage:
        """
        Persist (numeric rooms only) and fan out a chat message.

        Raises:
            NotAuthenticated: connection has no bound identity
            EmptyMessage: content is blank after trimming
            ServerError: the store rejected the write; nothing is broadcast
        """
        if not connection.authenticated:
            raise NotAuthenticated()

        trimmed = str(content).strip() if content is not None else ""
        if not trimmed:
            raise EmptyMessage()

        ref = self.parse(raw_room_id)

        if isinstance(ref, EphemeralRoom):
            message = ChatMessage(
                id=f"ephemeral-{time.time_ns()}",
                user_id=connection.user_id,
                username=connection.username,
                room_id=ref.key,
                content=trimmed,
                timestamp=datetime.now(timezone.utc),
            )
            await self.broadcast_to_room(ref, "new_message", message.to_wire())
            return message

        try:
            stored = await self.store.insert_message(connection.user_id, ref.id, trimmed)
        except StoreError as e:
            raise ServerError("Failed to send message") from e

        message = ChatMessage(
            id=stored.id,
            user_id=connection.user_id,
            username=connection.username,
            room_id=ref.id,
            content=trimmed,
            timestamp=stored.timestamp,
        )
        if ref.id == self.general_room_id:
            await self.broadcast_all("new_message", message.to_wire())
        else:
            await self.broadcast_to_room(ref, "new_message", message.to_wire())
        return message

    async def broadcast_to_room(self, ref: RoomRef, event_type: str, payload: dict) -> int:
        """
        Send an event to every connection subscribed to a room channel.

        Returns the number of connections the event was handed to.
        """
        connections = self.members(ref)  # Copy to avoid modification during iteration
        if not connections:
            logger.info("[routing] Skipped broadcast: room=%s has 0 subscribers", ref.channel)
            return 0

        logger.info("📨 Broadcasting %s to room %s: %d clients", event_type, ref.channel, len(connections))
        delivered = 0
        for connection in connections:
            if await connection.send(event_type, **payload):
                delivered += 1
        return delivered

    async def broadcast_all(self, event_type: str, payload: dict) -> int:
        connections = self.registry.all()
        logger.info("📨 Broadcasting %s to all: %d clients", event_type, len(connections))
        delivered = 0
        for connection in connections:
            if await connection.send(event_type, **payload):
                delivered += 1
        return delivered

    def get_rooms_info(self) -> Dict[str, dict]:
        """Active channels and their subscriber counts, for the health endpoint."""
        return {channel: {"member_count": len(members)} for channel, members in self.channels.items()}
