# krackenchat/services/connection_manager.py

from __future__ import annotations

from typing import Dict, List, Optional, Set
from uuid import uuid4
import logging

from fastapi import WebSocket

from krackenchat.models.models import UserIdentity

logger = logging.getLogger(__name__)

# ============================================================================
# CONNECTION
# ============================================================================

class Connection:
    """
    One live WebSocket session.

    A connection starts anonymous and becomes authenticated once the
    registry binds a user identity to it. ``rooms`` holds the channel keys
    the connection is subscribed to; the room manager keeps it in sync with
    its own channel map.
    """

    def __init__(self, websocket: WebSocket, connection_id: Optional[str] = None) -> None:
        self.websocket = websocket
        self.id = connection_id or uuid4().hex
        self.user_id: Optional[int] = None
        self.username: Optional[str] = None
        self.rooms: Set[str] = set()
        self.closed = False

    @property
    def authenticated(self) -> bool:
        return self.user_id is not None

    @property
    def label(self) -> str:
        return self.username or f"anon:{self.id[:8]}"

    async def send(self, event_type: str, **payload) -> bool:
        """
        Send one event to this connection.

        Delivery is fire-and-forget: a failing transport is logged and the
        connection is marked closed, the caller never sees the error.
        """
        if self.closed:
            return False
        try:
            await self.websocket.send_json({"type": event_type, **payload})
            return True
        except Exception as e:
            logger.warning("Send error to %s (%s): %s", self.label, event_type, e)
            self.closed = True
            return False

    def __repr__(self) -> str:
        return f"<Connection {self.id[:8]} user={self.username!r}>"


# ============================================================================
# CONNECTION REGISTRY
# ============================================================================

class ConnectionRegistry:
    """
    Authoritative mapping of live connections to user identities.

    Data Structures:
        connections: connection_id -> Connection, every open socket
                     (authenticated or not)
                     Example: {"9f1c...": <Connection>}

        identities: connection_id -> UserIdentity for bound connections
                    Example: {"9f1c...": UserIdentity(id=1, username="alice")}

        user_connections: user_id -> connection_id of the most recently
                          authenticated connection of that user
                          Example: {1: "9f1c..."}

    A user may hold several connections at once; the newest one is treated
    as canonical for directed delivery. The registry never emits events,
    callers decide when to broadcast.
    """

    def __init__(self) -> None:
        self.connections: Dict[str, Connection] = {}
        self.identities: Dict[str, UserIdentity] = {}
        self.user_connections: Dict[int, str] = {}

    def add(self, connection: Connection) -> None:
        self.connections[connection.id] = connection
        logger.info("✓ Connection %s opened. Total: %d", connection.id[:8], len(self.connections))

    def remove(self, connection_id: str) -> Optional[UserIdentity]:
        """Forget a closed transport connection, including its identity binding."""
        identity = self.unregister(connection_id)
        connection = self.connections.pop(connection_id, None)
        if connection is not None:
            logger.info("✗ Connection %s closed. Total: %d", connection_id[:8], len(self.connections))
        return identity

    def register(self, connection_id: str, user_id: int, username: str) -> UserIdentity:
        """
        Bind an identity to a connection.

        Overwrites any previous binding of the same connection and moves the
        user's canonical pointer to it (last write wins).
        """
        previous = self.identities.get(connection_id)
        if previous is not None and previous.id != user_id:
            self._clear_pointer(previous.id, connection_id)

        identity = UserIdentity(id=user_id, username=username)
        self.identities[connection_id] = identity
        self.user_connections[user_id] = connection_id

        connection = self.connections.get(connection_id)
        if connection is not None:
            connection.user_id = user_id
            connection.username = username
        return identity

    def unregister(self, connection_id: str) -> Optional[UserIdentity]:
        identity = self.identities.pop(connection_id, None)
        if identity is None:
            return None
        self._clear_pointer(identity.id, connection_id)
        return identity

    def _clear_pointer(self, user_id: int, connection_id: str) -> None:
        # A newer connection of the same user may already own the pointer
        if self.user_connections.get(user_id) == connection_id:
            del self.user_connections[user_id]

    def get(self, connection_id: str) -> Optional[Connection]:
        return self.connections.get(connection_id)

    def lookup_by_username(self, username: str) -> Optional[Connection]:
        for connection_id, identity in self.identities.items():
            if identity.username == username:
                return self.connections.get(connection_id)
        return None

    def connection_for_user(self, user_id: int) -> Optional[Connection]:
        connection_id = self.user_connections.get(user_id)
        if connection_id is None:
            return None
        return self.connections.get(connection_id)

    def is_online(self, user_id: int) -> bool:
        return any(identity.id == user_id for identity in self.identities.values())

    def snapshot(self) -> List[UserIdentity]:
        """Online users, one entry per user id, in first-seen order."""
        seen: Dict[int, UserIdentity] = {}
        for identity in self.identities.values():
            seen.setdefault(identity.id, identity)
        return list(seen.values())

    def all(self) -> List[Connection]:
        return list(self.connections.values())
