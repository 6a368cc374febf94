# krackenchat/services/chat_service.py

from __future__ import annotations

from datetime import datetime, timezone
import logging

from fastapi import WebSocket

from krackenchat.core.errors import InvalidCredential, ServerError, StoreError
from krackenchat.models.models import UserIdentity
from krackenchat.services.auth_service import IdentityResolver
from krackenchat.services.connection_manager import Connection, ConnectionRegistry
from krackenchat.services.friends import FriendsManager
from krackenchat.services.invitations import InvitationCoordinator
from krackenchat.services.presence import PresenceBroadcaster
from krackenchat.services.room_manager import RoomMembershipManager
from krackenchat.services.room_store import RoomStore

logger = logging.getLogger(__name__)


class ChatService:
    """
    Owns all live chat state for one application instance.

    The registry, channel map and invitation table are plain attributes of
    this object, so several independent instances can coexist (one per app,
    one per test). Handlers receive the service explicitly.

    Lifecycle of a connection:
        1. connect()       socket accepted, anonymous
        2. authenticate()  identity bound, presence broadcast
        3. join / message / invite through the managers
        4. disconnect()    channels dropped, presence broadcast
    """

    def __init__(
        self,
        store: RoomStore,
        resolver: IdentityResolver,
        general_room_id: int = 1,
        history_limit: int = 50,
    ) -> None:
        self.store = store
        self.resolver = resolver
        self.general_room_id = general_room_id

        self.registry = ConnectionRegistry()
        self.presence = PresenceBroadcaster(self.registry)
        self.rooms = RoomMembershipManager(
            self.registry, store, general_room_id=general_room_id, history_limit=history_limit
        )
        self.invitations = InvitationCoordinator(self.registry, self.rooms, store)
        self.friends = FriendsManager(self.registry, store)

        self.started_at = datetime.now(timezone.utc)
        self.message_counter = 0

    async def connect(self, websocket: WebSocket) -> Connection:
        await websocket.accept()
        connection = Connection(websocket)
        self.registry.add(connection)
        return connection

    async def authenticate(self, connection: Connection, token: str) -> UserIdentity:
        """
        Bind the connection to the user named by ``token``.

        On success the client gets ``token_auth_success`` and its room list,
        then everyone gets a fresh presence list.
        """
        try:
            user = await self.resolver.resolve(token)
        except InvalidCredential:
            raise
        except Exception as e:
            logger.error("Token authentication error: %s", e)
            raise InvalidCredential() from e

        # Bind only once the store work has succeeded
        try:
            await self.store.touch_last_seen(user.id)
            await self.store.join_room_membership(self.general_room_id, user.id)
            rooms = await self.store.list_user_rooms(user.id)
        except StoreError as e:
            raise ServerError("Failed to load user rooms") from e

        if connection.closed:
            return user
        self.registry.register(connection.id, user.id, user.username)
        logger.info("🔑 %s authenticated on %s", user.username, connection.id[:8])

        await connection.send("token_auth_success", success=True, user=user.model_dump())
        await connection.send("user_rooms", rooms=[room.model_dump() for room in rooms])
        await self.presence.broadcast_online_users()
        return user

    async def disconnect(self, connection: Connection) -> None:
        connection.closed = True
        self.rooms.drop_connection(connection)
        identity = self.registry.remove(connection.id)

        if identity is not None and not self.registry.is_online(identity.id):
            await self.invitations.cancel_for_user(identity.username)

        await self.presence.broadcast_online_users()
