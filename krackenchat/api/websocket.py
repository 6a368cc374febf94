# krackenchat/api/websocket.py

from __future__ import annotations

import json
import logging
from typing import Any, Type, TypeVar

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, ValidationError

from krackenchat.core.errors import ChatError, InvalidPayload, ServerError
from krackenchat.models.models import (
    AuthenticateRequest,
    FriendRequest,
    FriendResponseRequest,
    InvitationResponseRequest,
    InviteRequest,
    RoomRequest,
    SendMessageRequest,
)
from krackenchat.services.chat_service import ChatService
from krackenchat.services.connection_manager import Connection

logger = logging.getLogger(__name__)

router = APIRouter()

P = TypeVar("P", bound=BaseModel)


def _payload(model: Type[P], data: Any) -> P:
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise InvalidPayload("Expected an object in 'data'")
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise InvalidPayload(f"Invalid payload: {e.errors()[0].get('msg', 'bad value')}") from e


# ============================================================================
# ACTION DISPATCH
# ============================================================================

async def handle_action(service: ChatService, connection: Connection, message: Any) -> None:
    """
    Route one decoded client frame to the matching chat operation.

    Every ChatError is reported to this connection only; the socket stays
    open whatever happens.
    """
    action = message.get("action") if isinstance(message, dict) else None
    data = message.get("data") if isinstance(message, dict) else None
    logger.info("Websocket input from %s: action=%s", connection.label, action)

    try:
        if not isinstance(message, dict):
            raise InvalidPayload("Expected a JSON object")

        if action == "authenticate_with_token":
            payload = _payload(AuthenticateRequest, data)
            await service.authenticate(connection, payload.token)

        elif action == "join_room":
            payload = _payload(RoomRequest, data)
            await service.rooms.join_room(connection, payload.room_id)

        elif action == "leave_room":
            payload = _payload(RoomRequest, data)
            await service.rooms.leave_room(connection, payload.room_id)

        elif action == "send_message":
            payload = _payload(SendMessageRequest, data)
            await service.rooms.send_message(connection, payload.room_id, payload.content)
            service.message_counter += 1

        elif action == "invite-user":
            payload = _payload(InviteRequest, data)
            await service.invitations.propose(connection, payload.target_username)

        elif action == "respond-to-invitation":
            payload = _payload(InvitationResponseRequest, data)
            await service.invitations.respond(connection, payload.invitation_id, payload.response)

        elif action == "friends:list":
            await service.friends.list_friends(connection)

        elif action == "friends:request":
            payload = _payload(FriendRequest, data)
            await service.friends.request(connection, payload.username)

        elif action == "friends:respond":
            payload = _payload(FriendResponseRequest, data)
            await service.friends.respond(connection, payload.from_username, payload.accept)

        else:
            raise InvalidPayload(f"Unknown action: {action}")

    except ChatError as e:
        logger.info("✗ %s failed for %s: %s", action, connection.label, e.code)
        await connection.send("error", action=action, **e.to_payload())
    except Exception:
        logger.exception("Unhandled error while processing %s", action)
        await connection.send("error", action=action, **ServerError().to_payload())


# ============================================================================
# WEBSOCKET ENDPOINT
# ============================================================================

@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """
    WebSocket endpoint for real-time chat.

    Protocol:
    =========

    Client -> Server frames are JSON: {"action": "<name>", "data": {...}}
    -------------------------
    Authenticate:
        {"action": "authenticate_with_token", "data": {"token": "<jwt>"}}
        Response: {"type": "token_auth_success", "user": {...}}
                  {"type": "user_rooms", "rooms": [...]}
        Broadcast: {"type": "online_users", "users": [{"id": 1, "username": "alice"}]}

    Join / Leave Room:
        {"action": "join_room", "data": {"roomId": 1}}
        Response: {"type": "room_joined", "roomId": 1, "messages": [...]}
        {"action": "leave_room", "data": {"roomId": "study-group"}}
        Response: {"type": "room_left", "roomId": "study-group", "left": true}

    Send Message:
        {"action": "send_message", "data": {"roomId": 1, "content": "hi"}}
        Broadcast: {"type": "new_message", "id": 7, "userId": 1,
                    "username": "alice", "roomId": 1, "content": "hi",
                    "timestamp": "..."}

    Invitations:
        {"action": "invite-user", "data": {"targetUsername": "bob"}}
        Target: {"type": "invitation-received", "from": "alice", "invitationId": "..."}
        Proposer: {"type": "invitation-sent", "invitationId": "...", "to": "bob"}

        {"action": "respond-to-invitation",
         "data": {"invitationId": "...", "response": "accept" | "reject"}}
        Accept, both: {"type": "chat-started", "chatId": 5, "name": "Direct 1-2", "roomType": "direct"}
        Reject, proposer: {"type": "invitation-declined", "invitationId": "...", "by": "bob"}

    Friends:
        {"action": "friends:list"}
        {"action": "friends:request", "data": {"username": "bob"}}
        {"action": "friends:respond", "data": {"from": "alice", "accept": true}}

    Errors (to the sender only):
        {"type": "error", "action": "...", "code": "NotAuthenticated", "message": "..."}

    Lifecycle:
    ==========
    1. Socket accepted anonymously
    2. Client authenticates with a bearer token
    3. Client joins rooms, sends messages, invites users
    4. On disconnect: removed from all channels, presence re-broadcast
    """
    service: ChatService = websocket.app.state.chat
    connection = await service.connect(websocket)

    try:
        while True:
            data = await websocket.receive_text()

            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                await connection.send("error", action=None, code=InvalidPayload.code, message="Invalid JSON")
                continue

            await handle_action(service, connection, message)

    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error("WebSocket error: %s", e)
    finally:
        await service.disconnect(connection)
