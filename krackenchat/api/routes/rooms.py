# krackenchat/api/routes/rooms.py

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from krackenchat.core.errors import StoreError
from krackenchat.models.models import ChatMessage, Room, UserIdentity
from krackenchat.services.auth_service import get_current_user

router = APIRouter(prefix="/api/rooms", tags=["Rooms"])

# ============================================================================
# ROOM ENDPOINTS
# ============================================================================

@router.get("", response_model=List[Room])
async def list_rooms(request: Request, current_user: UserIdentity = Depends(get_current_user)):
    """
    List the persistent rooms the caller is enrolled in.

    Returns:
        List[Room]: General room plus any direct rooms, ordered by id
    """
    try:
        return await request.app.state.chat.store.list_user_rooms(current_user.id)
    except StoreError:
        raise HTTPException(status_code=500, detail="Failed to load rooms")


@router.get("/{room_id}/messages")
async def room_messages(
    room_id: int,
    request: Request,
    limit: int = Query(50, ge=1, le=200),
    current_user: UserIdentity = Depends(get_current_user),
):
    """
    Recent history of a persistent room, oldest message first.

    Raises:
        HTTPException: 403 if the caller is not a participant (the general
                       room is open to everyone). The socket join_room
                       action does not check participation.
    """
    chat = request.app.state.chat
    try:
        if room_id != chat.general_room_id and not await chat.store.is_room_member(room_id, current_user.id):
            raise HTTPException(status_code=403, detail="Not a member of this room")
        messages: List[ChatMessage] = await chat.store.fetch_recent_messages(room_id, limit)
    except StoreError:
        raise HTTPException(status_code=500, detail="Failed to load messages")

    return {"roomId": room_id, "messages": [message.to_wire() for message in messages]}
