# krackenchat/api/routes/health.py

from datetime import datetime, timezone

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/health")
async def health(request: Request):
    """
    Health check endpoint.

    Returns current system status and the size of the in-memory chat state.
    Used by the hosting platform's health probes and monitoring.

    Returns:
        dict: Status, connection count, online users, active channels,
              pending invitations, messages handled since start
    """
    chat = request.app.state.chat
    uptime = datetime.now(timezone.utc) - chat.started_at
    return {
        "status": "healthy",
        "connections": len(chat.registry.connections),
        "online_users": len(chat.registry.snapshot()),
        "active_rooms_with_members": len(chat.rooms.channels),
        "rooms": chat.rooms.get_rooms_info(),
        "pending_invitations": len(chat.invitations.invitations),
        "messages_handled": chat.message_counter,
        "uptime_seconds": int(uptime.total_seconds()),
    }
