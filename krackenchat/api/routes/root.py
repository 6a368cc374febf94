# krackenchat/api/routes/root.py

from fastapi import APIRouter

router = APIRouter()


@router.get("/")
async def root():
    """
    Root endpoint - API information.

    Returns basic info about the API and its features.
    """
    return {
        "message": "Kracken Chat",
        "version": "1.0",
        "features": ["presence", "rooms", "ephemeral_rooms", "direct_invitations", "friends"],
        "endpoints": {
            "websocket": "/ws",
            "rooms": "/api/rooms",
            "friends": "/api/friends",
            "health": "/health",
        },
    }
