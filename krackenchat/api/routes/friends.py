# krackenchat/api/routes/friends.py

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request

from krackenchat.core.errors import StoreError
from krackenchat.models.models import FriendEntry, UserIdentity
from krackenchat.services.auth_service import get_current_user

router = APIRouter(prefix="/api/friends", tags=["Friends"])


@router.get("", response_model=List[FriendEntry])
async def get_friends(request: Request, current_user: UserIdentity = Depends(get_current_user)):
    """Friends and pending requests of the caller, in either direction."""
    try:
        return await request.app.state.chat.store.list_friends(current_user.id)
    except StoreError:
        raise HTTPException(status_code=500, detail="Failed to load friends")
