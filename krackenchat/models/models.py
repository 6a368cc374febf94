# krackenchat/models/models.py
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class UserIdentity(BaseModel):
    id: int
    username: str


class Room(BaseModel):
    id: int
    name: str
    room_type: str = "general"


class ChatMessage(BaseModel):
    """A message as broadcast to clients and replayed in room history."""

    model_config = ConfigDict(populate_by_name=True)

    id: Union[int, str]
    user_id: int = Field(alias="userId")
    username: str
    room_id: Union[int, str] = Field(alias="roomId")
    content: str
    timestamp: datetime

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class StoredMessage(BaseModel):
    id: int
    timestamp: datetime


class InvitationStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    CANCELLED = "cancelled"


class Invitation(BaseModel):
    id: str
    from_username: str
    to_username: str
    status: InvitationStatus = InvitationStatus.PENDING


class FriendEntry(BaseModel):
    id: int
    username: str
    status: str


# ============================================================================
# INBOUND SOCKET PAYLOADS
# ============================================================================

class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class AuthenticateRequest(_Payload):
    token: str


class RoomRequest(_Payload):
    room_id: Optional[Any] = Field(default=None, alias="roomId")


class SendMessageRequest(_Payload):
    room_id: Optional[Any] = Field(default=None, alias="roomId")
    content: Optional[Any] = ""


class InviteRequest(_Payload):
    target_username: Optional[str] = Field(default="", alias="targetUsername")


class InvitationResponseRequest(_Payload):
    invitation_id: Optional[str] = Field(default="", alias="invitationId")
    response: Optional[str] = ""


class FriendRequest(_Payload):
    username: Optional[str] = ""


class FriendResponseRequest(_Payload):
    from_username: Optional[str] = Field(default="", alias="from")
    accept: bool = False
