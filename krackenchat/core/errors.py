# krackenchat/core/errors.py

from __future__ import annotations


class ChatError(Exception):
    """
    Base class for every error reported back over the socket.

    Each subclass carries a stable ``code`` that clients can switch on and a
    default human readable message. Errors are only ever sent to the
    connection that triggered them.
    """

    code: str = "ChatError"
    default_message: str = "Request failed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_payload(self) -> dict:
        return {"code": self.code, "message": self.message}


class NotAuthenticated(ChatError):
    code = "NotAuthenticated"
    default_message = "Not authenticated"


class InvalidCredential(ChatError):
    code = "InvalidCredential"
    default_message = "Invalid token"


class InvalidPayload(ChatError):
    code = "InvalidPayload"
    default_message = "Invalid request"


class EmptyMessage(ChatError):
    code = "EmptyMessage"
    default_message = "Message cannot be empty"


class SelfInvite(ChatError):
    code = "SelfInvite"
    default_message = "Cannot invite yourself"


class TargetOffline(ChatError):
    code = "TargetOffline"
    default_message = "Target user is not online"


class InvitationNotFound(ChatError):
    code = "InvitationNotFound"
    default_message = "Invitation not found or expired"


class NotRecipient(ChatError):
    code = "NotRecipient"
    default_message = "You are not the invitation recipient"


class ProposerNotFound(ChatError):
    code = "ProposerNotFound"
    default_message = "Initiator user not found"


class UserNotFound(ChatError):
    code = "UserNotFound"
    default_message = "User not found"


class SelfFriendRequest(ChatError):
    code = "SelfFriendRequest"
    default_message = "Cannot add yourself"


class ServerError(ChatError):
    code = "ServerError"
    default_message = "Internal server error"


class StoreError(Exception):
    """Raised by room store implementations when the database call fails."""
