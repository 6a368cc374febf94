# krackenchat/services/invitations.py

from __future__ import annotations

from typing import Dict, List, Optional
from uuid import uuid4
import logging

from krackenchat.core.errors import (
    InvalidPayload,
    InvitationNotFound,
    NotAuthenticated,
    NotRecipient,
    ProposerNotFound,
    SelfInvite,
    ServerError,
    StoreError,
    TargetOffline,
)
from krackenchat.models.models import Invitation, InvitationStatus, Room
from krackenchat.models.rooms import PersistentRoom
from krackenchat.services.connection_manager import Connection, ConnectionRegistry
from krackenchat.services.room_manager import RoomMembershipManager
from krackenchat.services.room_store import RoomStore

logger = logging.getLogger(__name__)

ACCEPT = "accept"
REJECT = "reject"

# ============================================================================
# INVITATION COORDINATOR
# ============================================================================

class InvitationCoordinator:
    """
    Runs the direct-chat invitation handshake.

        propose  -> pending
        respond  -> accepted (direct room created or reused, both joined)
                 -> declined (proposer told)
        offline  -> cancelled (other party told)

    Invitations live in process memory only and are deleted once resolved,
    so an unknown id and an already-answered id look the same to clients.
    An accept claims the invitation before touching the store; a
    cancellation that lands while the store calls run wins over it.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        rooms: RoomMembershipManager,
        store: RoomStore,
    ) -> None:
        self.registry = registry
        self.rooms = rooms
        self.store = store
        self.invitations: Dict[str, Invitation] = {}

    def get(self, invitation_id: str) -> Optional[Invitation]:
        return self.invitations.get(invitation_id)

    async def propose(self, connection: Connection, target_username: Optional[str]) -> Invitation:
        if not connection.authenticated:
            raise NotAuthenticated()

        target_username = (target_username or "").strip()
        if not target_username:
            raise InvalidPayload("Target username is required")
        if target_username == connection.username:
            raise SelfInvite()

        target = self.registry.lookup_by_username(target_username)
        if target is None:
            raise TargetOffline()

        invitation = Invitation(
            id=uuid4().hex,
            from_username=connection.username,
            to_username=target_username,
        )
        self.invitations[invitation.id] = invitation
        logger.info("✉ Invitation %s: %s -> %s", invitation.id[:8], invitation.from_username, target_username)

        await target.send("invitation-received", invitationId=invitation.id, **{"from": connection.username})
        await connection.send("invitation-sent", invitationId=invitation.id, to=target_username)
        return invitation

    async def respond(
        self,
        connection: Connection,
        invitation_id: Optional[str],
        decision: Optional[str],
    ) -> Optional[Room]:
        """
        Resolve a pending invitation on behalf of its recipient.

        Returns:
            The direct room on accept, None on reject
        """
        invitation_id = (invitation_id or "").strip()
        decision = (decision or "").strip()
        if not invitation_id or not decision:
            raise InvalidPayload("Invalid invitation response")

        invitation = self.invitations.get(invitation_id)
        if invitation is None or invitation.status != InvitationStatus.PENDING:
            raise InvitationNotFound()
        if not connection.username or connection.username != invitation.to_username:
            raise NotRecipient()

        if decision == REJECT:
            await self._decline(connection, invitation)
            return None
        if decision == ACCEPT:
            return await self._accept(connection, invitation)
        raise InvalidPayload("Unknown response type")

    async def _decline(self, connection: Connection, invitation: Invitation) -> None:
        invitation.status = InvitationStatus.DECLINED
        self.invitations.pop(invitation.id, None)
        logger.info("✗ Invitation %s declined by %s", invitation.id[:8], connection.username)

        proposer = self.registry.lookup_by_username(invitation.from_username)
        if proposer is not None:
            await proposer.send("invitation-declined", invitationId=invitation.id, by=connection.username)

    async def _accept(self, connection: Connection, invitation: Invitation) -> Room:
        # Claimed before the first await; a second accept sees it as resolved
        invitation.status = InvitationStatus.ACCEPTED
        try:
            # The proposer may have reconnected since proposing; re-resolve by name
            proposer_id = await self.store.find_user_by_username(invitation.from_username)
            if proposer_id is None:
                self.invitations.pop(invitation.id, None)
                raise ProposerNotFound()
            room = await self.get_or_create_direct_room(proposer_id, connection.user_id)
        except StoreError as e:
            if invitation.status == InvitationStatus.ACCEPTED:
                invitation.status = InvitationStatus.PENDING
            raise ServerError("Failed to process invitation response") from e

        # Either party may have gone offline while the store calls ran
        if invitation.status == InvitationStatus.CANCELLED:
            raise InvitationNotFound()
        self.invitations.pop(invitation.id, None)

        ref = PersistentRoom(room.id)
        self.rooms.subscribe(connection, ref)
        proposer = self.registry.lookup_by_username(invitation.from_username)
        if proposer is not None:
            self.rooms.subscribe(proposer, ref)

        logger.info(
            "✓ Invitation %s accepted: %s <-> %s in room %s",
            invitation.id[:8], invitation.from_username, connection.username, room.id,
        )

        started = {"chatId": room.id, "name": room.name, "roomType": room.room_type}
        await connection.send("chat-started", **started)
        if proposer is not None:
            await proposer.send("chat-started", **started)
        return room

    async def get_or_create_direct_room(self, user_a: int, user_b: int) -> Room:
        low, high = sorted((int(user_a), int(user_b)))
        room = await self.store.find_direct_room(low, high)
        if room is None:
            room = await self.store.create_direct_room(low, high)
        return room

    async def cancel_for_user(self, username: str) -> List[Invitation]:
        """
        Drop every pending invitation a now-offline user sent or received and
        tell the other party, if still connected.
        """
        cancelled = [
            invitation
            for invitation in self.invitations.values()
            if username in (invitation.from_username, invitation.to_username)
        ]
        for invitation in cancelled:
            invitation.status = InvitationStatus.CANCELLED
            self.invitations.pop(invitation.id, None)
            other = (
                invitation.to_username
                if invitation.from_username == username
                else invitation.from_username
            )
            counterpart = self.registry.lookup_by_username(other)
            if counterpart is not None:
                await counterpart.send("invitation-cancelled", invitationId=invitation.id, by=username)

        if cancelled:
            logger.info("✗ Cancelled %d pending invitation(s) of %s", len(cancelled), username)
        return cancelled
