# krackenchat/services/presence.py

from __future__ import annotations

from typing import List
import logging

from krackenchat.services.connection_manager import ConnectionRegistry

logger = logging.getLogger(__name__)


class PresenceBroadcaster:
    """
    Publishes the online-user list to every open connection.

    Always a full refresh rather than a delta; presence sets are small. Sends
    are fire-and-forget, a dead socket simply misses the update.
    """

    def __init__(self, registry: ConnectionRegistry) -> None:
        self.registry = registry

    async def broadcast_online_users(self) -> List[dict]:
        users = [identity.model_dump() for identity in self.registry.snapshot()]
        connections = self.registry.all()

        logger.info("👥 Presence: %d online, notifying %d connections", len(users), len(connections))

        for connection in connections:
            await connection.send("online_users", users=users)
        return users
