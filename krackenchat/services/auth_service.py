"""
Bearer token authentication.

Tokens are issued elsewhere (the login endpoints of the web app); this module
only verifies them:

- WebSocket: `authenticate_with_token` resolves a token to a user identity
- REST: `get_current_user` dependency reads `Authorization: Bearer <token>`
"""

from typing import Any, Dict, Optional, Protocol

from fastapi import HTTPException, Request, status
from jose import JWTError, jwt

from krackenchat.core.errors import InvalidCredential, StoreError
from krackenchat.core.logging import get_logger
from krackenchat.models.models import UserIdentity
from krackenchat.services.room_store import RoomStore

logger = get_logger(__name__)


class IdentityResolver(Protocol):
    async def resolve(self, token: str) -> UserIdentity: ...


class JwtIdentityResolver:
    """Verify an HS256 (by default) JWT and load the user it names."""

    def __init__(self, secret: str, algorithm: str, store: RoomStore) -> None:
        self.secret = secret
        self.algorithm = algorithm
        self.store = store

    def decode(self, token: str) -> Dict[str, Any]:
        try:
            return jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except JWTError as e:
            logger.warning(f"Token rejected: {e}")
            raise InvalidCredential() from e

    async def resolve(self, token: str) -> UserIdentity:
        if not token:
            raise InvalidCredential()

        claims = self.decode(token)
        raw_user_id = claims.get("userId", claims.get("sub"))
        try:
            user_id = int(raw_user_id)
        except (TypeError, ValueError):
            raise InvalidCredential("Token has no user id")

        try:
            user = await self.store.get_user(user_id)
        except StoreError as e:
            raise InvalidCredential("Could not verify user") from e
        if user is None:
            raise InvalidCredential("User not found")
        return user


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def get_current_user(request: Request) -> UserIdentity:
    """
    Get current authenticated user from the bearer token.
    Use as dependency for protected endpoints.
    """
    token = _bearer_token(request)
    if not token:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Not authenticated")

    try:
        return await request.app.state.chat.resolver.resolve(token)
    except InvalidCredential as e:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, e.message)
