# krackenchat/main.py

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from krackenchat.core.config import Settings, settings as default_settings
from krackenchat.core.logging import setup_logging, get_logger
from krackenchat.api.routes import root, health, rooms, friends
from krackenchat.api import websocket as websocket_module
from krackenchat.services.auth_service import IdentityResolver, JwtIdentityResolver
from krackenchat.services.chat_service import ChatService
from krackenchat.services.room_store import RoomStore, SqlRoomStore

# Configure logging first
setup_logging()
logger = get_logger(__name__)


def create_app(
    settings: Settings = default_settings,
    store: Optional[RoomStore] = None,
    resolver: Optional[IdentityResolver] = None,
) -> FastAPI:
    """
    Build one application instance with its own chat state.

    Args:
        settings: configuration, defaults to the environment
        store: room store override (tests pass an in-memory SQLite store)
        resolver: identity resolver override
    """
    if store is None:
        store = SqlRoomStore.from_url(settings.DATABASE_URL, general_room_id=settings.GENERAL_ROOM_ID)
    if resolver is None:
        resolver = JwtIdentityResolver(settings.JWT_SECRET, settings.JWT_ALGORITHM, store)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("🚀 Application starting - chat rooms and invitations enabled")
        init_schema = getattr(store, "init_schema", None)
        if init_schema is not None:
            await init_schema()
        yield
        close = getattr(store, "close", None)
        if close is not None:
            close()
        logger.info("Application stopped")

    app = FastAPI(title="Kracken Chat", lifespan=lifespan)
    app.state.chat = ChatService(
        store=store,
        resolver=resolver,
        general_room_id=settings.GENERAL_ROOM_ID,
        history_limit=settings.HISTORY_LIMIT,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # REST routes
    app.include_router(root.router)
    app.include_router(health.router)
    app.include_router(rooms.router)
    app.include_router(friends.router)

    # WebSocket routes
    app.include_router(websocket_module.router)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("krackenchat.main:app", host="0.0.0.0", port=8000)
