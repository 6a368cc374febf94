# krackenchat/services/room_store.py

from __future__ import annotations

import contextlib
import logging
import threading
from typing import Callable, List, Optional, Protocol, TypeVar

from sqlalchemy import case, create_engine, or_, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool
from starlette.concurrency import run_in_threadpool

from krackenchat.core.errors import StoreError
from krackenchat.models.models import ChatMessage, FriendEntry, Room, StoredMessage, UserIdentity
from krackenchat.models.tables import (
    Base,
    ChatRoomRow,
    FriendRow,
    MessageRow,
    ParticipantRow,
    UserRow,
    utcnow,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RoomStore(Protocol):
    """Durable storage the chat core talks to. Every call may suspend."""

    async def get_user(self, user_id: int) -> Optional[UserIdentity]: ...
    async def find_user_by_username(self, username: str) -> Optional[int]: ...
    async def touch_last_seen(self, user_id: int) -> None: ...
    async def insert_message(self, user_id: int, room_id: int, content: str) -> StoredMessage: ...
    async def fetch_recent_messages(self, room_id: int, limit: int) -> List[ChatMessage]: ...
    async def find_direct_room(self, user_a: int, user_b: int) -> Optional[Room]: ...
    async def create_direct_room(self, user_a: int, user_b: int) -> Room: ...
    async def join_room_membership(self, room_id: int, user_id: int) -> None: ...
    async def is_room_member(self, room_id: int, user_id: int) -> bool: ...
    async def list_user_rooms(self, user_id: int) -> List[Room]: ...
    async def list_friends(self, user_id: int) -> List[FriendEntry]: ...
    async def add_friend_request(self, user_a: int, user_b: int) -> bool: ...
    async def set_friend_status(self, user_a: int, user_b: int, status: str) -> bool: ...


def normalize_database_url(url: str) -> str:
    """Hosted Postgres providers hand out postgres:// URLs; SQLAlchemy wants a driver."""
    if url.startswith("postgres://"):
        return "postgresql+psycopg://" + url[len("postgres://"):]
    if url.startswith("postgresql://"):
        return "postgresql+psycopg://" + url[len("postgresql://"):]
    return url


def direct_key(user_a: int, user_b: int) -> str:
    low, high = sorted((int(user_a), int(user_b)))
    return f"{low}:{high}"


# ============================================================================
# SQLALCHEMY ROOM STORE
# ============================================================================

class SqlRoomStore:
    """
    Room store backed by a relational database through SQLAlchemy.

    The engine is synchronous; each public coroutine hands its work to the
    Starlette threadpool so a slow query only suspends the event that issued
    it. SQLite connections are serialised with a lock since a single
    connection may be shared between threads (in-memory databases).

    Storage:
        users                   identities, referenced by id
        chat_rooms              general and direct rooms; direct rooms carry
                                a unique "low:high" direct_key
        chat_room_participants  (room_id, user_id), unique
        messages                persisted messages of numeric rooms
        friends                 one row per pair, lower id in user_id

    Usage:
        store = SqlRoomStore.from_url("sqlite:///./krackenchat.db")
        await store.init_schema()
    """

    def __init__(self, engine: Engine, general_room_id: int = 1) -> None:
        self.engine = engine
        self.general_room_id = general_room_id
        self._sessions = sessionmaker(bind=engine, expire_on_commit=False)
        self._lock = threading.Lock() if engine.dialect.name == "sqlite" else None

    @classmethod
    def from_url(cls, url: str, general_room_id: int = 1) -> "SqlRoomStore":
        url = normalize_database_url(url)
        if url.startswith("sqlite"):
            kwargs = {"connect_args": {"check_same_thread": False}}
            if url in ("sqlite://", "sqlite:///:memory:"):
                kwargs["poolclass"] = StaticPool
            engine = create_engine(url, **kwargs)
        else:
            engine = create_engine(url, pool_pre_ping=True)
        return cls(engine, general_room_id=general_room_id)

    async def _run(self, fn: Callable[..., T], *args) -> T:
        try:
            return await run_in_threadpool(self._locked, fn, *args)
        except SQLAlchemyError as e:
            logger.error("Room store failure in %s: %s", fn.__name__, e)
            raise StoreError(str(e)) from e

    def _locked(self, fn: Callable[..., T], *args) -> T:
        guard = self._lock if self._lock is not None else contextlib.nullcontext()
        with guard:
            return fn(*args)

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    async def init_schema(self) -> None:
        """Create tables and seed the general room."""
        await self._run(self._init_schema)

    def _init_schema(self) -> None:
        Base.metadata.create_all(self.engine)
        with self._sessions() as session:
            if session.get(ChatRoomRow, self.general_room_id) is None:
                session.add(
                    ChatRoomRow(id=self.general_room_id, name="General Chat", room_type="general")
                )
                session.commit()
                logger.info("✓ Seeded general room %s", self.general_room_id)

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def create_user(self, username: str) -> UserIdentity:
        return await self._run(self._create_user, username)

    def _create_user(self, username: str) -> UserIdentity:
        with self._sessions() as session:
            row = UserRow(username=username)
            session.add(row)
            session.commit()
            return UserIdentity(id=row.id, username=row.username)

    async def get_user(self, user_id: int) -> Optional[UserIdentity]:
        return await self._run(self._get_user, user_id)

    def _get_user(self, user_id: int) -> Optional[UserIdentity]:
        with self._sessions() as session:
            row = session.get(UserRow, user_id)
            if row is None:
                return None
            return UserIdentity(id=row.id, username=row.username)

    async def find_user_by_username(self, username: str) -> Optional[int]:
        return await self._run(self._find_user_by_username, username)

    def _find_user_by_username(self, username: str) -> Optional[int]:
        with self._sessions() as session:
            return session.scalar(select(UserRow.id).where(UserRow.username == username).limit(1))

    async def touch_last_seen(self, user_id: int) -> None:
        await self._run(self._touch_last_seen, user_id)

    def _touch_last_seen(self, user_id: int) -> None:
        with self._sessions() as session:
            session.execute(update(UserRow).where(UserRow.id == user_id).values(last_seen=utcnow()))
            session.commit()

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def insert_message(self, user_id: int, room_id: int, content: str) -> StoredMessage:
        return await self._run(self._insert_message, user_id, room_id, content)

    def _insert_message(self, user_id: int, room_id: int, content: str) -> StoredMessage:
        with self._sessions() as session:
            row = MessageRow(user_id=user_id, room_id=room_id, content=content)
            session.add(row)
            session.commit()
            return StoredMessage(id=row.id, timestamp=row.timestamp)

    async def fetch_recent_messages(self, room_id: int, limit: int) -> List[ChatMessage]:
        return await self._run(self._fetch_recent_messages, room_id, limit)

    def _fetch_recent_messages(self, room_id: int, limit: int) -> List[ChatMessage]:
        # newest `limit` ids, then re-sorted ascending by the database
        recent = (
            select(MessageRow.id)
            .where(MessageRow.room_id == room_id)
            .order_by(MessageRow.timestamp.desc(), MessageRow.id.desc())
            .limit(limit)
            .subquery()
        )
        stmt = (
            select(MessageRow, UserRow.username)
            .join(UserRow, UserRow.id == MessageRow.user_id)
            .where(MessageRow.id.in_(select(recent.c.id)))
            .order_by(MessageRow.timestamp.asc(), MessageRow.id.asc())
        )
        with self._sessions() as session:
            return [
                ChatMessage(
                    id=row.id,
                    user_id=row.user_id,
                    username=username,
                    room_id=row.room_id,
                    content=row.content,
                    timestamp=row.timestamp,
                )
                for row, username in session.execute(stmt)
            ]

    # ------------------------------------------------------------------
    # Rooms
    # ------------------------------------------------------------------

    async def find_direct_room(self, user_a: int, user_b: int) -> Optional[Room]:
        return await self._run(self._find_direct_room, direct_key(user_a, user_b))

    def _find_direct_room(self, key: str) -> Optional[Room]:
        with self._sessions() as session:
            row = session.scalar(select(ChatRoomRow).where(ChatRoomRow.direct_key == key))
            if row is None:
                return None
            return Room(id=row.id, name=row.name, room_type=row.room_type)

    async def create_direct_room(self, user_a: int, user_b: int) -> Room:
        return await self._run(self._create_direct_room, user_a, user_b)

    def _create_direct_room(self, user_a: int, user_b: int) -> Room:
        low, high = sorted((int(user_a), int(user_b)))
        key = direct_key(low, high)
        with self._sessions() as session:
            room = ChatRoomRow(
                name=f"Direct {low}-{high}",
                room_type="direct",
                created_by=low,
                direct_key=key,
            )
            session.add(room)
            try:
                session.flush()
                session.add(ParticipantRow(room_id=room.id, user_id=low))
                session.add(ParticipantRow(room_id=room.id, user_id=high))
                session.commit()
            except IntegrityError:
                # Another writer created the pair's room first
                session.rollback()
                existing = self._find_direct_room(key)
                if existing is None:
                    raise
                return existing
            logger.info("✓ Created direct room %s for %s", room.id, key)
            return Room(id=room.id, name=room.name, room_type=room.room_type)

    async def join_room_membership(self, room_id: int, user_id: int) -> None:
        await self._run(self._join_room_membership, room_id, user_id)

    def _join_room_membership(self, room_id: int, user_id: int) -> None:
        with self._sessions() as session:
            exists = session.scalar(
                select(ParticipantRow.id).where(
                    ParticipantRow.room_id == room_id, ParticipantRow.user_id == user_id
                )
            )
            if exists is not None:
                return
            session.add(ParticipantRow(room_id=room_id, user_id=user_id))
            try:
                session.commit()
            except IntegrityError:
                session.rollback()

    async def is_room_member(self, room_id: int, user_id: int) -> bool:
        return await self._run(self._is_room_member, room_id, user_id)

    def _is_room_member(self, room_id: int, user_id: int) -> bool:
        with self._sessions() as session:
            return session.scalar(
                select(ParticipantRow.id).where(
                    ParticipantRow.room_id == room_id, ParticipantRow.user_id == user_id
                )
            ) is not None

    async def list_user_rooms(self, user_id: int) -> List[Room]:
        return await self._run(self._list_user_rooms, user_id)

    def _list_user_rooms(self, user_id: int) -> List[Room]:
        stmt = (
            select(ChatRoomRow)
            .join(ParticipantRow, ParticipantRow.room_id == ChatRoomRow.id)
            .where(ParticipantRow.user_id == user_id)
            .order_by(ChatRoomRow.id.asc())
        )
        with self._sessions() as session:
            return [
                Room(id=row.id, name=row.name, room_type=row.room_type)
                for row in session.scalars(stmt)
            ]

    # ------------------------------------------------------------------
    # Friends
    # ------------------------------------------------------------------

    async def list_friends(self, user_id: int) -> List[FriendEntry]:
        return await self._run(self._list_friends, user_id)

    def _list_friends(self, user_id: int) -> List[FriendEntry]:
        other = case((FriendRow.user_id == user_id, FriendRow.friend_id), else_=FriendRow.user_id)
        stmt = (
            select(UserRow.id, UserRow.username, FriendRow.status)
            .select_from(FriendRow)
            .join(UserRow, UserRow.id == other)
            .where(or_(FriendRow.user_id == user_id, FriendRow.friend_id == user_id))
            .order_by(UserRow.username.asc())
        )
        with self._sessions() as session:
            return [
                FriendEntry(id=row.id, username=row.username, status=row.status)
                for row in session.execute(stmt)
            ]

    async def add_friend_request(self, user_a: int, user_b: int) -> bool:
        return await self._run(self._add_friend_request, user_a, user_b)

    def _add_friend_request(self, user_a: int, user_b: int) -> bool:
        low, high = sorted((int(user_a), int(user_b)))
        with self._sessions() as session:
            exists = session.scalar(
                select(FriendRow.id).where(FriendRow.user_id == low, FriendRow.friend_id == high)
            )
            if exists is not None:
                return False
            session.add(FriendRow(user_id=low, friend_id=high, status="pending"))
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                return False
            return True

    async def set_friend_status(self, user_a: int, user_b: int, status: str) -> bool:
        return await self._run(self._set_friend_status, user_a, user_b, status)

    def _set_friend_status(self, user_a: int, user_b: int, status: str) -> bool:
        low, high = sorted((int(user_a), int(user_b)))
        with self._sessions() as session:
            result = session.execute(
                update(FriendRow)
                .where(FriendRow.user_id == low, FriendRow.friend_id == high)
                .values(status=status)
            )
            session.commit()
            return result.rowcount > 0
