import asyncio
import logging
from datetime import datetime
from typing import Callable

from sqlalchemy import delete, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine
from sqlmodel import select, col

from chat_storage.db import get_engine, get_session
from chat_storage.models import (
    User,
    UpsertUser,
    ChatSession,
    InsertChatSession,
    Message,
    InsertMessage,
    new_id,
    utcnow,
)
from chat_storage.storage import Storage

logger = logging.getLogger(__name__)

# Dialects with native INSERT ... ON CONFLICT DO UPDATE
_UPSERT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class DatabaseStorage(Storage):
    """
    Relational storage on a SQLModel engine.

    Every operation runs its blocking session work in a worker thread and
    commits once, so multi-statement operations are transactional.
    """

    def __init__(self, engine: Engine | None = None, clock: Callable[[], datetime] = utcnow):
        self._engine = engine or get_engine()
        self._clock = clock

    # ============================================================
    # Users
    # ============================================================
    async def get_user(self, user_id: str) -> User | None:
        return await asyncio.to_thread(self._get_user, user_id)

    async def upsert_user(self, user_data: UpsertUser) -> User:
        return await asyncio.to_thread(self._upsert_user, user_data)

    def _get_user(self, user_id: str) -> User | None:
        with get_session(self._engine) as session:
            return session.get(User, user_id)

    def _upsert_user(self, user_data: UpsertUser) -> User:
        now = self._clock()
        fields = user_data.model_dump()
        changes = {k: v for k, v in fields.items() if k != "id"}
        changes["updated_at"] = now

        with get_session(self._engine) as session:
            insert = _UPSERT_INSERTS.get(self._engine.dialect.name)
            if insert is not None:
                stmt = (
                    insert(User.__table__)
                    .values(**fields, created_at=now, updated_at=now)
                    .on_conflict_do_update(index_elements=["id"], set_=changes)
                )
                session.execute(stmt)
                session.commit()
                return session.get(User, user_data.id, populate_existing=True)

            user = session.get(User, user_data.id)
            if user is None:
                user = User(**fields, created_at=now, updated_at=now)
            else:
                user.sqlmodel_update(changes)
            session.add(user)
            session.commit()
            return user

    # ============================================================
    # Chat sessions
    # ============================================================
    async def create_chat_session(self, session: InsertChatSession) -> ChatSession:
        return await asyncio.to_thread(self._create_chat_session, session)

    async def get_chat_session(self, session_id: str) -> ChatSession | None:
        return await asyncio.to_thread(self._get_chat_session, session_id)

    async def get_all_chat_sessions(self, user_id: str) -> list[ChatSession]:
        return await asyncio.to_thread(self._get_all_chat_sessions, user_id)

    async def update_chat_session(self, session_id: str, title: str) -> ChatSession | None:
        return await asyncio.to_thread(self._update_chat_session, session_id, title)

    async def delete_chat_session(self, session_id: str) -> None:
        await asyncio.to_thread(self._delete_chat_session, session_id)

    def _create_chat_session(self, insert_session: InsertChatSession) -> ChatSession:
        now = self._clock()
        chat = ChatSession(
            **insert_session.model_dump(),
            id=new_id("session", now),
            created_at=now,
            updated_at=now,
        )
        with get_session(self._engine) as session:
            session.add(chat)
            session.commit()
        logger.debug("Created chat session %s for user %s", chat.id, chat.user_id)
        return chat

    def _get_chat_session(self, session_id: str) -> ChatSession | None:
        with get_session(self._engine) as session:
            return session.get(ChatSession, session_id)

    # Ties fall back to id, which sorts in creation order (see models.new_id)
    def _get_all_chat_sessions(self, user_id: str) -> list[ChatSession]:
        with get_session(self._engine) as session:
            result = session.exec(
                select(ChatSession)
                .where(ChatSession.user_id == user_id)
                .order_by(col(ChatSession.updated_at).desc(), col(ChatSession.id))
            ).all()
        return list(result)

    def _update_chat_session(self, session_id: str, title: str) -> ChatSession | None:
        with get_session(self._engine) as session:
            chat = session.get(ChatSession, session_id)
            if chat is None:
                return None
            chat.title = title
            chat.updated_at = self._clock()
            session.add(chat)
            session.commit()
            return chat

    def _delete_chat_session(self, session_id: str) -> None:
        # Messages first, so a session row never disappears while its
        # messages remain. Both statements share one transaction.
        with get_session(self._engine) as session:
            removed = session.execute(
                delete(Message).where(col(Message.session_id) == session_id)
            ).rowcount
            session.execute(delete(ChatSession).where(col(ChatSession.id) == session_id))
            session.commit()
        logger.info("Deleted chat session %s (%d messages)", session_id, removed)

    # ============================================================
    # Messages
    # ============================================================
    async def create_message(self, message: InsertMessage) -> Message:
        return await asyncio.to_thread(self._create_message, message)

    async def get_messages_by_session_id(self, session_id: str) -> list[Message]:
        return await asyncio.to_thread(self._get_messages_by_session_id, session_id)

    async def delete_message(self, message_id: str) -> None:
        await asyncio.to_thread(self._delete_message, message_id)

    def _create_message(self, insert_message: InsertMessage) -> Message:
        now = self._clock()
        msg = Message(**insert_message.model_dump(), id=new_id("msg", now), timestamp=now)

        with get_session(self._engine) as session:
            session.add(msg)
            # Update session timestamp; never move it backwards when a
            # later message committed first
            session.execute(
                update(ChatSession)
                .where(col(ChatSession.id) == insert_message.session_id)
                .where(col(ChatSession.updated_at) < now)
                .values(updated_at=now)
            )
            session.commit()
        logger.debug("Created message %s in session %s", msg.id, msg.session_id)
        return msg

    def _get_messages_by_session_id(self, session_id: str) -> list[Message]:
        """Ordered oldest → newest."""
        with get_session(self._engine) as session:
            result = session.exec(
                select(Message)
                .where(Message.session_id == session_id)
                .order_by(col(Message.timestamp), col(Message.id))
            ).all()
        return list(result)

    def _delete_message(self, message_id: str) -> None:
        with get_session(self._engine) as session:
            session.execute(delete(Message).where(col(Message.id) == message_id))
            session.commit()
