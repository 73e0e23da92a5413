import logging
from datetime import datetime
from typing import Callable, TypeVar

from sqlmodel import SQLModel

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

RecordT = TypeVar("RecordT", bound=SQLModel)


def _detached(record: RecordT) -> RecordT:
    """Fresh instance with the same field values, sharing no state."""
    return type(record)(**record.model_dump())


class MemoryStorage(Storage):
    """
    Process-local storage backed by dicts.

    Keeps three primary maps plus two ownership indexes
    (user id -> session ids, session id -> message ids) in insertion order.
    Records go in and come out as copies, so callers can't reach the stored
    objects. No method awaits between index updates, so on a single event
    loop each mutation is atomic. Not safe to share across threads.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._clock = clock
        self._users: dict[str, User] = {}
        self._chat_sessions: dict[str, ChatSession] = {}
        self._messages: dict[str, Message] = {}
        self._sessions_by_user: dict[str, list[str]] = {}
        self._messages_by_session: dict[str, list[str]] = {}

    # -----------------------------
    # Users
    # -----------------------------
    async def get_user(self, user_id: str) -> User | None:
        user = self._users.get(user_id)
        return _detached(user) if user is not None else None

    async def upsert_user(self, user_data: UpsertUser) -> User:
        now = self._clock()
        existing = self._users.get(user_data.id)
        user = User(
            **user_data.model_dump(),
            created_at=existing.created_at if existing is not None else now,
            updated_at=now,
        )
        self._users[user.id] = user
        return _detached(user)

    # -----------------------------
    # Chat sessions
    # -----------------------------
    async def create_chat_session(self, session: InsertChatSession) -> ChatSession:
        now = self._clock()
        chat = ChatSession(
            **session.model_dump(),
            id=new_id("session", now),
            created_at=now,
            updated_at=now,
        )
        self._chat_sessions[chat.id] = chat
        self._sessions_by_user.setdefault(chat.user_id, []).append(chat.id)
        logger.debug("Created chat session %s for user %s", chat.id, chat.user_id)
        return _detached(chat)

    async def get_chat_session(self, session_id: str) -> ChatSession | None:
        chat = self._chat_sessions.get(session_id)
        return _detached(chat) if chat is not None else None

    async def get_all_chat_sessions(self, user_id: str) -> list[ChatSession]:
        sessions = [
            self._chat_sessions[sid]
            for sid in self._sessions_by_user.get(user_id, [])
            if sid in self._chat_sessions
        ]
        # Stable sort: equal timestamps keep insertion order
        sessions.sort(key=lambda s: s.updated_at, reverse=True)
        return [_detached(s) for s in sessions]

    async def update_chat_session(self, session_id: str, title: str) -> ChatSession | None:
        chat = self._chat_sessions.get(session_id)
        if chat is None:
            return None
        chat.title = title
        chat.updated_at = self._clock()
        return _detached(chat)

    async def delete_chat_session(self, session_id: str) -> None:
        chat = self._chat_sessions.get(session_id)
        if chat is None:
            return

        # Messages first
        message_ids = self._messages_by_session.pop(session_id, [])
        for message_id in message_ids:
            self._messages.pop(message_id, None)

        del self._chat_sessions[session_id]
        self._sessions_by_user[chat.user_id].remove(session_id)
        logger.info("Deleted chat session %s (%d messages)", session_id, len(message_ids))

    # -----------------------------
    # Messages
    # -----------------------------
    async def create_message(self, message: InsertMessage) -> Message:
        now = self._clock()
        msg = Message(**message.model_dump(), id=new_id("msg", now), timestamp=now)

        self._messages[msg.id] = msg
        self._messages_by_session.setdefault(msg.session_id, []).append(msg.id)

        # Update session timestamp, never backwards
        chat = self._chat_sessions.get(msg.session_id)
        if chat is not None and chat.updated_at < now:
            chat.updated_at = now

        logger.debug("Created message %s in session %s", msg.id, msg.session_id)
        return _detached(msg)

    async def get_messages_by_session_id(self, session_id: str) -> list[Message]:
        messages = [
            self._messages[mid]
            for mid in self._messages_by_session.get(session_id, [])
            if mid in self._messages
        ]
        messages.sort(key=lambda m: m.timestamp)
        return [_detached(m) for m in messages]

    async def delete_message(self, message_id: str) -> None:
        msg = self._messages.pop(message_id, None)
        if msg is None:
            return
        self._messages_by_session[msg.session_id].remove(message_id)
