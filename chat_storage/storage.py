"""
Storage contract for users, chat sessions and messages.

`DatabaseStorage` (Postgres via SQLModel) and `MemoryStorage` (process-local
dicts) are interchangeable; application code depends on `Storage` only.

Not-found lookups return None or an empty list, and deleting something that
does not exist is a silent no-op.
"""

from abc import ABC, abstractmethod

from chat_storage.models import (
    User,
    UpsertUser,
    ChatSession,
    InsertChatSession,
    Message,
    InsertMessage,
)


class Storage(ABC):

    # User operations
    @abstractmethod
    async def get_user(self, user_id: str) -> User | None:
        pass

    @abstractmethod
    async def upsert_user(self, user_data: UpsertUser) -> User:
        """Insert or replace by id. `created_at` survives, `updated_at` is now."""

    # Chat operations
    @abstractmethod
    async def create_chat_session(self, session: InsertChatSession) -> ChatSession:
        pass

    @abstractmethod
    async def get_chat_session(self, session_id: str) -> ChatSession | None:
        pass

    @abstractmethod
    async def get_all_chat_sessions(self, user_id: str) -> list[ChatSession]:
        """Sessions owned by `user_id`, most recently active first."""

    @abstractmethod
    async def update_chat_session(self, session_id: str, title: str) -> ChatSession | None:
        pass

    @abstractmethod
    async def create_message(self, message: InsertMessage) -> Message:
        """Store the message and bump its session's `updated_at` to the message timestamp."""

    @abstractmethod
    async def get_messages_by_session_id(self, session_id: str) -> list[Message]:
        """Messages of a session, ordered oldest → newest."""

    @abstractmethod
    async def delete_message(self, message_id: str) -> None:
        pass

    @abstractmethod
    async def delete_chat_session(self, session_id: str) -> None:
        """Delete the session's messages, then the session."""
