import itertools
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import DateTime
from sqlmodel import SQLModel, Field

# Per-process creation counter, so ids created in the same millisecond
# still sort in creation order.
_sequence = itertools.count(1)


def utcnow() -> datetime:
    """Naive UTC timestamp, matching `timestamp without time zone` columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id(prefix: str, at: datetime | None = None) -> str:
    """
    Process-unique textual id: type prefix, epoch millis of `at`, creation
    sequence, random suffix.
    e.g. "msg_1760000000000_000000042_3f9a1"

    Fixed-width fields, so ids from one process compare in creation order
    when their millis are equal.
    """
    at = at or utcnow()
    millis = int(at.replace(tzinfo=timezone.utc).timestamp() * 1000)
    return f"{prefix}_{millis:013d}_{next(_sequence):09d}_{uuid4().hex[:5]}"


def _timestamp_field():
    # Stored as a naive UTC `timestamp`; newer SQLModel releases would
    # otherwise map datetime to a timezone-aware type.
    return Field(default_factory=utcnow, sa_type=DateTime(timezone=False))


# -----------------------------
# Users
# -----------------------------
class UserBase(SQLModel):
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    profile_image_url: str | None = None


class UpsertUser(UserBase):
    id: str


class User(UserBase, table=True):
    """
    Identity record, keyed by the id supplied by the auth provider.
    """
    __tablename__ = "users"

    id: str = Field(primary_key=True)
    created_at: datetime = _timestamp_field()
    updated_at: datetime = _timestamp_field()


# -----------------------------
# Chat sessions
# -----------------------------
class ChatSessionBase(SQLModel):
    user_id: str = Field(foreign_key="users.id", index=True)
    title: str = "New Chat"


class InsertChatSession(ChatSessionBase):
    pass


class ChatSession(ChatSessionBase, table=True):
    """
    Conversation owned by one user. `updated_at` follows the latest message.
    """
    __tablename__ = "chat_sessions"

    id: str = Field(primary_key=True)
    created_at: datetime = _timestamp_field()
    updated_at: datetime = _timestamp_field()


# -----------------------------
# Messages
# -----------------------------
class MessageBase(SQLModel):
    session_id: str = Field(foreign_key="chat_sessions.id", index=True)
    role: str                        # "user" or "assistant"
    content: str


class InsertMessage(MessageBase):
    pass


class Message(MessageBase, table=True):
    __tablename__ = "messages"

    id: str = Field(primary_key=True)
    timestamp: datetime = _timestamp_field()
