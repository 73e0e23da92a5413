import asyncio

import pytest
from conftest import ScriptedClock, at
from sqlalchemy import DateTime, event, inspect
from sqlmodel import Session, select

from chat_storage import repository
from chat_storage.models import (
    ChatSession,
    InsertChatSession,
    InsertMessage,
    Message,
    UpsertUser,
    User,
)
from chat_storage.repository import DatabaseStorage


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def store(engine, clock):
    s = DatabaseStorage(engine, clock=clock)
    run(s.upsert_user(UpsertUser(id="u1", email="u1@example.com")))
    return s


def test_schema_has_three_tables(engine):
    assert {"users", "chat_sessions", "messages"} <= set(inspect(engine).get_table_names())


def test_upsert_writes_single_row(engine, store):
    run(store.upsert_user(UpsertUser(id="u1", email="new@example.com")))

    with Session(engine) as session:
        rows = session.exec(select(User)).all()
    assert len(rows) == 1
    assert rows[0].email == "new@example.com"


def test_rows_are_persisted(engine, store):
    chat = run(store.create_chat_session(InsertChatSession(user_id="u1", title="t")))
    msg = run(store.create_message(InsertMessage(session_id=chat.id, role="user", content="hi")))

    # A second store on the same engine sees the same data
    other = DatabaseStorage(engine)
    assert run(other.get_chat_session(chat.id)).title == "t"
    assert [m.id for m in run(other.get_messages_by_session_id(chat.id))] == [msg.id]


def test_failed_cascade_rolls_back(engine, store):
    chat = run(store.create_chat_session(InsertChatSession(user_id="u1")))
    run(store.create_message(InsertMessage(session_id=chat.id, role="user", content="1")))
    run(store.create_message(InsertMessage(session_id=chat.id, role="user", content="2")))

    def fail_on_session_delete(conn, cursor, statement, parameters, context, executemany):
        if statement.startswith("DELETE FROM chat_sessions"):
            raise RuntimeError("connection lost")

    event.listen(engine, "before_cursor_execute", fail_on_session_delete)
    try:
        with pytest.raises(RuntimeError):
            run(store.delete_chat_session(chat.id))
    finally:
        event.remove(engine, "before_cursor_execute", fail_on_session_delete)

    # Neither statement took effect
    assert run(store.get_chat_session(chat.id)) is not None
    assert len(run(store.get_messages_by_session_id(chat.id))) == 2


def test_delete_session_leaves_no_orphans(engine, store):
    chat = run(store.create_chat_session(InsertChatSession(user_id="u1")))
    run(store.create_message(InsertMessage(session_id=chat.id, role="user", content="1")))

    run(store.delete_chat_session(chat.id))

    with Session(engine) as session:
        assert session.exec(select(Message)).all() == []
        assert session.exec(select(ChatSession)).all() == []


@pytest.mark.parametrize(
    "model, column",
    [
        (User, "created_at"),
        (User, "updated_at"),
        (ChatSession, "created_at"),
        (ChatSession, "updated_at"),
        (Message, "timestamp"),
    ],
)
def test_timestamp_columns_hold_naive_utc(model, column):
    column_type = model.__table__.c[column].type
    assert isinstance(column_type, DateTime)
    assert column_type.timezone is False


def test_timestamps_round_trip_unchanged(engine, store):
    chat = run(store.create_chat_session(InsertChatSession(user_id="u1")))

    stored = run(store.get_chat_session(chat.id))
    assert stored.created_at == chat.created_at
    assert stored.created_at.tzinfo is None


def test_upsert_without_on_conflict_support(engine, clock, monkeypatch):
    monkeypatch.setattr(repository, "_UPSERT_INSERTS", {})
    store = DatabaseStorage(engine, clock=clock)

    first = run(store.upsert_user(UpsertUser(id="u9", email="a@example.com")))
    second = run(store.upsert_user(UpsertUser(id="u9", email="b@example.com")))

    assert second.created_at == first.created_at
    assert second.updated_at > first.updated_at
    with Session(engine) as session:
        rows = session.exec(select(User).where(User.id == "u9")).all()
    assert len(rows) == 1
    assert rows[0].email == "b@example.com"
    assert rows[0].created_at == first.created_at


def test_slow_message_commit_does_not_rewind_session(engine):
    # The first writer takes its timestamp, then stalls until a second
    # writer has stamped and committed a newer message.
    clock = ScriptedClock([at(0), at(1), at(3), at(4)], hold=at(3))
    store = DatabaseStorage(engine, clock=clock)
    run(store.upsert_user(UpsertUser(id="u1")))
    chat = run(store.create_chat_session(InsertChatSession(user_id="u1")))

    async def race():
        slow = asyncio.create_task(
            store.create_message(InsertMessage(session_id=chat.id, role="user", content="slow"))
        )
        assert await asyncio.to_thread(clock.held.wait, 5)
        fast = await store.create_message(
            InsertMessage(session_id=chat.id, role="assistant", content="fast")
        )
        clock.release.set()
        return await slow, fast

    slow, fast = run(race())

    assert slow.timestamp == at(3)
    assert fast.timestamp == at(4)
    stored = run(store.get_chat_session(chat.id))
    assert stored.updated_at == at(4)
    listed = run(store.get_messages_by_session_id(chat.id))
    assert [m.content for m in listed] == ["slow", "fast"]
