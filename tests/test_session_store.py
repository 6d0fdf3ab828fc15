"""Tests for session repositories — in-memory and SQLite."""

import tempfile
from pathlib import Path

import pytest
import pytest_asyncio

from llm_gateway.llm.tokens import TokenBudget
from llm_gateway.session.models import Message, Role, SessionContext
from llm_gateway.session.store import InMemorySessionRepository, SQLiteSessionRepository


@pytest_asyncio.fixture
async def sqlite_repo():
    """Create a SQLiteSessionRepository with a temp DB for each test."""
    with tempfile.TemporaryDirectory() as tmpdir:
        repo = SQLiteSessionRepository(db_path=Path(tmpdir) / "test_sessions.db")
        await repo.start()
        yield repo
        await repo.stop()


@pytest.fixture
def budget():
    return TokenBudget()


# ─── Models ───────────────────────────────────────────────────


def test_context_with_message_keeps_total(budget):
    ctx = SessionContext(session_id="s1")
    ctx = ctx.with_message(budget.build_message(Role.USER, "hello"))
    ctx = ctx.with_message(budget.build_message(Role.ASSISTANT, "hi there"))
    assert ctx.total_tokens == sum(m.token_count for m in ctx.messages)
    assert [m.role for m in ctx.messages] == [Role.USER, Role.ASSISTANT]


def test_context_is_immutable(budget):
    ctx = SessionContext(session_id="s1")
    updated = ctx.with_message(budget.build_message(Role.USER, "x"))
    assert ctx.messages == ()
    assert len(updated.messages) == 1
    with pytest.raises(AttributeError):
        ctx.session_id = "other"  # type: ignore[misc]


def test_context_metadata_merges():
    ctx = SessionContext(session_id="s1", metadata={"a": "1", "b": "2"})
    merged = ctx.with_metadata({"b": "3", "c": "4"})
    assert merged.metadata == {"a": "1", "b": "3", "c": "4"}
    assert ctx.metadata == {"a": "1", "b": "2"}


def test_message_dict_round_trip():
    msg = Message(role=Role.ASSISTANT, content="hi", timestamp=123.0, token_count=5)
    assert Message.from_dict(msg.to_dict()) == msg
    assert msg.to_request_message() == {"role": "assistant", "content": "hi"}


# ─── In-memory ────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_in_memory_create_and_get():
    repo = InMemorySessionRepository()
    assert await repo.get("s1") is None
    created = await repo.create("s1")
    assert created.session_id == "s1"
    assert await repo.get("s1") == created


@pytest.mark.asyncio
async def test_in_memory_delete():
    repo = InMemorySessionRepository()
    await repo.create("s1")
    assert await repo.delete("s1") is True
    assert await repo.get("s1") is None
    assert await repo.delete("s1") is False


# ─── SQLite ───────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_sqlite_get_missing(sqlite_repo):
    assert await sqlite_repo.get("nope") is None


@pytest.mark.asyncio
async def test_sqlite_save_and_load(sqlite_repo, budget):
    ctx = SessionContext(session_id="s1", metadata={"client": "web"}).with_messages(
        [
            budget.build_message(Role.SYSTEM, "Be helpful."),
            budget.build_message(Role.USER, "hello"),
            budget.build_message(Role.ASSISTANT, "hi!"),
        ]
    )
    await sqlite_repo.save(ctx)

    loaded = await sqlite_repo.get("s1")
    assert loaded is not None
    assert loaded.metadata == {"client": "web"}
    assert [(m.role, m.content) for m in loaded.messages] == [
        (Role.SYSTEM, "Be helpful."),
        (Role.USER, "hello"),
        (Role.ASSISTANT, "hi!"),
    ]
    assert loaded.total_tokens == ctx.total_tokens
    assert [m.token_count for m in loaded.messages] == [m.token_count for m in ctx.messages]


@pytest.mark.asyncio
async def test_sqlite_save_replaces_messages(sqlite_repo, budget):
    ctx = SessionContext(session_id="s1").with_messages(
        [budget.build_message(Role.USER, "a"), budget.build_message(Role.ASSISTANT, "b")]
    )
    await sqlite_repo.save(ctx)
    await sqlite_repo.save(ctx.with_messages(ctx.messages[1:]))

    loaded = await sqlite_repo.get("s1")
    assert [m.content for m in loaded.messages] == ["b"]


@pytest.mark.asyncio
async def test_sqlite_create_persists(sqlite_repo):
    await sqlite_repo.create("fresh")
    loaded = await sqlite_repo.get("fresh")
    assert loaded is not None
    assert loaded.messages == ()
    assert loaded.total_tokens == 0


@pytest.mark.asyncio
async def test_sqlite_delete_cascades(sqlite_repo, budget):
    ctx = SessionContext(session_id="s1").with_message(budget.build_message(Role.USER, "x"))
    await sqlite_repo.save(ctx)
    assert await sqlite_repo.delete("s1") is True
    assert await sqlite_repo.get("s1") is None
    assert await sqlite_repo.delete("s1") is False


@pytest.mark.asyncio
async def test_sqlite_survives_reopen(budget):
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "reopen.db"
        repo = SQLiteSessionRepository(db_path)
        await repo.start()
        await repo.save(
            SessionContext(session_id="s1").with_message(budget.build_message(Role.USER, "kept"))
        )
        await repo.stop()

        repo = SQLiteSessionRepository(db_path)
        await repo.start()
        loaded = await repo.get("s1")
        await repo.stop()

    assert loaded.messages[0].content == "kept"
