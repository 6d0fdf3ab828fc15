"""
Session Repository — durable storage for session contexts.

The context store needs get / create / save / delete. Two implementations:

- SQLiteSessionRepository: aiosqlite, one row per session plus ordered
  message rows. Survives restarts.
- InMemorySessionRepository: a dict, for tests and throwaway runs.

Usage:
    repo = SQLiteSessionRepository(db_path="gateway.db")
    await repo.start()
    ctx = await repo.get("session-1")    # None if unknown
    await repo.save(ctx)
    await repo.stop()
"""

from __future__ import annotations

import json
import logging
import time
from abc import ABC, abstractmethod
from pathlib import Path

import aiosqlite

from llm_gateway.session.models import Message, Role, SessionContext

logger = logging.getLogger(__name__)


class SessionRepository(ABC):
    """Persistence boundary for SessionContext."""

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass

    @abstractmethod
    async def get(self, session_id: str) -> SessionContext | None:
        ...

    @abstractmethod
    async def save(self, context: SessionContext) -> None:
        ...

    @abstractmethod
    async def delete(self, session_id: str) -> bool:
        """Remove a session and its messages. False if it did not exist."""
        ...

    async def create(self, session_id: str) -> SessionContext:
        """Create and persist an empty context."""
        context = SessionContext(session_id=session_id)
        await self.save(context)
        return context


class InMemorySessionRepository(SessionRepository):
    def __init__(self) -> None:
        self._contexts: dict[str, SessionContext] = {}

    async def get(self, session_id: str) -> SessionContext | None:
        return self._contexts.get(session_id)

    async def save(self, context: SessionContext) -> None:
        self._contexts[context.session_id] = context

    async def delete(self, session_id: str) -> bool:
        return self._contexts.pop(session_id, None) is not None


class SQLiteSessionRepository(SessionRepository):
    """SQLite-backed repository for session contexts."""

    def __init__(self, db_path: str | Path = "gateway.db") -> None:
        self._db_path = str(db_path)
        self._db: aiosqlite.Connection | None = None

    async def start(self) -> None:
        """Open the database and create tables if needed."""
        self._db = await aiosqlite.connect(self._db_path)
        await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.execute("PRAGMA foreign_keys=ON")
        await self._create_tables()
        logger.info(f"Session repository ready ({self._db_path})")

    async def stop(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    async def _create_tables(self) -> None:
        assert self._db is not None

        await self._db.executescript(
            """
            CREATE TABLE IF NOT EXISTS session_contexts (
                session_id TEXT PRIMARY KEY,
                metadata TEXT NOT NULL DEFAULT '{}',
                created_at REAL NOT NULL,
                last_updated_at REAL NOT NULL,
                total_tokens INTEGER NOT NULL DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS session_messages (
                session_id TEXT NOT NULL
                    REFERENCES session_contexts(session_id) ON DELETE CASCADE,
                sequence INTEGER NOT NULL,
                role TEXT NOT NULL,
                content TEXT NOT NULL,
                timestamp REAL NOT NULL,
                token_count INTEGER NOT NULL,
                PRIMARY KEY (session_id, sequence)
            );
            """
        )
        await self._db.commit()

    # ─── Repository ───────────────────────────────────────────────

    async def get(self, session_id: str) -> SessionContext | None:
        assert self._db is not None, "SessionRepository not started"

        async with self._db.execute(
            "SELECT metadata, created_at, last_updated_at, total_tokens "
            "FROM session_contexts WHERE session_id = ?",
            (session_id,),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None

        messages = []
        async with self._db.execute(
            "SELECT role, content, timestamp, token_count FROM session_messages "
            "WHERE session_id = ? ORDER BY sequence",
            (session_id,),
        ) as cursor:
            async for m in cursor:
                messages.append(
                    Message(role=Role(m[0]), content=m[1], timestamp=m[2], token_count=m[3])
                )

        return SessionContext(
            session_id=session_id,
            messages=tuple(messages),
            metadata=json.loads(row[0]) if row[0] else {},
            created_at=row[1],
            last_updated_at=row[2],
            total_tokens=row[3],
        )

    async def save(self, context: SessionContext) -> None:
        """Upsert the context and replace its message rows."""
        assert self._db is not None, "SessionRepository not started"

        await self._db.execute(
            """
            INSERT INTO session_contexts
                (session_id, metadata, created_at, last_updated_at, total_tokens)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(session_id) DO UPDATE SET
                metadata = excluded.metadata,
                last_updated_at = excluded.last_updated_at,
                total_tokens = excluded.total_tokens
            """,
            (
                context.session_id,
                json.dumps(context.metadata),
                context.created_at,
                context.last_updated_at or time.time(),
                context.total_tokens,
            ),
        )
        await self._db.execute(
            "DELETE FROM session_messages WHERE session_id = ?", (context.session_id,)
        )
        await self._db.executemany(
            """
            INSERT INTO session_messages
                (session_id, sequence, role, content, timestamp, token_count)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    context.session_id,
                    i,
                    m.role.value,
                    m.content,
                    m.timestamp,
                    m.token_count,
                )
                for i, m in enumerate(context.messages)
            ],
        )
        await self._db.commit()

    async def delete(self, session_id: str) -> bool:
        assert self._db is not None, "SessionRepository not started"

        cursor = await self._db.execute(
            "DELETE FROM session_contexts WHERE session_id = ?", (session_id,)
        )
        await self._db.commit()
        return cursor.rowcount > 0
