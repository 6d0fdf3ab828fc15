"""
Usage Sinks — where UsageRecords go.

- SQLiteUsageSink: aiosqlite table ``usage_log`` (shares the gateway DB file)
- InMemoryUsageSink: a list, for tests

list_for_session() backs the per-session usage endpoint.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path

import aiosqlite

from llm_gateway.usage.records import UsageRecord

logger = logging.getLogger(__name__)


class UsageSink(ABC):
    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass

    @abstractmethod
    async def record(self, record: UsageRecord) -> None:
        ...

    @abstractmethod
    async def list_for_session(self, session_id: str) -> list[UsageRecord]:
        """Records for one session, oldest first."""
        ...


class InMemoryUsageSink(UsageSink):
    def __init__(self) -> None:
        self.records: list[UsageRecord] = []

    async def record(self, record: UsageRecord) -> None:
        self.records.append(record)

    async def list_for_session(self, session_id: str) -> list[UsageRecord]:
        return [r for r in self.records if r.session_id == session_id]


class SQLiteUsageSink(UsageSink):
    def __init__(self, db_path: str | Path = "gateway.db") -> None:
        self._db_path = str(db_path)
        self._db: aiosqlite.Connection | None = None

    async def start(self) -> None:
        self._db = await aiosqlite.connect(self._db_path)
        await self._db.execute(
            """
            CREATE TABLE IF NOT EXISTS usage_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                session_id TEXT NOT NULL,
                user_id TEXT,
                model_id TEXT NOT NULL,
                provider TEXT NOT NULL,
                input_tokens INTEGER NOT NULL,
                output_tokens INTEGER NOT NULL,
                estimated_cost REAL NOT NULL,
                duration_ms INTEGER NOT NULL,
                success INTEGER NOT NULL,
                error_message TEXT,
                timestamp REAL NOT NULL
            )
            """
        )
        await self._db.execute(
            "CREATE INDEX IF NOT EXISTS idx_usage_session ON usage_log(session_id)"
        )
        await self._db.commit()

    async def stop(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    async def record(self, record: UsageRecord) -> None:
        assert self._db is not None, "UsageSink not started"

        await self._db.execute(
            """
            INSERT INTO usage_log
                (session_id, user_id, model_id, provider, input_tokens, output_tokens,
                 estimated_cost, duration_ms, success, error_message, timestamp)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.session_id,
                record.user_id,
                record.model_id,
                record.provider,
                record.input_tokens,
                record.output_tokens,
                record.estimated_cost,
                record.duration_ms,
                int(record.success),
                record.error_message,
                record.timestamp,
            ),
        )
        await self._db.commit()

    async def list_for_session(self, session_id: str) -> list[UsageRecord]:
        assert self._db is not None, "UsageSink not started"

        records = []
        async with self._db.execute(
            "SELECT session_id, model_id, provider, user_id, input_tokens, output_tokens, "
            "estimated_cost, duration_ms, success, error_message, timestamp "
            "FROM usage_log WHERE session_id = ? ORDER BY id",
            (session_id,),
        ) as cursor:
            async for row in cursor:
                records.append(
                    UsageRecord(
                        session_id=row[0],
                        model_id=row[1],
                        provider=row[2],
                        user_id=row[3],
                        input_tokens=row[4],
                        output_tokens=row[5],
                        estimated_cost=row[6],
                        duration_ms=row[7],
                        success=bool(row[8]),
                        error_message=row[9],
                        timestamp=row[10],
                    )
                )
        return records
