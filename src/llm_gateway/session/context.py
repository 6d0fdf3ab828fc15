"""
Session Context Store — per-session exclusivity over conversation state.

Owns the two pieces of shared mutable state in the gateway:

- a bounded LRU cache of SessionContext objects (the SessionRepository is
  the durable copy, so an evicted context is simply reloaded)
- one pending-stream-request slot per session

Both are keyed by session id and guarded by one asyncio.Lock per session,
so exchanges on different sessions never wait on each other while two
exchanges on the same session are serialized around read-modify-write.
A session's lock is dropped as soon as nobody holds or waits on it.

The pending slot has overwrite-on-store, consume-on-read semantics: a
second store before the read replaces the first, and a read empties it.
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from contextlib import asynccontextmanager
from typing import AsyncIterator

from llm_gateway.llm.tokens import TokenBudget
from llm_gateway.session.models import (
    PendingStreamRequest,
    Role,
    SessionContext,
)
from llm_gateway.session.store import SessionRepository

logger = logging.getLogger(__name__)

DEFAULT_CACHE_SIZE = 1000


class SessionContextStore:
    def __init__(
        self,
        repository: SessionRepository,
        token_budget: TokenBudget | None = None,
        cache_size: int = DEFAULT_CACHE_SIZE,
    ) -> None:
        self._repository = repository
        self._budget = token_budget or TokenBudget()
        self._cache_size = max(1, cache_size)
        self._contexts: OrderedDict[str, SessionContext] = OrderedDict()
        self._pending: dict[str, PendingStreamRequest] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    def lock_for(self, session_id: str) -> asyncio.Lock:
        """The mutual-exclusion lock for one session (created on first use)."""
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def _exclusive(self, session_id: str) -> AsyncIterator[None]:
        """Hold the session lock; the last holder out removes it."""
        lock = self.lock_for(session_id)
        self._lock_users[session_id] = self._lock_users.get(session_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._lock_users[session_id] - 1
            if remaining:
                self._lock_users[session_id] = remaining
            else:
                del self._lock_users[session_id]
                if self._locks.get(session_id) is lock:
                    del self._locks[session_id]

    @property
    def cached_sessions(self) -> int:
        return len(self._contexts)

    @property
    def lock_count(self) -> int:
        return len(self._locks)

    # ─── Context ──────────────────────────────────────────────────

    async def get_or_create(self, session_id: str) -> SessionContext:
        async with self._exclusive(session_id):
            return await self._load(session_id)

    async def _load(self, session_id: str) -> SessionContext:
        """Cache → repository → new. Caller holds the session lock."""
        context = self._contexts.get(session_id)
        if context is not None:
            self._contexts.move_to_end(session_id)
            return context

        context = await self._repository.get(session_id)
        if context is None:
            context = await self._repository.create(session_id)
            logger.info(f"Created session context {session_id}")
        self._cache(context)
        return context

    async def _commit(self, context: SessionContext) -> SessionContext:
        await self._repository.save(context)
        self._cache(context)
        return context

    def _cache(self, context: SessionContext) -> None:
        self._contexts[context.session_id] = context
        self._contexts.move_to_end(context.session_id)
        while len(self._contexts) > self._cache_size:
            evicted, _ = self._contexts.popitem(last=False)
            logger.debug(f"Evicted session context {evicted} from cache")

    async def attach_metadata(
        self, session_id: str, metadata: dict[str, str]
    ) -> SessionContext:
        async with self._exclusive(session_id):
            context = await self._load(session_id)
            if not metadata:
                return context
            return await self._commit(context.with_metadata(metadata))

    async def add_user_message(self, session_id: str, content: str) -> SessionContext:
        return await self._append(session_id, [(Role.USER, content)])

    async def add_assistant_message(
        self, session_id: str, content: str
    ) -> SessionContext:
        return await self._append(session_id, [(Role.ASSISTANT, content)])

    async def append_exchange(
        self, session_id: str, user_input: str, assistant_output: str
    ) -> SessionContext:
        """Append a user/assistant pair under a single lock hold."""
        return await self._append(
            session_id, [(Role.USER, user_input), (Role.ASSISTANT, assistant_output)]
        )

    async def _append(
        self, session_id: str, turns: list[tuple[Role, str]]
    ) -> SessionContext:
        async with self._exclusive(session_id):
            context = await self._load(session_id)
            for role, content in turns:
                context = context.with_message(self._budget.build_message(role, content))
            return await self._commit(context)

    def forget(self, session_id: str) -> None:
        """Drop cached state for a session; the repository copy is untouched."""
        self._contexts.pop(session_id, None)
        self._pending.pop(session_id, None)
        if session_id not in self._lock_users:
            self._locks.pop(session_id, None)

    async def delete_session(self, session_id: str) -> bool:
        """Delete a session everywhere. False if it never existed."""
        async with self._exclusive(session_id):
            existed = await self._repository.delete(session_id)
            existed = existed or session_id in self._contexts
            self.forget(session_id)
        if existed:
            logger.info(f"Deleted session {session_id}")
        return existed

    # ─── Pending stream requests ──────────────────────────────────

    async def store_pending(self, request: PendingStreamRequest) -> None:
        """Park a request for its session, replacing any earlier one."""
        async with self._exclusive(request.session_id):
            if request.session_id in self._pending:
                logger.info(
                    f"Overwriting pending stream request for session {request.session_id}"
                )
            self._pending[request.session_id] = request
        logger.info(f"Stored streaming request for session {request.session_id}")

    async def take_pending(self, session_id: str) -> PendingStreamRequest | None:
        """Remove and return the parked request; None (logged) if there isn't one."""
        async with self._exclusive(session_id):
            request = self._pending.pop(session_id, None)
        if request is None:
            logger.warning(f"No pending stream request found for session {session_id}")
        else:
            logger.info(f"Retrieved pending stream request for session {session_id}")
        return request

    async def remove_pending(self, session_id: str) -> None:
        async with self._exclusive(session_id):
            self._pending.pop(session_id, None)
