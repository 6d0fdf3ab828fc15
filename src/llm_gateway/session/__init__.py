"""
Session management — conversation context and its persistence.

Key components:
- SessionContext / Message: immutable conversation state
- SessionRepository: in-memory or SQLite persistence

The per-session lock and pending-stream slot live in
llm_gateway.session.context (imported directly; it depends on llm.tokens).
"""

from llm_gateway.session.models import (
    Message,
    PendingStreamRequest,
    Role,
    SessionContext,
)
from llm_gateway.session.store import (
    InMemorySessionRepository,
    SessionRepository,
    SQLiteSessionRepository,
)

__all__ = [
    "Message",
    "Role",
    "SessionContext",
    "PendingStreamRequest",
    "SessionRepository",
    "InMemorySessionRepository",
    "SQLiteSessionRepository",
]
