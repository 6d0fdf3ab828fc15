"""
Session Models — conversation state owned by the context store.

  SessionContext → Message (ordered, append-only)

A PendingStreamRequest is the hand-off between the two phases of the
HTTP streaming flow: POST stores it, GET consumes it.

All models are frozen dataclasses — create new instances for modifications.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any


class Role(str, Enum):
    """Who authored a message."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class Message:
    """
    One turn in a conversation.

    token_count is fixed when the message is built (see TokenBudget.build_message)
    so a context's total never needs re-tokenizing.
    """

    role: Role
    content: str
    timestamp: float = field(default_factory=time.time)
    token_count: int = 0

    def to_request_message(self) -> dict[str, str]:
        return {"role": self.role.value, "content": self.content}

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp,
            "token_count": self.token_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        return cls(
            role=Role(data["role"]),
            content=data.get("content", ""),
            timestamp=data.get("timestamp", time.time()),
            token_count=data.get("token_count", 0),
        )


@dataclass(frozen=True)
class SessionContext:
    """
    Ordered conversation history plus metadata for one session.

    Invariant: total_tokens == sum(m.token_count for m in messages).
    Every with_* helper preserves it.
    """

    session_id: str
    messages: tuple[Message, ...] = ()
    metadata: dict[str, str] = field(default_factory=dict)
    created_at: float = field(default_factory=time.time)
    last_updated_at: float = field(default_factory=time.time)
    total_tokens: int = 0

    def with_messages(self, messages: tuple[Message, ...] | list[Message]) -> SessionContext:
        """Return a copy holding exactly ``messages`` (totals recomputed)."""
        messages = tuple(messages)
        return replace(
            self,
            messages=messages,
            total_tokens=sum(m.token_count for m in messages),
            last_updated_at=time.time(),
        )

    def with_message(self, message: Message) -> SessionContext:
        """Return a copy with ``message`` appended."""
        return self.with_messages(self.messages + (message,))

    def with_metadata(self, metadata: dict[str, str]) -> SessionContext:
        """Return a copy with ``metadata`` merged over the existing keys."""
        return replace(
            self,
            metadata={**self.metadata, **metadata},
            last_updated_at=time.time(),
        )


@dataclass(frozen=True)
class PendingStreamRequest:
    """A chat request parked until the client opens the stream."""

    session_id: str
    message: str
    model_id: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    system_prompt: str | None = None
    user_id: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    created_at: float = field(default_factory=time.time)
