"""
Channel Events — what the gateway pushes to a connected client.

Two outbound shapes:

  ReceiveMessage {sessionId, output, isComplete, timestamp}
  ReceiveError   {sessionId, message}

The transport layer owns the wire format; the orchestrator only builds
ChannelMessage / ChannelError objects.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Union

from llm_gateway.llm.contracts import ResponseChunk


@dataclass(frozen=True)
class ChannelMessage:
    session_id: str
    text: str
    is_complete: bool
    timestamp: float = field(default_factory=time.time)

    @classmethod
    def from_chunk(cls, session_id: str, chunk: ResponseChunk) -> ChannelMessage:
        return cls(session_id=session_id, text=chunk.text, is_complete=chunk.is_complete)

    def to_wire(self) -> dict[str, Any]:
        return {
            "type": "ReceiveMessage",
            "sessionId": self.session_id,
            "output": self.text,
            "isComplete": self.is_complete,
            "timestamp": datetime.fromtimestamp(self.timestamp, timezone.utc).isoformat(),
        }


@dataclass(frozen=True)
class ChannelError:
    session_id: str
    message: str

    @property
    def is_complete(self) -> bool:
        return True

    def to_wire(self) -> dict[str, Any]:
        return {
            "type": "ReceiveError",
            "sessionId": self.session_id,
            "message": self.message,
        }


ChannelEvent = Union[ChannelMessage, ChannelError]
