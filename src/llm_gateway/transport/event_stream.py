"""
Server-Sent Events channel — the same events as the WebSocket, as SSE frames.

Each event becomes one frame:

    data: {"chunk": "...", "isComplete": false, "sessionId": "..."}

The exchange runs as a background task feeding a queue; frames() drains
the queue until a terminal event and cancels the channel if the HTTP
client goes away first.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import AsyncIterator

from llm_gateway.transport.base import DeliveryChannel
from llm_gateway.transport.events import ChannelError, ChannelEvent

logger = logging.getLogger(__name__)


def format_frame(session_id: str, chunk: str, is_complete: bool) -> str:
    payload = {"chunk": chunk, "isComplete": is_complete, "sessionId": session_id}
    return f"data: {json.dumps(payload)}\n\n"


class SSEChannel(DeliveryChannel):
    name = "sse"

    def __init__(self) -> None:
        super().__init__()
        self._queue: asyncio.Queue[ChannelEvent] = asyncio.Queue()
        self._terminal_queued = False

    async def _deliver(self, event: ChannelEvent) -> None:
        if event.is_complete:
            self._terminal_queued = True
        await self._queue.put(event)

    def close_with_error(self, session_id: str, message: str) -> None:
        """Queue a terminal error frame unless a terminal event is already queued."""
        if self._terminal_queued:
            return
        self._terminal_queued = True
        logger.warning(f"Closing SSE stream for session {session_id}: {message}")
        self._queue.put_nowait(ChannelError(session_id, message))

    async def frames(self) -> AsyncIterator[str]:
        """Yield SSE frames up to and including the first terminal event."""
        finished = False
        try:
            while not finished:
                event = await self._queue.get()
                if isinstance(event, ChannelError):
                    yield format_frame(event.session_id, event.message, True)
                else:
                    yield format_frame(event.session_id, event.text, event.is_complete)
                finished = event.is_complete
        finally:
            if not finished:
                self.cancel("client disconnected")


class BufferedChannel(DeliveryChannel):
    """Collects events in memory. Backs the non-streaming HTTP endpoint."""

    name = "buffered"

    def __init__(self) -> None:
        super().__init__()
        self.events: list[ChannelEvent] = []

    async def _deliver(self, event: ChannelEvent) -> None:
        self.events.append(event)

    @property
    def errors(self) -> list[ChannelError]:
        return [e for e in self.events if isinstance(e, ChannelError)]
