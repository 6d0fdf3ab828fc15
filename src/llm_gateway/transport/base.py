"""
Base Delivery Channel — abstract base class for every client connection.

A channel delivers ChannelEvents to one client in the order send() is
called, and exposes a cancellation signal that fires when the client goes
away. The orchestrator watches that signal to stop reading a stream.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod

from llm_gateway.transport.events import ChannelEvent

logger = logging.getLogger(__name__)


class DeliveryChannel(ABC):
    """
    Base class for all channels (WebSocket, SSE, ...).

    Subclasses implement _deliver(); send() serializes calls so that events
    from concurrent exchanges on one connection never interleave mid-write.
    """

    name: str = "base"

    def __init__(self) -> None:
        self._send_lock = asyncio.Lock()
        self.cancelled = asyncio.Event()
        self.cancel_reason: str = ""

    async def send(self, event: ChannelEvent) -> None:
        """Deliver one event. A no-op once the channel is cancelled."""
        async with self._send_lock:
            if self.cancelled.is_set():
                logger.debug(f"{self.name} channel cancelled, dropping event")
                return
            await self._deliver(event)

    def cancel(self, reason: str = "client disconnected") -> None:
        if not self.cancelled.is_set():
            self.cancel_reason = reason
            self.cancelled.set()
            logger.info(f"{self.name} channel cancelled: {reason}")

    @property
    def is_cancelled(self) -> bool:
        return self.cancelled.is_set()

    @abstractmethod
    async def _deliver(self, event: ChannelEvent) -> None:
        """Write one event to the client. Called under the send lock."""
        ...
