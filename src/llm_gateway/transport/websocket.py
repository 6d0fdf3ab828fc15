"""
WebSocket Transport — the real-time delivery channel.

This transport is a pure connection handler. It:
  1. Accepts WebSocket connections from FastAPI
  2. Parses the client wire protocol (JSON messages)
  3. Turns each SendMessage into an InboundMessage and starts an exchange
  4. Serializes ChannelEvents back to the client protocol

It does NOT contain any exchange logic (trimming, providers, usage...).
That's the orchestrator's job.

Client → server:
    {"type": "SendMessage", "sessionId": "...", "userInput": "...", "stream": true, ...}
    {"type": "ping"}

Server → client:
    {"type": "ReceiveMessage", "sessionId": "...", "output": "...", "isComplete": false, ...}
    {"type": "ReceiveError", "sessionId": "...", "message": "..."}
    {"type": "pong"}
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from typing import TYPE_CHECKING

from fastapi import WebSocket, WebSocketDisconnect

from llm_gateway.core.errors import GatewayError, ValidationError
from llm_gateway.llm.contracts import InboundMessage
from llm_gateway.transport.base import DeliveryChannel
from llm_gateway.transport.events import ChannelError, ChannelEvent

if TYPE_CHECKING:
    from llm_gateway.llm.orchestrator import StreamingOrchestrator

logger = logging.getLogger(__name__)


class WebSocketChannel(DeliveryChannel):
    """One client connection. Cancelled as soon as a write fails or the socket closes."""

    name = "websocket"

    def __init__(self, websocket: WebSocket, send_timeout: float = 5.0):
        super().__init__()
        self._ws = websocket
        self._send_timeout = send_timeout

    async def _deliver(self, event: ChannelEvent) -> None:
        await self.send_json(event.to_wire())

    async def send_json(self, payload: dict) -> None:
        """Write one JSON frame with timeout protection against dead connections."""
        json_str = json.dumps(payload)
        logger.debug(f"→ WS OUT: {json_str[:200]}")
        try:
            await asyncio.wait_for(
                self._ws.send_text(json_str),
                timeout=self._send_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("WebSocket send timeout")
            self.cancel("send timeout")
        except Exception as e:
            logger.debug(f"WebSocket send failed: {e}")
            self.cancel("client disconnected")


class WebSocketGateway:
    """
    Accepts connections from FastAPI's /ws endpoint and runs one exchange
    per SendMessage. Exchanges on one connection may overlap; the channel
    serializes their writes.
    """

    def __init__(self, orchestrator: StreamingOrchestrator, send_timeout: float = 5.0):
        self._orchestrator = orchestrator
        self._send_timeout = send_timeout
        self._connections: dict[str, WebSocketChannel] = {}

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    async def handle_connection(self, websocket: WebSocket) -> None:
        await websocket.accept()

        connection_id = str(uuid.uuid4())[:8]
        channel = WebSocketChannel(websocket, send_timeout=self._send_timeout)
        self._connections[connection_id] = channel
        tasks: set[asyncio.Task] = set()
        logger.info(f"WS connected: connection={connection_id}")

        try:
            await self._message_loop(websocket, channel, tasks)
        except WebSocketDisconnect:
            logger.info(f"WS disconnected: connection={connection_id}")
        except Exception as e:
            logger.error(f"WS error: {e}", exc_info=True)
        finally:
            channel.cancel("client disconnected")
            if tasks:
                await asyncio.gather(*tasks, return_exceptions=True)
            self._connections.pop(connection_id, None)
            logger.info(f"WS cleaned up: connection={connection_id}")

    async def stop(self) -> None:
        for channel in list(self._connections.values()):
            channel.cancel("server shutting down")
        self._connections.clear()

    # ─── Message Loop (Inbound: Wire Protocol → InboundMessage) ──

    async def _message_loop(
        self,
        ws: WebSocket,
        channel: WebSocketChannel,
        tasks: set[asyncio.Task],
    ) -> None:
        while True:
            raw = await ws.receive_text()
            logger.debug(f"← WS IN: {raw[:200]}")

            try:
                msg = json.loads(raw)
            except json.JSONDecodeError:
                logger.error("Invalid JSON received")
                continue
            if not isinstance(msg, dict):
                logger.error("WS message is not a JSON object")
                continue

            msg_type = msg.get("type")

            if msg_type == "SendMessage":
                try:
                    inbound = InboundMessage.from_wire(msg)
                except ValidationError as e:
                    logger.warning(f"Rejected SendMessage: {e.message}")
                    session_id = msg.get("sessionId")
                    await channel.send(
                        ChannelError(session_id if isinstance(session_id, str) else "", e.message)
                    )
                    continue
                task = asyncio.create_task(self._run(inbound, channel))
                tasks.add(task)
                task.add_done_callback(tasks.discard)

            elif msg_type == "ping":
                await channel.send_json({"type": "pong"})

            elif msg_type == "pong":
                pass  # Keep-alive, no action

            else:
                logger.warning(f"Unknown WS message type: {msg_type}")

    async def _run(self, inbound: InboundMessage, channel: WebSocketChannel) -> None:
        try:
            await self._orchestrator.run_exchange(inbound, channel)
        except GatewayError as e:
            # Already reported to the client by the orchestrator
            logger.warning(f"Exchange for session {inbound.session_id} raised: {e.message}")
        except Exception as e:
            logger.error(f"Exchange for session {inbound.session_id} crashed: {e}", exc_info=True)
            await channel.send(ChannelError(inbound.session_id, "Internal server error"))

    def __repr__(self) -> str:
        return f"<WebSocketGateway(connections={len(self._connections)})>"
