"""
Chat API — HTTP surface for exchanges.

Streaming is a two-step handshake: the client POSTs the request, which is
parked in the session's pending slot, then opens an EventSource on the GET
endpoint, which consumes the slot and streams the exchange as SSE.

Endpoints:
    POST   /v1/chat/stream                  → Park a streaming request (200)
    GET    /v1/chat/stream?sessionId=       → SSE stream of the parked request
    POST   /v1/chat/send                    → Non-streaming exchange
    GET    /v1/chat/sessions/{id}/usage     → Usage records for a session
    DELETE /v1/chat/sessions/{id}           → Delete a session and its history
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Any, AsyncGenerator

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, StreamingResponse

from llm_gateway.core.errors import ProviderAuthError, ValidationError
from llm_gateway.llm.contracts import InboundMessage
from llm_gateway.session.models import PendingStreamRequest
from llm_gateway.transport.event_stream import BufferedChannel, SSEChannel, format_frame

if TYPE_CHECKING:
    from llm_gateway.llm.orchestrator import StreamingOrchestrator
    from llm_gateway.session.context import SessionContextStore
    from llm_gateway.usage.sink import UsageSink

logger = logging.getLogger(__name__)

NO_PENDING_REQUEST = "No pending request found for this session"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


async def _read_body(request: Request) -> dict[str, Any] | None:
    try:
        body = await request.json()
    except json.JSONDecodeError:
        return None
    return body if isinstance(body, dict) else None


def _inbound_from_body(body: dict[str, Any], stream: bool) -> InboundMessage:
    """Build an InboundMessage; raises ValidationError on mistyped fields."""
    return InboundMessage.from_wire(
        {
            "sessionId": body.get("sessionId"),
            "userInput": body.get("message"),
            "stream": stream,
            "metadata": body.get("metadata"),
            "modelId": body.get("modelId"),
            "temperature": body.get("temperature"),
            "maxTokens": body.get("maxTokens"),
            "systemPrompt": body.get("systemPrompt"),
            "userId": body.get("userId"),
        }
    )


async def _parse_chat_request(
    request: Request, stream: bool
) -> InboundMessage | JSONResponse:
    """The request as an InboundMessage, or the 400 response to send instead."""
    body = await _read_body(request)
    if body is None:
        return JSONResponse({"error": "Invalid JSON body"}, status_code=400)
    if not body.get("message"):
        return JSONResponse({"error": "Message is required"}, status_code=400)
    if not body.get("sessionId"):
        return JSONResponse({"error": "SessionId is required"}, status_code=400)
    try:
        return _inbound_from_body(body, stream=stream)
    except ValidationError as e:
        return JSONResponse({"error": e.message}, status_code=e.status_code)


def create_chat_router(
    orchestrator: "StreamingOrchestrator",
    context_store: "SessionContextStore",
    usage_sink: "UsageSink",
) -> APIRouter:
    """Create the chat router."""

    router = APIRouter(prefix="/v1/chat", tags=["chat"])

    # ─── Streaming handshake ──────────────────────────────────

    @router.post("/stream")
    async def store_stream_request(request: Request) -> JSONResponse:
        """Park a request until the client opens the event stream."""
        inbound = await _parse_chat_request(request, stream=True)
        if isinstance(inbound, JSONResponse):
            return inbound

        await context_store.store_pending(
            PendingStreamRequest(
                session_id=inbound.session_id,
                message=inbound.user_input,
                model_id=inbound.model_id,
                temperature=inbound.temperature,
                max_tokens=inbound.max_tokens,
                system_prompt=inbound.system_prompt,
                user_id=inbound.user_id,
                metadata=inbound.metadata,
            )
        )
        return JSONResponse({"sessionId": inbound.session_id, "status": "pending"})

    @router.get("/stream")
    async def stream_response(sessionId: str = "") -> StreamingResponse:
        """SSE stream of the parked request for ``sessionId``."""
        pending = await context_store.take_pending(sessionId) if sessionId else None

        if pending is None:

            async def _miss() -> AsyncGenerator[str, None]:
                yield format_frame(sessionId, NO_PENDING_REQUEST, True)

            return StreamingResponse(
                _miss(), media_type="text/event-stream", headers=SSE_HEADERS
            )

        inbound = InboundMessage(
            session_id=pending.session_id,
            user_input=pending.message,
            stream=True,
            metadata=dict(pending.metadata),
            model_id=pending.model_id,
            temperature=pending.temperature,
            max_tokens=pending.max_tokens,
            system_prompt=pending.system_prompt,
            user_id=pending.user_id,
        )
        logger.info(f"Processing stream request for session {sessionId}")

        return StreamingResponse(
            _run_sse(orchestrator, inbound),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    # ─── Non-streaming ────────────────────────────────────────

    @router.post("/send")
    async def send_message(request: Request) -> JSONResponse:
        """Run one exchange and return the whole reply."""
        inbound = await _parse_chat_request(request, stream=False)
        if isinstance(inbound, JSONResponse):
            return inbound

        channel = BufferedChannel()
        try:
            result = await orchestrator.run_exchange(inbound, channel)
        except ProviderAuthError as e:
            return JSONResponse(e.to_dict(), status_code=e.status_code)

        if not result.succeeded:
            return JSONResponse(
                {"sessionId": inbound.session_id, "error": result.error},
                status_code=502,
            )
        return JSONResponse({"sessionId": inbound.session_id, "output": result.output})

    # ─── Sessions ─────────────────────────────────────────────

    @router.get("/sessions/{session_id}/usage")
    async def session_usage(session_id: str) -> JSONResponse:
        """Usage records and totals for one session."""
        records = await usage_sink.list_for_session(session_id)
        return JSONResponse(
            {
                "sessionId": session_id,
                "records": [r.to_dict() for r in records],
                "totalInputTokens": sum(r.input_tokens for r in records),
                "totalOutputTokens": sum(r.output_tokens for r in records),
                "totalCost": sum(r.estimated_cost for r in records),
            }
        )

    @router.delete("/sessions/{session_id}")
    async def delete_session(session_id: str) -> JSONResponse:
        """Delete a session's history. Usage records are kept."""
        if not await context_store.delete_session(session_id):
            return JSONResponse({"error": "Session not found"}, status_code=404)
        return JSONResponse({"sessionId": session_id, "deleted": True})

    return router


async def _run_sse(
    orchestrator: "StreamingOrchestrator", inbound: InboundMessage
) -> AsyncGenerator[str, None]:
    """Run the exchange in the background and relay its events as SSE frames."""
    channel = SSEChannel()
    task = asyncio.create_task(orchestrator.run_exchange(inbound, channel))

    def _on_done(done: asyncio.Task) -> None:
        # The reader waits for a terminal frame; make sure one is queued
        if done.cancelled():
            channel.close_with_error(inbound.session_id, "Exchange cancelled")
        elif done.exception() is not None:
            logger.error(
                f"Exchange for session {inbound.session_id} crashed: {done.exception()!r}"
            )
            channel.close_with_error(inbound.session_id, "Internal server error")
        else:
            channel.close_with_error(inbound.session_id, "Exchange ended without a reply")

    task.add_done_callback(_on_done)
    try:
        async for frame in channel.frames():
            yield frame
    finally:
        # Usage is recorded after the terminal frame; let the exchange finish
        await asyncio.gather(task, return_exceptions=True)
