"""
Chunked SSE transport — raw streaming HTTP response → ordered ResponseChunks.

Two phases, kept apart on purpose so callers can see what went wrong
without catching anything:

  1. open_stream()  → StreamOpened | AuthFailure | TransportFailure
  2. read_chunks()  → Partial* then exactly one Complete

stream_chunks() glues them together and folds every failure into a single
terminal ChunkError. Nothing here raises on upstream trouble: a real-time
client must always see a terminal chunk.

Wire format:
    data: {"choices":[{"delta":{"content":"Hel"}}]}

    data: {"choices":[{"delta":{},"finish_reason":"stop"}]}

    data: [DONE]
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncGenerator, AsyncIterator, Callable, Union

import httpx

from llm_gateway.llm.contracts import ChunkError, Complete, Partial, ResponseChunk

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"


@dataclass(frozen=True)
class FrameDelta:
    """What one decoded frame contributes: some text, and/or the end."""

    text: str = ""
    finished: bool = False


FrameDecoder = Callable[[dict[str, Any]], FrameDelta]


# ─── Open outcome ─────────────────────────────────────────────


@dataclass
class StreamOpened:
    response: httpx.Response


@dataclass(frozen=True)
class AuthFailure:
    message: str
    raw_body: str


@dataclass(frozen=True)
class TransportFailure:
    message: str
    status: int | None = None


StreamOutcome = Union[StreamOpened, AuthFailure, TransportFailure]


def extract_error_message(body: str, default: str) -> str:
    """Pull ``error.message`` (or a string ``error``) out of a JSON error body."""
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, TypeError):
        return default
    if not isinstance(data, dict):
        return default
    error = data.get("error")
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        return error["message"]
    if isinstance(error, str):
        return error
    return default


async def open_stream(
    http: httpx.AsyncClient,
    url: str,
    headers: dict[str, str],
    payload: dict[str, Any],
) -> StreamOutcome:
    """Issue the streaming POST and classify the result."""
    request = http.build_request("POST", url, headers=headers, json=payload)
    try:
        response = await http.send(request, stream=True)
    except httpx.HTTPError as e:
        return TransportFailure(str(e) or e.__class__.__name__)

    if response.status_code == 401:
        body = await _read_and_close(response)
        return AuthFailure(
            message=extract_error_message(body, "Authentication failed"),
            raw_body=body,
        )

    if response.is_error:
        body = await _read_and_close(response)
        reason = f"{response.status_code} {response.reason_phrase}".strip()
        return TransportFailure(
            extract_error_message(body, reason), status=response.status_code
        )

    return StreamOpened(response)


async def _read_and_close(response: httpx.Response) -> str:
    try:
        raw = await response.aread()
    except httpx.HTTPError:
        raw = b""
    finally:
        await response.aclose()
    return raw.decode("utf-8", errors="replace")


# ─── Frame reading ────────────────────────────────────────────


async def iter_data_payloads(lines: AsyncIterator[str]) -> AsyncIterator[str]:
    """Yield the payload of every ``data: `` line, in order."""
    async for line in lines:
        if not line.strip():
            continue
        if not line.startswith(DATA_PREFIX):
            logger.debug(f"Skipping non-data SSE line: {line[:100]}")
            continue
        yield line[len(DATA_PREFIX):]


async def read_chunks(
    lines: AsyncIterator[str], decode: FrameDecoder
) -> AsyncIterator[ResponseChunk]:
    """
    Turn SSE lines into Partial deltas followed by one Complete.

    Unparseable or oddly shaped payloads are logged and skipped. A body that
    ends without ``[DONE]`` or a finish frame still gets its Complete.
    """
    accumulated: list[str] = []

    async for payload in iter_data_payloads(lines):
        if payload.strip() == DONE_SENTINEL:
            yield Complete("".join(accumulated))
            return

        try:
            data = json.loads(payload)
        except json.JSONDecodeError:
            logger.warning(f"Skipping malformed stream frame: {payload[:200]}")
            continue
        if not isinstance(data, dict):
            logger.warning(f"Skipping non-object stream frame: {payload[:200]}")
            continue

        try:
            delta = decode(data)
        except (AttributeError, TypeError, KeyError, IndexError) as e:
            logger.warning(f"Skipping unexpected stream frame ({e!r}): {payload[:200]}")
            continue
        if delta.text:
            accumulated.append(delta.text)
            yield Partial(delta.text)
        if delta.finished:
            yield Complete("".join(accumulated))
            return

    logger.debug("Stream ended without a terminal frame")
    yield Complete("".join(accumulated))


# ─── Glue ─────────────────────────────────────────────────────


async def stream_chunks(
    http: httpx.AsyncClient,
    url: str,
    headers: dict[str, str],
    payload: dict[str, Any],
    decode: FrameDecoder,
    provider: str,
) -> AsyncGenerator[ResponseChunk, None]:
    """Open, read, and always finish with exactly one terminal chunk."""
    outcome = await open_stream(http, url, headers, payload)

    if isinstance(outcome, AuthFailure):
        logger.error(
            f"{provider} authentication failed (401): {outcome.raw_body[:500]}",
            extra={"provider": provider},
        )
        yield ChunkError(f"Error connecting to {provider}: {outcome.message}")
        return

    if isinstance(outcome, TransportFailure):
        logger.error(
            f"{provider} stream could not be opened: {outcome.message}",
            extra={"provider": provider},
        )
        yield ChunkError(
            "I apologize, but there was an error connecting to the AI service: "
            + outcome.message
        )
        return

    response = outcome.response
    try:
        async for chunk in read_chunks(response.aiter_lines(), decode):
            yield chunk
    except httpx.HTTPError as e:
        logger.error(
            f"{provider} stream failed mid-read: {e!r}", extra={"provider": provider}
        )
        yield ChunkError(
            "I apologize, but there was an error connecting to the AI service: "
            + (str(e) or e.__class__.__name__)
        )
    finally:
        await response.aclose()
