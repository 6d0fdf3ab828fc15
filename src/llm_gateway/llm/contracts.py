"""
LLM Contracts — fixed input/output structures for every provider call.

- LLMRequest: provider-agnostic request (built fresh per call, never mutated)
- LLMResponse: non-streaming result
- ResponseChunk: Partial | Complete | ChunkError, the streamed output
- InboundMessage: what a client asks the gateway to do

Every stream ends with exactly one chunk whose ``is_complete`` is True,
either a Complete carrying the full text or a ChunkError.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

from llm_gateway.core.errors import ValidationError

# Prefix on the wire text of a terminal chunk that carries an error.
# Usage accounting keys off it: such exchanges are not billed.
ERROR_SENTINEL = "[ERROR_NO_BILLING]"


# ═══════════════════════════════════════════════════════════════════════════════
# REQUEST / RESPONSE
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class LLMRequest:
    """
    Provider-agnostic chat request.

    Usage:
        request = LLMRequest(
            model="gpt-4o",
            messages=({"role": "user", "content": "Hello"},),
            temperature=0.7,
            max_output_tokens=500,
            stream=True,
        )
    """

    model: str
    messages: tuple[dict[str, str], ...]
    temperature: float = 0.7
    max_output_tokens: int = 2000
    stream: bool = False
    tools: tuple[dict[str, Any], ...] | None = None

    def to_wire(self) -> dict[str, Any]:
        """OpenAI-style wire JSON."""
        body: dict[str, Any] = {
            "model": self.model,
            "messages": [dict(m) for m in self.messages],
            "temperature": self.temperature,
            "max_tokens": self.max_output_tokens,
            "stream": self.stream,
        }
        if self.tools:
            body["tools"] = [dict(t) for t in self.tools]
        return body


@dataclass(frozen=True)
class LLMResponse:
    """Result of a non-streaming call."""

    model: str
    content: str
    finish_reason: str | None = None
    input_tokens: int | None = None
    output_tokens: int | None = None


# ═══════════════════════════════════════════════════════════════════════════════
# STREAMED CHUNKS
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class Partial:
    """One text delta."""

    text: str

    @property
    def is_complete(self) -> bool:
        return False


@dataclass(frozen=True)
class Complete:
    """Terminal chunk of a successful stream, carrying the accumulated text."""

    full_text: str

    @property
    def text(self) -> str:
        return self.full_text

    @property
    def is_complete(self) -> bool:
        return True


@dataclass(frozen=True)
class ChunkError:
    """Terminal chunk of a failed stream."""

    message: str
    fatal: bool = True

    @property
    def text(self) -> str:
        return f"{ERROR_SENTINEL}{self.message}"

    @property
    def is_complete(self) -> bool:
        return True


ResponseChunk = Union[Partial, Complete, ChunkError]


def strip_error_sentinel(text: str) -> str:
    if text.startswith(ERROR_SENTINEL):
        return text[len(ERROR_SENTINEL):]
    return text


# ═══════════════════════════════════════════════════════════════════════════════
# INBOUND
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass
class InboundMessage:
    """A client's request for one exchange (real-time channel or HTTP)."""

    session_id: str
    user_input: str
    stream: bool = True
    metadata: dict[str, str] = field(default_factory=dict)
    model_id: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    system_prompt: str | None = None
    user_id: str | None = None

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> InboundMessage:
        """
        Parse the camelCase wire shape sent by clients.

        Missing optional fields take their defaults. A field of the wrong
        type raises ValidationError naming it; ``stream`` also accepts the
        strings "true" and "false".
        """
        metadata = data.get("metadata")
        if metadata is None:
            metadata = {}
        elif not isinstance(metadata, dict):
            raise ValidationError("metadata must be an object")
        return cls(
            session_id=_wire_text(data, "sessionId") or "",
            user_input=_wire_text(data, "userInput") or "",
            stream=_wire_flag(data, "stream", default=True),
            metadata={str(k): str(v) for k, v in metadata.items()},
            model_id=_wire_text(data, "modelId"),
            temperature=_wire_number(data, "temperature"),
            max_tokens=_wire_int(data, "maxTokens"),
            system_prompt=_wire_text(data, "systemPrompt"),
            user_id=_wire_text(data, "userId"),
        )


def _wire_text(data: dict[str, Any], key: str) -> str | None:
    value = data.get(key)
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    raise ValidationError(f"{key} must be a string")


def _wire_flag(data: dict[str, Any], key: str, default: bool) -> bool:
    value = data.get(key)
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "false"):
        return value.lower() == "true"
    raise ValidationError(f"{key} must be a boolean")


def _wire_number(data: dict[str, Any], key: str) -> float | None:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    raise ValidationError(f"{key} must be a number")


def _wire_int(data: dict[str, Any], key: str) -> int | None:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    raise ValidationError(f"{key} must be an integer")
