"""
Anthropic LLM Provider — Messages API over plain httpx.

Differences from the OpenAI shape, handled here:
- auth is ``x-api-key`` plus a pinned ``anthropic-version`` header
- the system prompt is a top-level field, not a message
- content is a list of typed blocks
- stream events are typed: content_block_delta carries text, message_stop ends
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from llm_gateway.core.errors import ProviderAuthError, TransportError
from llm_gateway.core.logging import mask_api_key
from llm_gateway.llm.contracts import LLMRequest, LLMResponse
from llm_gateway.llm.sse import FrameDelta, extract_error_message
from llm_gateway.providers.base import LLMClient, ProviderFactory
from llm_gateway.providers.catalog import ANTHROPIC_ENDPOINT

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"

# Anthropic requires max_tokens; used when the request leaves it unset
DEFAULT_MAX_TOKENS = 1000


def to_anthropic_payload(request: LLMRequest, default_model: str) -> dict[str, Any]:
    """
    Convert a generic request to the Messages API body.

    System messages are lifted out (the last one wins), unknown roles are
    sent as user turns, and empty content gets a placeholder because the
    API rejects empty text blocks.
    """
    system: str | None = None
    messages: list[dict[str, Any]] = []

    for message in request.messages:
        role = message.get("role", "user").lower()
        content = message.get("content", "")
        if role == "system":
            system = content
            continue
        if role != "assistant":
            role = "user"
        if not content:
            content = "Hello" if role == "user" else "How can I help you?"
        messages.append({"role": role, "content": [{"type": "text", "text": content}]})

    if not any(m["role"] == "user" for m in messages):
        messages.insert(0, {"role": "user", "content": [{"type": "text", "text": "Hello"}]})

    payload: dict[str, Any] = {
        "model": request.model or default_model,
        "messages": messages,
        "max_tokens": request.max_output_tokens if request.max_output_tokens > 0 else DEFAULT_MAX_TOKENS,
        "temperature": request.temperature,
        "stream": request.stream,
    }
    if system:
        payload["system"] = system
    return payload


class AnthropicClient(LLMClient):
    provider_name = "Anthropic"

    def _headers(self) -> dict[str, str]:
        return {
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }

    async def send_request(self, request: LLMRequest) -> LLMResponse:
        payload = to_anthropic_payload(request, self.model_id)
        payload["stream"] = False

        logger.info(
            f"Sending request to {self.endpoint} using model {payload['model']} "
            f"with key {mask_api_key(self.api_key)}"
        )

        try:
            response = await self._http.post(
                self.endpoint, headers=self._headers(), json=payload
            )
        except httpx.HTTPError as e:
            logger.error(f"Error connecting to Anthropic: {e!r}")
            raise TransportError(
                self.provider_name, f"Error connecting to Anthropic: {e}"
            ) from e

        if response.status_code == 401:
            logger.error(f"Anthropic authentication failed (401): {response.text[:500]}")
            raise ProviderAuthError(
                self.provider_name,
                "Authentication failed with Anthropic API. Please check your API key.",
                response.text,
            )

        if response.is_error:
            message = extract_error_message(response.text, response.reason_phrase)
            logger.error(f"Anthropic request failed ({response.status_code}): {message}")
            raise TransportError(
                self.provider_name,
                f"Anthropic request failed ({response.status_code}): {message}",
                status=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"Anthropic returned a non-JSON body: {response.text[:200]}")
            raise TransportError(
                self.provider_name, "Anthropic returned an unreadable response"
            ) from e
        if not isinstance(data, dict):
            raise TransportError(
                self.provider_name, "Anthropic returned an unreadable response"
            )
        text = "".join(
            block.get("text", "")
            for block in data.get("content") or []
            if isinstance(block, dict) and block.get("type") == "text"
        )
        usage = data.get("usage")
        if not isinstance(usage, dict):
            usage = {}
        return LLMResponse(
            model=data.get("model", payload["model"]),
            content=text,
            finish_reason=data.get("stop_reason"),
            input_tokens=usage.get("input_tokens"),
            output_tokens=usage.get("output_tokens"),
        )

    def stream_headers(self) -> dict[str, str]:
        return {**self._headers(), "accept": "text/event-stream"}

    def build_stream_payload(self, request: LLMRequest) -> dict[str, Any]:
        payload = to_anthropic_payload(request, self.model_id)
        payload["stream"] = True
        logger.info(
            f"Streaming from {self.endpoint} using model {payload['model']} "
            f"with key {mask_api_key(self.api_key)}"
        )
        return payload

    def decode_frame(self, data: dict[str, Any]) -> FrameDelta:
        event_type = data.get("type")
        if event_type == "content_block_delta":
            delta = data.get("delta")
            text = delta.get("text") if isinstance(delta, dict) else None
            return FrameDelta(text=text if isinstance(text, str) else "")
        if event_type == "message_stop":
            return FrameDelta(finished=True)
        if event_type not in ("message_start", "content_block_start",
                              "content_block_stop", "message_delta", "ping"):
            logger.warning(f"Unknown Anthropic stream event: {event_type}")
        return FrameDelta()


class AnthropicProviderFactory(ProviderFactory):
    provider_name = "Anthropic"
    api_key_env = "ANTHROPIC_API_KEY"

    @property
    def default_endpoint(self) -> str:
        return ANTHROPIC_ENDPOINT

    def _build_client(self, api_key: str, endpoint: str, model_id: str) -> AnthropicClient:
        return AnthropicClient(api_key, endpoint, model_id, self._http)
