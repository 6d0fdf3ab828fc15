"""
OpenAI LLM Provider — chat completions, blocking and streamed.

Blocking calls go through the official SDK (AsyncOpenAI) riding on the
gateway's shared httpx client, with SDK retries off. Streaming reads the
raw SSE body through llm.sse so every provider shares one frame reader.

Works with OpenAI-compatible endpoints too: the configured endpoint may be
either the full ``.../chat/completions`` URL or just the API base.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from openai import APIConnectionError, APIStatusError, AsyncOpenAI, AuthenticationError

from llm_gateway.core.errors import ProviderAuthError, TransportError
from llm_gateway.core.logging import mask_api_key
from llm_gateway.llm.contracts import LLMRequest, LLMResponse
from llm_gateway.llm.sse import FrameDelta
from llm_gateway.providers.base import LLMClient, ProviderFactory
from llm_gateway.providers.catalog import OPENAI_ENDPOINT

logger = logging.getLogger(__name__)

_COMPLETIONS_PATH = "/chat/completions"


def _base_url(endpoint: str) -> str:
    """``https://host/v1/chat/completions`` → ``https://host/v1``."""
    endpoint = endpoint.rstrip("/")
    if endpoint.endswith(_COMPLETIONS_PATH):
        return endpoint[: -len(_COMPLETIONS_PATH)]
    return endpoint


class OpenAIClient(LLMClient):
    provider_name = "OpenAI"

    def __init__(
        self,
        api_key: str,
        endpoint: str,
        model_id: str,
        http_client: httpx.AsyncClient,
    ):
        base_url = _base_url(endpoint or OPENAI_ENDPOINT)
        super().__init__(api_key, base_url + _COMPLETIONS_PATH, model_id, http_client)
        self._sdk = AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            http_client=http_client,
            max_retries=0,
        )

    async def send_request(self, request: LLMRequest) -> LLMResponse:
        kwargs: dict[str, Any] = {
            "model": request.model or self.model_id,
            "messages": [dict(m) for m in request.messages],
            "temperature": request.temperature,
            "max_tokens": request.max_output_tokens,
        }
        if request.tools:
            kwargs["tools"] = [dict(t) for t in request.tools]

        logger.info(
            f"Sending request to {self.endpoint} using model {kwargs['model']} "
            f"with key {mask_api_key(self.api_key)}"
        )

        try:
            completion = await self._sdk.chat.completions.create(**kwargs)
        except AuthenticationError as e:
            raw_body = e.response.text
            logger.error(f"OpenAI authentication failed (401): {raw_body[:500]}")
            raise ProviderAuthError(
                self.provider_name,
                "Authentication failed with OpenAI API. Please check your API key.",
                raw_body,
            ) from e
        except APIStatusError as e:
            logger.error(f"OpenAI request failed ({e.status_code}): {e.message}")
            raise TransportError(
                self.provider_name,
                f"OpenAI request failed ({e.status_code}): {e.message}",
                status=e.status_code,
            ) from e
        except APIConnectionError as e:
            logger.error(f"Error connecting to OpenAI: {e}")
            raise TransportError(
                self.provider_name, f"Error connecting to OpenAI: {e}"
            ) from e

        if not completion.choices:
            logger.warning("Empty response from OpenAI")
            return LLMResponse(model=completion.model, content="")

        choice = completion.choices[0]
        usage = completion.usage
        return LLMResponse(
            model=completion.model,
            content=choice.message.content or "",
            finish_reason=choice.finish_reason,
            input_tokens=usage.prompt_tokens if usage else None,
            output_tokens=usage.completion_tokens if usage else None,
        )

    def stream_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Accept": "text/event-stream",
        }

    def build_stream_payload(self, request: LLMRequest) -> dict[str, Any]:
        payload = request.to_wire()
        payload["model"] = request.model or self.model_id
        payload["stream"] = True
        logger.info(
            f"Streaming from {self.endpoint} using model {payload['model']} "
            f"with key {mask_api_key(self.api_key)}"
        )
        return payload

    def decode_frame(self, data: dict[str, Any]) -> FrameDelta:
        """``choices[0].delta.content`` and ``choices[0].finish_reason``."""
        choices = data.get("choices")
        if not isinstance(choices, list) or not choices:
            return FrameDelta()
        choice = choices[0]
        if not isinstance(choice, dict):
            return FrameDelta()
        delta = choice.get("delta")
        content = delta.get("content") if isinstance(delta, dict) else None
        return FrameDelta(
            text=content if isinstance(content, str) else "",
            finished=choice.get("finish_reason") is not None,
        )


class OpenAIProviderFactory(ProviderFactory):
    provider_name = "OpenAI"
    api_key_env = "OPENAI_API_KEY"

    @property
    def default_endpoint(self) -> str:
        return OPENAI_ENDPOINT

    def _build_client(self, api_key: str, endpoint: str, model_id: str) -> OpenAIClient:
        return OpenAIClient(api_key, endpoint, model_id, self._http)
