"""
Provider base classes — the two clean boundaries.

ProviderFactory turns (provider, model, credential) into an LLMClient.
LLMClient talks to one backend: a blocking send_request() and a streaming
stream() that always ends in exactly one terminal chunk.

Adding a provider means one subclass of each plus a register() call.
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from typing import Any, AsyncGenerator, Awaitable, Callable

import httpx

from llm_gateway.core.crypto import CredentialCipher
from llm_gateway.llm.contracts import LLMRequest, LLMResponse, ResponseChunk
from llm_gateway.llm.sse import FrameDelta, stream_chunks
from llm_gateway.providers.catalog import ModelInfo, ProviderInfo
from llm_gateway.providers.credentials import Credential, resolve_api_key

logger = logging.getLogger(__name__)

OnChunk = Callable[[str, bool], Awaitable[None]]


class LLMClient(ABC):
    """One provider backend, bound to an API key, endpoint and model."""

    provider_name: str = "base"

    def __init__(
        self,
        api_key: str,
        endpoint: str,
        model_id: str,
        http_client: httpx.AsyncClient,
    ):
        self.api_key = api_key
        self.endpoint = endpoint
        self.model_id = model_id
        self._http = http_client

    @abstractmethod
    async def send_request(self, request: LLMRequest) -> LLMResponse:
        """Non-streaming call. Raises ProviderAuthError on HTTP 401."""
        ...

    @abstractmethod
    def build_stream_payload(self, request: LLMRequest) -> dict[str, Any]:
        """Provider-specific JSON body for a streaming call."""
        ...

    @abstractmethod
    def stream_headers(self) -> dict[str, str]:
        ...

    @abstractmethod
    def decode_frame(self, data: dict[str, Any]) -> FrameDelta:
        """Read one decoded SSE payload."""
        ...

    def stream(self, request: LLMRequest) -> AsyncGenerator[ResponseChunk, None]:
        """Stream the response as ordered chunks. Never raises on upstream failure."""
        return stream_chunks(
            self._http,
            self.endpoint,
            self.stream_headers(),
            self.build_stream_payload(request),
            self.decode_frame,
            self.provider_name,
        )

    async def stream_response(self, request: LLMRequest, on_chunk: OnChunk) -> None:
        """Callback form of stream(): on_chunk(text, is_complete) in order."""
        async for chunk in self.stream(request):
            await on_chunk(chunk.text, chunk.is_complete)


class ProviderFactory(ABC):
    """Builds clients for one provider name."""

    provider_name: str = "base"
    # Environment variable consulted when a credential has no usable key
    api_key_env: str = ""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        cipher: CredentialCipher | None = None,
    ):
        self._http = http_client
        self._cipher = cipher or CredentialCipher()

    def can_handle(self, provider_name: str) -> bool:
        return provider_name.lower() == self.provider_name.lower()

    def create_client(
        self,
        provider: ProviderInfo,
        model: ModelInfo,
        credential: Credential | None,
    ) -> LLMClient:
        """Resolve the API key and build a client. No network call is made."""
        fallback = os.getenv(self.api_key_env, "") if self.api_key_env else ""
        api_key = resolve_api_key(self.provider_name, credential, self._cipher, fallback)
        return self._build_client(
            api_key=api_key,
            endpoint=provider.api_endpoint or self.default_endpoint,
            model_id=model.model_id,
        )

    @property
    @abstractmethod
    def default_endpoint(self) -> str:
        ...

    @abstractmethod
    def _build_client(self, api_key: str, endpoint: str, model_id: str) -> LLMClient:
        ...
