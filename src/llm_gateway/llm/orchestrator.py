"""
Streaming Orchestrator — drives one exchange from inbound message to usage record.

Per-exchange state machine:

    VALIDATING → CONTEXT_LOADED → TRIMMED → PROVIDER_RESOLVED
               → STREAMING → FINALIZING → COMPLETED
                                        ↘ FAILED   (from any state)

Every exchange that reaches STREAMING ends with exactly one terminal event
on the channel: the transport's own terminal chunk, or an error chunk the
orchestrator sends on its behalf (timeout, resolution failure, ...).

Cancellation: each read from the chunk stream is raced against the
channel's cancellation event and the exchange deadline. When either wins,
the orchestrator stops reading, closes the stream and fails the exchange.

Usage:
    orchestrator = StreamingOrchestrator(
        context_store=store,
        registry=registry,
        catalog=default_catalog(),
        credentials=credential_store,
        usage_sink=usage_sink,
    )
    result = await orchestrator.run_exchange(inbound, channel)
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncGenerator, Awaitable, TypeVar

from llm_gateway.core.config import GatewayConfig
from llm_gateway.core.errors import (
    ConfigurationError,
    ProviderAuthError,
    TransportError,
    ValidationError,
)
from llm_gateway.core.logging import ExchangeTimer
from llm_gateway.core.metrics import MetricsCollector
from llm_gateway.core.metrics import metrics as default_metrics
from llm_gateway.llm.contracts import (
    ChunkError,
    Complete,
    InboundMessage,
    LLMRequest,
    ResponseChunk,
)
from llm_gateway.llm.tokens import TokenBudget
from llm_gateway.providers.base import LLMClient
from llm_gateway.providers.catalog import ModelCatalog, ModelInfo, ProviderInfo
from llm_gateway.providers.credentials import CredentialStore
from llm_gateway.providers.registry import ProviderRegistry
from llm_gateway.session.context import SessionContextStore
from llm_gateway.transport.base import DeliveryChannel
from llm_gateway.transport.events import ChannelError, ChannelMessage
from llm_gateway.usage.records import UsageRecord, failure_record, success_record
from llm_gateway.usage.sink import UsageSink

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ExchangeState(str, Enum):
    VALIDATING = "validating"
    CONTEXT_LOADED = "context_loaded"
    TRIMMED = "trimmed"
    PROVIDER_RESOLVED = "provider_resolved"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"


class ExchangeCancelled(Exception):
    """The client went away or the exchange ran out of time."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


@dataclass
class ExchangeResult:
    """What happened to one exchange."""

    session_id: str
    state: ExchangeState
    output: str = ""
    usage: UsageRecord | None = None
    error: str | None = None
    transitions: list[ExchangeState] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.state == ExchangeState.COMPLETED


@dataclass
class _Exchange:
    """Mutable bookkeeping for one run of the state machine."""

    inbound: InboundMessage
    model_id: str
    exchange_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    state: ExchangeState = ExchangeState.VALIDATING
    transitions: list[ExchangeState] = field(default_factory=list)
    timer: ExchangeTimer = field(default_factory=ExchangeTimer)
    provider: ProviderInfo | None = None
    model: ModelInfo | None = None
    terminal_delivered: bool = False
    deadline: float = 0.0

    def enter(self, state: ExchangeState) -> None:
        self.state = state
        self.transitions.append(state)
        self.timer.mark(state.value)

    def log_extra(self) -> dict[str, Any]:
        return {
            "exchange_id": self.exchange_id,
            "session_id": self.inbound.session_id,
            "model": self.model_id,
            "provider": self.provider.name if self.provider else "",
            "state": self.state.value,
        }


def apply_system_prompt(
    messages: list[dict[str, str]], system_prompt: str | None
) -> list[dict[str, str]]:
    """Replace the leading system message, or insert one, when a prompt is given."""
    if not system_prompt:
        return messages
    prompt = {"role": "system", "content": system_prompt}
    if messages and messages[0].get("role") == "system":
        return [prompt] + messages[1:]
    return [prompt] + messages


class StreamingOrchestrator:
    def __init__(
        self,
        context_store: SessionContextStore,
        registry: ProviderRegistry,
        catalog: ModelCatalog,
        credentials: CredentialStore,
        usage_sink: UsageSink,
        token_budget: TokenBudget | None = None,
        config: GatewayConfig | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self._contexts = context_store
        self._registry = registry
        self._catalog = catalog
        self._credentials = credentials
        self._usage = usage_sink
        self._budget = token_budget or TokenBudget()
        self._config = config or GatewayConfig()
        self._metrics = metrics or default_metrics

    # ─── Entry point ──────────────────────────────────────────────

    async def run_exchange(
        self, inbound: InboundMessage, channel: DeliveryChannel
    ) -> ExchangeResult:
        """
        Run one exchange and report how it ended.

        Only ProviderAuthError (non-streaming path) escapes; everything else,
        including unexpected failures in the repository or a provider client,
        ends as a FAILED result with the error already sent to the channel.
        """
        ex = _Exchange(inbound=inbound, model_id=inbound.model_id or self._config.llm.model)
        ex.deadline = asyncio.get_running_loop().time() + self._config.server.exchange_timeout
        ex.enter(ExchangeState.VALIDATING)

        try:
            self._validate(inbound)
        except ValidationError as e:
            await channel.send(ChannelError(inbound.session_id, e.message))
            ex.terminal_delivered = True
            return await self._fail(ex, channel, e.message)

        try:
            return await self._run_stages(ex, channel)
        except ProviderAuthError:
            raise
        except Exception as e:
            logger.exception(
                f"Exchange {ex.exchange_id} crashed in {ex.state.value}", extra=ex.log_extra()
            )
            return await self._fail(ex, channel, f"Internal error: {e}")

    async def _run_stages(
        self, ex: _Exchange, channel: DeliveryChannel
    ) -> ExchangeResult:
        inbound = ex.inbound
        session_id = inbound.session_id
        await self._contexts.get_or_create(session_id)
        context = await self._contexts.attach_metadata(session_id, inbound.metadata)
        ex.enter(ExchangeState.CONTEXT_LOADED)

        trimmed = self._budget.trim_context_to_fit_token_limit(
            context, self._config.tokens.history_budget
        )
        messages = self._budget.convert_to_request_messages(
            trimmed.messages, inbound.user_input
        )
        messages = apply_system_prompt(messages, inbound.system_prompt)
        ex.enter(ExchangeState.TRIMMED)

        try:
            client = await self._resolve_client(ex)
        except ConfigurationError as e:
            logger.error(f"Provider resolution failed: {e.message}", extra=ex.log_extra())
            return await self._fail(ex, channel, e.message)

        assert ex.model is not None
        request = LLMRequest(
            model=ex.model.model_id,
            messages=tuple(messages),
            temperature=(
                inbound.temperature
                if inbound.temperature is not None
                else self._config.llm.temperature
            ),
            max_output_tokens=inbound.max_tokens or self._config.llm.max_tokens,
            stream=inbound.stream and ex.model.supports_streaming,
        )
        ex.enter(ExchangeState.PROVIDER_RESOLVED)
        logger.info(
            f"Exchange {ex.exchange_id} resolved to {ex.provider.name if ex.provider else '?'}"
            f"/{ex.model.model_id} ({len(messages)} messages)",
            extra=ex.log_extra(),
        )

        if request.stream:
            return await self._stream(ex, client, request, channel)
        return await self._complete(ex, client, request, channel)

    def _validate(self, inbound: InboundMessage) -> None:
        if not inbound.session_id or not inbound.session_id.strip():
            raise ValidationError("Session ID is required")
        if not inbound.user_input or not inbound.user_input.strip():
            raise ValidationError("User input is required")

    async def _resolve_client(self, ex: _Exchange) -> LLMClient:
        provider, model = self._catalog.resolve(ex.model_id)
        ex.provider, ex.model = provider, model
        factory = self._registry.resolve(provider.name)
        credential = await self._credentials.get_credential(
            provider.name, ex.inbound.user_id
        )
        return factory.create_client(provider, model, credential)

    # ─── Streaming path ───────────────────────────────────────────

    async def _stream(
        self,
        ex: _Exchange,
        client: LLMClient,
        request: LLMRequest,
        channel: DeliveryChannel,
    ) -> ExchangeResult:
        ex.enter(ExchangeState.STREAMING)
        session_id = ex.inbound.session_id
        chunks = client.stream(request)
        terminal: ResponseChunk | None = None

        try:
            while terminal is None:
                chunk = await self._race(_next_chunk(chunks), channel, ex.deadline)
                if chunk is None:
                    break
                if not ex.timer.has("first_chunk"):
                    ex.timer.mark("first_chunk")
                    self._observe_first_chunk(ex)
                if chunk.is_complete:
                    terminal = chunk
                    ex.terminal_delivered = True
                if chunk.text or chunk.is_complete:
                    await channel.send(ChannelMessage.from_chunk(session_id, chunk))
        except ExchangeCancelled as e:
            logger.info(f"Exchange {ex.exchange_id} cancelled: {e.reason}", extra=ex.log_extra())
            return await self._fail(ex, channel, f"cancelled: {e.reason}")
        finally:
            await chunks.aclose()

        if terminal is None:
            return await self._fail(ex, channel, "Stream ended without a terminal chunk")

        ex.enter(ExchangeState.FINALIZING)
        if isinstance(terminal, ChunkError):
            return await self._fail(ex, channel, terminal.message)

        assert isinstance(terminal, Complete)
        return await self._finish(ex, request, terminal.full_text)

    # ─── Non-streaming path ───────────────────────────────────────

    async def _complete(
        self,
        ex: _Exchange,
        client: LLMClient,
        request: LLMRequest,
        channel: DeliveryChannel,
    ) -> ExchangeResult:
        ex.enter(ExchangeState.STREAMING)
        session_id = ex.inbound.session_id

        try:
            response = await self._race(client.send_request(request), channel, ex.deadline)
        except ExchangeCancelled as e:
            return await self._fail(ex, channel, f"cancelled: {e.reason}")
        except ProviderAuthError as e:
            logger.error(
                f"{e.provider} rejected credentials: {e.raw_body[:500]}",
                extra=ex.log_extra(),
            )
            await channel.send(ChannelError(session_id, f"{e.provider}: {e.message}"))
            ex.terminal_delivered = True
            await self._fail(ex, channel, e.message)
            raise
        except TransportError as e:
            await channel.send(ChannelError(session_id, e.message))
            ex.terminal_delivered = True
            return await self._fail(ex, channel, e.message)

        ex.enter(ExchangeState.FINALIZING)
        await channel.send(ChannelMessage(session_id, response.content, True))
        ex.terminal_delivered = True
        return await self._finish(ex, request, response.content)

    # ─── Terminal states ──────────────────────────────────────────

    async def _finish(
        self, ex: _Exchange, request: LLMRequest, output: str
    ) -> ExchangeResult:
        assert ex.model is not None
        inbound = ex.inbound
        await self._contexts.append_exchange(inbound.session_id, inbound.user_input, output)

        usage = success_record(
            session_id=inbound.session_id,
            model=ex.model,
            input_tokens=self._budget.count_request_tokens(request.messages),
            output_tokens=self._budget.count_tokens(output),
            duration_ms=ex.timer.total_ms(),
            user_id=inbound.user_id,
            precision=self._config.store.cost_precision,
        )
        await self._record_usage(usage)

        ex.enter(ExchangeState.COMPLETED)
        self._count(ex)
        logger.info(
            f"Exchange {ex.exchange_id} completed ({ex.timer.summary()})",
            extra={**ex.log_extra(), "duration_ms": usage.duration_ms},
        )
        return ExchangeResult(
            session_id=inbound.session_id,
            state=ex.state,
            output=output,
            usage=usage,
            transitions=list(ex.transitions),
        )

    async def _fail(
        self, ex: _Exchange, channel: DeliveryChannel, message: str
    ) -> ExchangeResult:
        if not ex.terminal_delivered:
            await channel.send(
                ChannelMessage.from_chunk(ex.inbound.session_id, ChunkError(message))
            )
            ex.terminal_delivered = True

        usage = failure_record(
            session_id=ex.inbound.session_id,
            model_id=ex.model.model_id if ex.model else ex.model_id,
            provider=ex.provider.name if ex.provider else "",
            user_id=ex.inbound.user_id,
            error_message=message,
            duration_ms=ex.timer.total_ms(),
        )
        await self._record_usage(usage)

        ex.enter(ExchangeState.FAILED)
        self._count(ex)
        logger.warning(
            f"Exchange {ex.exchange_id} failed: {usage.error_message}",
            extra={**ex.log_extra(), "duration_ms": usage.duration_ms},
        )
        return ExchangeResult(
            session_id=ex.inbound.session_id,
            state=ex.state,
            usage=usage,
            error=usage.error_message,
            transitions=list(ex.transitions),
        )

    async def _record_usage(self, usage: UsageRecord) -> None:
        try:
            await self._usage.record(usage)
        except Exception:
            logger.exception(f"Failed to record usage for session {usage.session_id}")

    # ─── Cancellation ─────────────────────────────────────────────

    async def _race(
        self, awaitable: Awaitable[T], channel: DeliveryChannel, deadline: float
    ) -> T:
        """Await ``awaitable`` unless the channel cancels or the deadline passes first."""
        task = asyncio.ensure_future(awaitable)
        cancel_wait = asyncio.ensure_future(channel.cancelled.wait())
        try:
            timeout = max(0.0, deadline - asyncio.get_running_loop().time())
            done, _ = await asyncio.wait(
                {task, cancel_wait},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
            if task in done:
                return task.result()
        finally:
            cancel_wait.cancel()
            if not task.done():
                task.cancel()
                # Let the abandoned read unwind before anyone touches the stream
                await asyncio.gather(task, return_exceptions=True)

        if channel.is_cancelled:
            raise ExchangeCancelled(channel.cancel_reason or "client disconnected")
        raise ExchangeCancelled("exchange timed out")

    # ─── Metrics ──────────────────────────────────────────────────

    def _observe_first_chunk(self, ex: _Exchange) -> None:
        elapsed = ex.timer.since_start_ms("first_chunk")
        if elapsed is not None:
            self._metrics.observe(
                "gateway.first_chunk_ms",
                elapsed,
                labels={"provider": ex.provider.name if ex.provider else "unknown"},
            )

    def _count(self, ex: _Exchange) -> None:
        self._metrics.inc("gateway.exchanges", labels={"state": ex.state.value})
        self._metrics.observe("gateway.exchange_ms", ex.timer.total_ms())


async def _next_chunk(
    chunks: AsyncGenerator[ResponseChunk, None],
) -> ResponseChunk | None:
    try:
        return await chunks.__anext__()
    except StopAsyncIteration:
        return None
