"""
LLM Gateway — streaming chat exchanges over WebSocket and SSE.

Wires the pieces together:
- SQLite-backed session contexts and usage log
- Provider registry (OpenAI, Anthropic) on one shared httpx client
- Streaming orchestrator behind a WebSocket gateway and an HTTP router

Run: uvicorn llm_gateway.main:app --host 0.0.0.0 --port 8000
     or llm-gateway  (binds GATEWAY_HOST / GATEWAY_PORT)
"""

from __future__ import annotations

import logging
import os

import httpx
from fastapi import FastAPI, Request, WebSocket
from fastapi.responses import JSONResponse

from llm_gateway.core.config import config
from llm_gateway.core.crypto import CredentialCipher
from llm_gateway.core.errors import GatewayError
from llm_gateway.core.logging import mask_api_key, setup_logging
from llm_gateway.core.metrics import metrics
from llm_gateway.http.chat import create_chat_router
from llm_gateway.llm.orchestrator import StreamingOrchestrator
from llm_gateway.llm.tokens import TokenBudget
from llm_gateway.providers.catalog import default_catalog
from llm_gateway.providers.credentials import Credential, InMemoryCredentialStore
from llm_gateway.providers.registry import create_default_registry
from llm_gateway.session.context import SessionContextStore
from llm_gateway.session.store import SQLiteSessionRepository
from llm_gateway.transport.websocket import WebSocketGateway
from llm_gateway.usage.sink import SQLiteUsageSink

# --- Setup ---
setup_logging()
logger = logging.getLogger("llm_gateway")

VERSION = "0.1.0"

# --- App ---
app = FastAPI(title="LLM Gateway", version=VERSION)

# --- Shared state ---
http_client = httpx.AsyncClient(timeout=config.llm.request_timeout)
cipher = CredentialCipher(config.store.credential_secret)

session_repository = SQLiteSessionRepository(config.store.db_path)
usage_sink = SQLiteUsageSink(config.store.db_path)
token_budget = TokenBudget()
context_store = SessionContextStore(
    session_repository, token_budget, cache_size=config.store.context_cache_size
)

catalog = default_catalog()
registry = create_default_registry(http_client, cipher)


def _seed_credentials() -> InMemoryCredentialStore:
    """System-wide default credentials from the provider env vars."""
    store = InMemoryCredentialStore(cipher=cipher)
    for provider, env_var in (("OpenAI", "OPENAI_API_KEY"), ("Anthropic", "ANTHROPIC_API_KEY")):
        api_key = os.getenv(env_var, "")
        if not api_key:
            continue
        store.add(Credential(provider=provider, api_key=api_key, is_default=True))
        logger.info(f"Loaded {provider} credential ({mask_api_key(api_key)})")
    return store


credential_store = _seed_credentials()

orchestrator = StreamingOrchestrator(
    context_store=context_store,
    registry=registry,
    catalog=catalog,
    credentials=credential_store,
    usage_sink=usage_sink,
    token_budget=token_budget,
    config=config,
    metrics=metrics,
)
ws_gateway = WebSocketGateway(orchestrator, send_timeout=config.server.ws_send_timeout)

app.include_router(create_chat_router(orchestrator, context_store, usage_sink))


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


@app.on_event("startup")
async def startup():
    await session_repository.start()
    await usage_sink.start()

    logger.info(
        "LLM Gateway %s ready (db=%s, providers=%s, default model=%s)",
        VERSION,
        config.store.db_path,
        registry.names(),
        config.llm.model,
    )


@app.on_event("shutdown")
async def shutdown():
    await ws_gateway.stop()
    await http_client.aclose()
    await usage_sink.stop()
    await session_repository.stop()


@app.get("/health")
async def health():
    """Health check — reports providers, models and live connections."""
    return JSONResponse(
        {
            "status": "ok",
            "version": VERSION,
            "providers": registry.names(),
            "models": [m.model_id for m in catalog.models() if m.is_enabled],
            "connections": ws_gateway.connection_count,
        }
    )


@app.get("/models")
async def list_models():
    """Enabled models on enabled providers, for model pickers."""
    enabled = {p.name for p in catalog.providers() if p.is_enabled}
    return JSONResponse(
        {
            "models": [
                {
                    "modelId": m.model_id,
                    "name": m.name,
                    "provider": m.provider,
                    "maxTokens": m.max_tokens,
                    "contextWindow": m.context_window,
                    "supportsStreaming": m.supports_streaming,
                }
                for m in catalog.models()
                if m.is_enabled and m.provider in enabled
            ]
        }
    )


@app.get("/metrics")
async def get_metrics():
    return JSONResponse(metrics.snapshot())


@app.websocket("/ws")
async def websocket_endpoint(ws: WebSocket):
    await ws_gateway.handle_connection(ws)


def run() -> None:
    """Serve the app on GATEWAY_HOST / GATEWAY_PORT."""
    import uvicorn

    logger.info(f"Starting LLM Gateway on {config.server.host}:{config.server.port}")
    uvicorn.run(app, host=config.server.host, port=config.server.port)


if __name__ == "__main__":
    run()
