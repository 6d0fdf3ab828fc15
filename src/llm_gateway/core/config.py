"""
Gateway Configuration — single source of truth for all settings.

Reads from environment variables with sensible defaults.
No config files, no YAML. Just env vars (and an optional .env file).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()


@dataclass(frozen=True)
class LLMConfig:
    """Default model selection and upstream HTTP settings."""

    model: str = "gpt-3.5-turbo"
    temperature: float = 0.7
    max_tokens: int = 2000
    request_timeout: float = 60.0  # seconds, applies to every provider call

    @classmethod
    def from_env(cls) -> LLMConfig:
        return cls(
            model=os.getenv("GATEWAY_LLM_MODEL", "gpt-3.5-turbo"),
            temperature=float(os.getenv("GATEWAY_LLM_TEMPERATURE", "0.7")),
            max_tokens=int(os.getenv("GATEWAY_LLM_MAX_TOKENS", "2000")),
            request_timeout=float(os.getenv("GATEWAY_LLM_TIMEOUT", "60.0")),
        )


@dataclass(frozen=True)
class TokenConfig:
    """Token budget settings for conversation history."""

    max_tokens_per_message: int = 4000
    max_context_tokens: int = 16000
    reserved_tokens: int = 1000

    @property
    def history_budget(self) -> int:
        """Tokens left for history once the reply and the reserve are set aside."""
        return max(
            0, self.max_context_tokens - self.max_tokens_per_message - self.reserved_tokens
        )

    @classmethod
    def from_env(cls) -> TokenConfig:
        return cls(
            max_tokens_per_message=int(
                os.getenv("GATEWAY_MAX_TOKENS_PER_MESSAGE", "4000")
            ),
            max_context_tokens=int(os.getenv("GATEWAY_MAX_CONTEXT_TOKENS", "16000")),
            reserved_tokens=int(os.getenv("GATEWAY_RESERVED_TOKENS", "1000")),
        )


@dataclass(frozen=True)
class ServerConfig:
    """Server settings."""

    host: str = "0.0.0.0"
    port: int = 8000
    ws_send_timeout: float = 5.0
    exchange_timeout: float = 120.0  # wall clock budget for one exchange

    @classmethod
    def from_env(cls) -> ServerConfig:
        return cls(
            host=os.getenv("GATEWAY_HOST", "0.0.0.0"),
            port=int(os.getenv("GATEWAY_PORT", "8000")),
            ws_send_timeout=float(os.getenv("GATEWAY_WS_SEND_TIMEOUT", "5.0")),
            exchange_timeout=float(os.getenv("GATEWAY_EXCHANGE_TIMEOUT", "120.0")),
        )


@dataclass(frozen=True)
class StoreConfig:
    """Persistence and credential settings."""

    db_path: str = "gateway.db"
    credential_secret: str = ""
    cost_precision: int = 6  # decimal places kept on estimated cost
    context_cache_size: int = 1000  # session contexts kept in memory

    @classmethod
    def from_env(cls) -> StoreConfig:
        return cls(
            db_path=os.getenv("GATEWAY_DB_PATH", "gateway.db"),
            credential_secret=os.getenv("GATEWAY_CREDENTIAL_SECRET", ""),
            cost_precision=int(os.getenv("GATEWAY_COST_PRECISION", "6")),
            context_cache_size=int(os.getenv("GATEWAY_CONTEXT_CACHE_SIZE", "1000")),
        )


@dataclass(frozen=True)
class GatewayConfig:
    """Root configuration — one object for every component."""

    llm: LLMConfig = field(default_factory=LLMConfig)
    tokens: TokenConfig = field(default_factory=TokenConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    store: StoreConfig = field(default_factory=StoreConfig)

    @classmethod
    def from_env(cls) -> GatewayConfig:
        return cls(
            llm=LLMConfig.from_env(),
            tokens=TokenConfig.from_env(),
            server=ServerConfig.from_env(),
            store=StoreConfig.from_env(),
        )


# Singleton: import this wherever you need config
config = GatewayConfig.from_env()


def reload_config() -> GatewayConfig:
    """Re-read the environment and replace the module-level singleton.

    Modules that did ``from llm_gateway.core.config import config`` keep
    the old object; read ``config_module.config`` when a reload matters.
    """
    global config
    config = GatewayConfig.from_env()
    return config
