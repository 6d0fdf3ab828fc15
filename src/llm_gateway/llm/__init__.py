"""
LLM Package — the provider-agnostic side of an exchange.

This package provides:
- LLMRequest / LLMResponse: fixed request and result structures
- ResponseChunk (Partial | Complete | ChunkError): streamed output
- TokenBudget: token estimation and context trimming
- StreamingOrchestrator: the per-exchange state machine
"""

from llm_gateway.llm.contracts import (
    ERROR_SENTINEL,
    ChunkError,
    Complete,
    InboundMessage,
    LLMRequest,
    LLMResponse,
    Partial,
    ResponseChunk,
)
from llm_gateway.llm.tokens import TokenBudget

__all__ = [
    # Contracts
    "ERROR_SENTINEL",
    "LLMRequest",
    "LLMResponse",
    "ResponseChunk",
    "Partial",
    "Complete",
    "ChunkError",
    "InboundMessage",
    # Tokens
    "TokenBudget",
]
