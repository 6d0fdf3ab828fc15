"""
Usage Records — one write-once accounting entry per exchange.

Cost is priced per 1K tokens from the model catalog:

    cost = input_tokens / 1000 * cost_per_1k_input
         + output_tokens / 1000 * cost_per_1k_output

Failed exchanges (including those whose terminal chunk carried the error
sentinel) are recorded with zero tokens and zero cost.
"""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from typing import Any

from llm_gateway.llm.contracts import strip_error_sentinel
from llm_gateway.providers.catalog import ModelInfo


@dataclass(frozen=True)
class UsageRecord:
    session_id: str
    model_id: str
    provider: str = ""
    user_id: str | None = None
    input_tokens: int = 0
    output_tokens: int = 0
    estimated_cost: float = 0.0
    duration_ms: int = 0
    success: bool = True
    error_message: str | None = None
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def estimate_cost(
    input_tokens: int,
    output_tokens: int,
    model: ModelInfo | None,
    precision: int = 6,
) -> float:
    if model is None:
        return 0.0
    cost = (
        input_tokens / 1000 * model.cost_per_1k_input
        + output_tokens / 1000 * model.cost_per_1k_output
    )
    return round(cost, precision)


def success_record(
    *,
    session_id: str,
    model: ModelInfo,
    input_tokens: int,
    output_tokens: int,
    duration_ms: int,
    user_id: str | None = None,
    precision: int = 6,
) -> UsageRecord:
    return UsageRecord(
        session_id=session_id,
        model_id=model.model_id,
        provider=model.provider,
        user_id=user_id,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        estimated_cost=estimate_cost(input_tokens, output_tokens, model, precision),
        duration_ms=duration_ms,
        success=True,
    )


def failure_record(
    *,
    session_id: str,
    model_id: str,
    error_message: str,
    duration_ms: int,
    provider: str = "",
    user_id: str | None = None,
) -> UsageRecord:
    """A failed exchange: nothing billed, sentinel stripped from the message."""
    return UsageRecord(
        session_id=session_id,
        model_id=model_id,
        provider=provider,
        user_id=user_id,
        duration_ms=duration_ms,
        success=False,
        error_message=strip_error_sentinel(error_message),
    )
