"""Tests for usage records and sinks."""

import tempfile
from pathlib import Path

import pytest
import pytest_asyncio

from llm_gateway.llm.contracts import ERROR_SENTINEL
from llm_gateway.providers.catalog import ModelInfo, default_catalog
from llm_gateway.usage.records import (
    UsageRecord,
    estimate_cost,
    failure_record,
    success_record,
)
from llm_gateway.usage.sink import InMemoryUsageSink, SQLiteUsageSink


@pytest_asyncio.fixture
async def sqlite_sink():
    with tempfile.TemporaryDirectory() as tmpdir:
        sink = SQLiteUsageSink(db_path=Path(tmpdir) / "usage.db")
        await sink.start()
        yield sink
        await sink.stop()


MODEL = ModelInfo(
    "gpt-test", "OpenAI", cost_per_1k_input=0.0015, cost_per_1k_output=0.002
)


# ─── Cost ─────────────────────────────────────────────────────


@pytest.mark.parametrize(
    "input_tokens,output_tokens",
    [(0, 0), (1000, 1000), (123, 456), (7, 1), (15_000, 3_333)],
)
def test_estimate_cost_formula(input_tokens, output_tokens):
    expected = input_tokens / 1000 * 0.0015 + output_tokens / 1000 * 0.002
    assert estimate_cost(input_tokens, output_tokens, MODEL) == round(expected, 6)


def test_estimate_cost_precision():
    assert estimate_cost(1, 1, MODEL, precision=2) == 0.0
    assert estimate_cost(123, 456, MODEL, precision=8) == round(
        123 / 1000 * 0.0015 + 456 / 1000 * 0.002, 8
    )


def test_estimate_cost_without_model():
    assert estimate_cost(100, 100, None) == 0.0


def test_success_record_uses_catalog_pricing():
    _, model = default_catalog().resolve("gpt-3.5-turbo")
    record = success_record(
        session_id="s1", model=model, input_tokens=2000, output_tokens=1000, duration_ms=42
    )
    assert record.success is True
    assert record.provider == "OpenAI"
    assert record.estimated_cost == round(2 * 0.0005 + 1 * 0.0015, 6)


def test_failure_record_is_unbilled_and_stripped():
    record = failure_record(
        session_id="s1",
        model_id="gpt-4o",
        error_message=f"{ERROR_SENTINEL}Error connecting to OpenAI: bad key",
        duration_ms=5,
    )
    assert record.success is False
    assert record.input_tokens == 0
    assert record.output_tokens == 0
    assert record.estimated_cost == 0.0
    assert record.error_message == "Error connecting to OpenAI: bad key"


def test_record_is_frozen():
    record = UsageRecord(session_id="s1", model_id="m")
    with pytest.raises(AttributeError):
        record.input_tokens = 5  # type: ignore[misc]


# ─── Sinks ────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_in_memory_sink():
    sink = InMemoryUsageSink()
    await sink.record(UsageRecord(session_id="s1", model_id="m"))
    await sink.record(UsageRecord(session_id="s2", model_id="m"))
    await sink.record(UsageRecord(session_id="s1", model_id="n"))
    assert len(sink.records) == 3
    assert [r.model_id for r in await sink.list_for_session("s1")] == ["m", "n"]
    assert await sink.list_for_session("nobody") == []


@pytest.mark.asyncio
async def test_sqlite_sink_round_trip(sqlite_sink):
    first = success_record(
        session_id="s1", model=MODEL, input_tokens=10, output_tokens=20,
        duration_ms=100, user_id="u1",
    )
    second = failure_record(
        session_id="s1", model_id="gpt-test", error_message="boom", duration_ms=3
    )
    await sqlite_sink.record(first)
    await sqlite_sink.record(second)
    await sqlite_sink.record(UsageRecord(session_id="other", model_id="m"))

    records = await sqlite_sink.list_for_session("s1")
    assert records == [first, second]
